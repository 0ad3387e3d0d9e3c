import asyncio
from collections import Counter

import pytest

from latbench.distribution import build_sampler
from latbench.driver import run
from latbench.errors import ConfigError
from latbench.histogram import LatencyHistogram
from latbench.responder import Responder
from latbench.topology import register


@pytest.mark.asyncio
async def test_each_request_handled_by_exactly_one_group_member(make_fabric):
    fabric = make_fabric()
    topology = await register(fabric, build_sampler([(1, 1)]), 1, 3, "svc")
    answered_by = Counter()
    try:
        for _ in range(30):
            reply = await fabric.request("svc", b"Hello World", timeout=1)
            answered_by[reply.headers["responder"]] += 1
        await asyncio.sleep(0.01)
    finally:
        await topology.close()
        await fabric.close()

    handled = [r.handled for r in topology.group(0)]
    assert sum(handled) == 30
    assert sum(answered_by.values()) == 30
    # Work is spread, not duplicated
    assert len([n for n in handled if n > 0]) >= 2
    assert fabric.late_replies == 0


@pytest.mark.asyncio
async def test_every_group_answers_and_first_reply_wins(make_fabric):
    fabric = make_fabric()
    topology = await register(fabric, build_sampler([(0, 1)]), 3, 2, "svc")
    try:
        for _ in range(10):
            await fabric.request("svc", b"Hello World", timeout=1)
        # Let the losing groups finish their replies
        await asyncio.sleep(0.05)
    finally:
        await topology.close()
        await fabric.close()

    assert topology.handled_by_group() == {0: 10, 1: 10, 2: 10}
    assert fabric.late_replies == 20


@pytest.mark.asyncio
async def test_faster_group_wins_the_race(make_fabric):
    fabric = make_fabric()
    slow = Responder(0, build_sampler([(100, 1)]))
    fast = Responder(1, build_sampler([(5, 1)]))
    handles = [
        await fabric.register_competing_consumer("svc", 0, slow.handle),
        await fabric.register_competing_consumer("svc", 1, fast.handle),
    ]
    wins = Counter()
    try:
        h = await run(5, 0.0, fabric, "svc", LatencyHistogram(), timeout=1, wins=wins)
    finally:
        for handle in handles:
            await handle.close()
        await fabric.close()

    assert wins == Counter({1: 5})
    assert h.percentile(100) < 50


@pytest.mark.asyncio
async def test_single_responder_single_group(make_fabric):
    fabric = make_fabric()
    topology = await register(fabric, build_sampler([(1, 1)]), 1, 1, "svc")
    try:
        reply = await fabric.request("svc", b"Hello World", timeout=1)
    finally:
        await topology.close()
        await fabric.close()
    assert reply.body == b"42"
    assert reply.group_id == 0
    assert len(topology.responders) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("groups,per_group", [(0, 1), (1, 0)])
async def test_zero_counts_rejected(make_fabric, groups, per_group):
    fabric = make_fabric()
    with pytest.raises(ConfigError):
        await register(fabric, build_sampler([(1, 1)]), groups, per_group, "svc")
