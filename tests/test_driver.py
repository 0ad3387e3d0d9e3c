from collections import Counter

import pytest

from latbench.driver import compensate, run, to_ns
from latbench.errors import RoundTripFailure
from latbench.histogram import LatencyHistogram
from latbench.models import Reply


class ScriptedClient:
    """Answers each request after advancing the clock by the next scripted duration."""

    def __init__(self, clock, durations_ns, fail_at=None, group=0):
        self.clock = clock
        self.durations_ns = list(durations_ns)
        self.fail_at = fail_at
        self.group = group
        self.calls = 0

    async def request(self, address, payload, timeout=None):
        idx = self.calls
        self.calls += 1
        if self.fail_at is not None and idx == self.fail_at:
            raise ConnectionError("broker went away")
        self.clock.now_ns += self.durations_ns[idx % len(self.durations_ns)]
        return Reply(body=b"42", headers={"group": self.group})


@pytest.mark.parametrize(
    "raw,rtt,expected",
    [
        (25, 10, 5),
        (21, 10, 1),
        (20, 10, 20),  # equal to 2*rtt: not compensated
        (15, 10, 15),
        (0, 10, 0),
        (7, 0, 7),
    ],
)
def test_compensation_rule(raw, rtt, expected):
    assert compensate(raw, rtt) == expected


def test_compensation_never_negative_nor_above_raw():
    for raw in range(0, 100, 7):
        for rtt in range(0, 60, 5):
            c = compensate(raw, rtt)
            assert 0 <= c <= raw


def test_to_ns():
    assert to_ns(0.010) == 10_000_000
    assert to_ns(0) == 0


@pytest.mark.asyncio
async def test_run_records_compensated_milliseconds(clock):
    client = ScriptedClient(clock, [25_000_000])
    h = await run(10, 0.010, client, "svc", LatencyHistogram(), clock=clock)
    assert client.calls == 10
    assert h.count == 10
    assert h.percentile(0) == 5.0
    assert h.percentile(100) == 5.0


@pytest.mark.asyncio
async def test_run_reports_progress_and_wins(clock):
    client = ScriptedClient(clock, [5_000_000], group=1)
    seen = []
    wins = Counter()
    await run(4, 0.0, client, "svc", LatencyHistogram(), clock=clock, on_progress=seen.append, wins=wins)
    assert seen == [1, 2, 3, 4]
    assert wins == Counter({1: 4})


@pytest.mark.asyncio
async def test_first_failure_aborts_run(clock):
    client = ScriptedClient(clock, [5_000_000], fail_at=3)
    recorder = LatencyHistogram()
    with pytest.raises(RoundTripFailure) as excinfo:
        await run(10, 0.0, client, "svc", recorder, clock=clock)
    assert excinfo.value.iteration == 3
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    # No retry and nothing issued after the failure
    assert client.calls == 4


@pytest.mark.asyncio
async def test_transport_round_trip_failure_keeps_reason(clock):
    class TimingOut:
        async def request(self, address, payload, timeout=None):
            raise RoundTripFailure("no reply within 0.1s")

    with pytest.raises(RoundTripFailure) as excinfo:
        await run(3, 0.0, TimingOut(), "svc", LatencyHistogram(), timeout=0.1, clock=clock)
    assert excinfo.value.reason == "no reply within 0.1s"
    assert excinfo.value.iteration == 0
