"""Replica-group topology of simulated responders.

``register`` spins up ``num_replica_groups`` groups of ``responders_per_group``
responders on one service address:

- Inside a group, members are competing consumers of one shared queue: each
  request is handled by exactly one member (load balancing, no duplication)
- Across groups, every group receives its own copy of each request and the
  groups race; the requester keeps whichever reply lands first

With one group this is plain load-balanced request/reply; with one responder
per group there is no balancing, only cross-group racing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Protocol

from latbench.distribution import AliasSampler
from latbench.errors import ConfigError
from latbench.models import Request, ResponderHandle
from latbench.responder import Responder, Sleep


logger = logging.getLogger(__name__)


class ConsumerRegistry(Protocol):
    async def register_competing_consumer(
        self, address: str, group_id: int, handler: Callable[[Request], Awaitable[None]]
    ) -> ResponderHandle: ...


@dataclass
class Topology:
    """Registered responders, grouped by replica group id."""
    address: str
    num_replica_groups: int
    responders_per_group: int
    responders: List[Responder] = field(default_factory=list)
    handles: List[ResponderHandle] = field(default_factory=list)

    def group(self, group_id: int) -> List[Responder]:
        return [r for r in self.responders if r.group_id == group_id]

    def handled_by_group(self) -> dict[int, int]:
        """Requests taken per replica group (each group sees every request it received)."""
        counts = {g: 0 for g in range(self.num_replica_groups)}
        for r in self.responders:
            counts[r.group_id] += r.handled
        return counts

    async def close(self) -> None:
        for handle in self.handles:
            if handle.close is not None:
                await handle.close()
        self.handles.clear()


async def register(
    transport: ConsumerRegistry,
    sampler: AliasSampler,
    num_replica_groups: int,
    responders_per_group: int,
    address: str,
    sleep: Sleep | None = None,
) -> Topology:
    """Create and register every responder; raises ``ConfigError`` on zero counts."""
    if num_replica_groups < 1:
        raise ConfigError(f"number of replica groups must be positive, got {num_replica_groups}")
    if responders_per_group < 1:
        raise ConfigError(f"responders per group must be positive, got {responders_per_group}")

    topology = Topology(
        address=address,
        num_replica_groups=num_replica_groups,
        responders_per_group=responders_per_group,
    )
    for group_id in range(num_replica_groups):
        for index in range(responders_per_group):
            if sleep is None:
                responder = Responder(group_id, sampler, index=index)
            else:
                responder = Responder(group_id, sampler, index=index, sleep=sleep)
            handle = await transport.register_competing_consumer(address, group_id, responder.handle)
            topology.responders.append(responder)
            topology.handles.append(handle)
    logger.info(
        "Registered %d replica group(s) x %d responder(s) on %s",
        num_replica_groups,
        responders_per_group,
        address,
    )
    return topology
