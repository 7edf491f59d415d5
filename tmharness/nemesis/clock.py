"""Clock skew nemesis."""

from __future__ import annotations

import logging
import random
from typing import Callable, Dict, List, Optional, Sequence

from tmharness.control import Remote, on_nodes
from tmharness.errors import NemesisError
from tmharness.nemesis.base import Nemesis
from tmharness.types import Node, OpFunction, Operation, OpType

logger = logging.getLogger(__name__)

DEFAULT_NTP_SERVER: str = "pool.ntp.org"


class ClockNemesis(Nemesis):
    """Shifts node clocks.

    Operations:
        reset: value is a list of nodes to resync via NTP.
        bump: value maps node -> offset in milliseconds.
    """

    def __init__(self, remote: Remote, ntp_server: str = DEFAULT_NTP_SERVER) -> None:
        self.remote = remote
        self.ntp_server = ntp_server
        self.nodes: tuple = ()

    def setup(self, nodes: Sequence[Node]) -> None:
        super().setup(nodes)
        self.reset(self.nodes)

    def reset(self, nodes: Sequence[Node]) -> None:
        on_nodes(nodes, lambda node: self.remote.exec(node, "ntpdate", "-p", "1", "-b", self.ntp_server))

    def bump(self, offsets: Dict[Node, int]) -> Dict[Node, float]:
        """Move each node's clock by its offset; return the new clock readings."""

        def shift(node: Node) -> float:
            now = float(self.remote.exec(node, "date", "+%s.%N").strip())
            target = now + offsets[node] / 1000.0
            self.remote.exec(node, "date", "-s", f"@{target:.6f}")
            return target

        return on_nodes(offsets, shift)

    def invoke(self, op: Operation) -> Operation:
        if op.f is OpFunction.RESET:
            self.reset(op.value)
            logger.info("Reset clocks on %s", ", ".join(op.value))
            return op.complete(OpType.INFO)
        if op.f is OpFunction.BUMP:
            self.bump(op.value)
            logger.info("Bumped clocks: %s", op.value)
            return op.complete(OpType.INFO)
        raise NemesisError(f"clock nemesis cannot handle {op.f.value}")

    def teardown(self) -> None:
        self.reset(self.nodes)


def _random_subset(nodes: Sequence[Node], rng: random.Random) -> List[Node]:
    return sorted(rng.sample(list(nodes), rng.randint(1, len(nodes))))


def bump_offset(rng: random.Random) -> int:
    """A signed offset between 4 ms and ~4.4 minutes, log-uniformly spread."""
    return int(rng.choice((-1, 1)) * 2 ** (2 + rng.random() * 16))


def clock_ops(nodes: Sequence[Node], rng: Optional[random.Random] = None) -> Callable[[], Operation]:
    """Return a source of random reset/bump operations over *nodes*."""
    rng = rng or random.Random()

    def next_op() -> Operation:
        targets = _random_subset(nodes, rng)
        if rng.random() < 0.5:
            return Operation(OpType.INVOKE, OpFunction.RESET, value=targets)
        return Operation(OpType.INVOKE, OpFunction.BUMP, value={node: bump_offset(rng) for node in targets})

    return next_op
