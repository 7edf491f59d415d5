"""Nemesis interface.

A nemesis receives ``invoke`` operations from the schedule and returns their
completion. Faults are deliberate; an exception from :meth:`Nemesis.invoke`
means the fault could not be applied and aborts the test.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from tmharness.types import Node, Operation, OpType


class Nemesis(ABC):
    """Fault injector driven by a schedule."""

    def setup(self, nodes: Sequence[Node]) -> None:
        """Prepare the cluster; called once before the workload starts."""
        self.nodes = tuple(nodes)

    @abstractmethod
    def invoke(self, op: Operation) -> Operation:
        """Apply *op* and return its ``info`` completion."""

    def teardown(self) -> None:
        """Undo every fault; called once after the workload ends."""


class NoopNemesis(Nemesis):
    """Does nothing."""

    def invoke(self, op: Operation) -> Operation:
        return op.complete(OpType.INFO)
