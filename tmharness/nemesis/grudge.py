"""Network partition plans ("grudges").

A :class:`Grudge` splits the live nodes into components that cannot talk to
each other. The network layer consumes the equivalent :data:`DropTable`, which
lists for every node the peers whose traffic it drops.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from tmharness.errors import UnsupportedDuplicationError
from tmharness.types import DropTable, Node
from tmharness.validators.identity import IdentityAssignment


def complete_grudge(components: Iterable[Iterable[Node]]) -> DropTable:
    """Return a drop table isolating each component from all the others."""
    parts = [frozenset(component) for component in components]
    universe = frozenset().union(*parts) if parts else frozenset()
    drops: Dict[Node, FrozenSet[Node]] = {}
    for part in parts:
        for node in part:
            drops[node] = universe - part
    return drops


@dataclass(frozen=True)
class Grudge:
    """Components of a partition; ``components[0]`` is the main one."""

    components: Tuple[FrozenSet[Node], ...]

    @property
    def main(self) -> FrozenSet[Node]:
        return self.components[0]

    @property
    def exiles(self) -> Tuple[FrozenSet[Node], ...]:
        return self.components[1:]

    def nodes(self) -> FrozenSet[Node]:
        return frozenset().union(*self.components)

    def drops(self) -> DropTable:
        return complete_grudge(self.components)

    def describe(self) -> List[List[Node]]:
        return [sorted(component) for component in self.components]


class GrudgeBuilder:
    """Partitions that leave exactly one impersonator of the shared identity
    attached to the majority.

    The builder is created once per test. :meth:`build` is called on every
    nemesis activation and draws a fresh representative each time, so over a
    run every clone gets to vote with the majority.
    """

    def __init__(self, assignment: IdentityAssignment) -> None:
        dups = assignment.duplicated_groups()
        if len(dups) > 1:
            raise UnsupportedDuplicationError(
                f"cannot build grudges for {len(dups)} duplicated identities"
            )
        self.assignment = assignment

    def build(self, live_nodes: Iterable[Node], rng: Optional[random.Random] = None) -> Grudge:
        """Plan a partition over *live_nodes*.

        Args:
            live_nodes: Nodes currently part of the test.
            rng: Random source for the representative. A freshly seeded
                generator is used when omitted.
        """
        rng = rng or random.Random()
        main: List[Node] = []
        exiles: List[FrozenSet[Node]] = []
        for group in self.assignment.groups(live_nodes):
            if len(group) == 1:
                main.extend(group)
                continue
            # sort first so a seeded rng picks reproducibly
            members = sorted(group)
            chosen = rng.choice(members)
            main.append(chosen)
            exiles.extend(frozenset([node]) for node in members if node != chosen)
        return Grudge((frozenset(main), *exiles))


def _shuffled(nodes: Iterable[Node], rng: random.Random) -> List[Node]:
    order = list(nodes)
    rng.shuffle(order)
    return order


def random_halves(nodes: Sequence[Node], rng: Optional[random.Random] = None) -> Grudge:
    """Cut the cluster into two randomly chosen halves; the larger one is main."""
    order = _shuffled(nodes, rng or random.Random())
    cut = len(order) // 2
    return Grudge((frozenset(order[cut:]), frozenset(order[:cut])))


def random_node(nodes: Sequence[Node], rng: Optional[random.Random] = None) -> Grudge:
    """Isolate a single random node from the rest."""
    order = _shuffled(nodes, rng or random.Random())
    return Grudge((frozenset(order[1:]), frozenset(order[:1])))


def majority(n: int) -> int:
    return n // 2 + 1


def majorities_ring(nodes: Sequence[Node], rng: Optional[random.Random] = None) -> DropTable:
    """Every node sees a majority, but no two nodes see the same one.

    Nodes are shuffled onto a ring; each node keeps the majority-sized arc
    centred on itself and drops everyone else.
    """
    order = _shuffled(nodes, rng or random.Random())
    n = len(order)
    m = majority(n)
    universe = frozenset(order)
    drops: Dict[Node, FrozenSet[Node]] = {}
    for start in range(n):
        arc = [order[(start + i) % n] for i in range(m)]
        centre = arc[len(arc) // 2]
        drops[centre] = universe - frozenset(arc)
    return drops
