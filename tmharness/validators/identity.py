"""Validator identity assignment.

Some nodes of a test cluster can be told to reuse another node's validator
key instead of generating their own. Those *clones* and the *origin* they copy
form one identity group: several physical processes voting as a single
validator. Tendermint tolerates fewer than 1/3 faulty validators, so the clone
count is kept strictly below ``n / 3``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from tmharness.errors import IdentityAssignmentError
from tmharness.types import Cluster, Node

logger = logging.getLogger(__name__)

# Dividing by slightly more than 3 keeps floor(n / 3.01) strictly below n / 3
# even when n is a multiple of 3.
CLONE_DIVISOR: float = 3.01


@dataclass(frozen=True)
class IdentityAssignment:
    """Immutable map of clone node -> origin node it impersonates.

    Nodes absent from :attr:`clones` use their own identity.
    """

    nodes: Cluster
    clones: Mapping[Node, Node] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "clones", dict(self.clones))

        members = set(self.nodes)
        if len(members) != len(self.nodes):
            raise IdentityAssignmentError("cluster nodes must be distinct")
        for clone, origin in self.clones.items():
            if clone not in members or origin not in members:
                raise IdentityAssignmentError(f"{clone} -> {origin} names a node outside the cluster")
            if clone == origin:
                raise IdentityAssignmentError(f"{clone} cannot clone itself")
            if origin in self.clones:
                raise IdentityAssignmentError(f"origin {origin} is itself a clone")
        if 3 * len(self.clones) >= len(self.nodes) and self.clones:
            raise IdentityAssignmentError(
                f"{len(self.clones)} clones in a {len(self.nodes)}-node cluster; need fewer than 1/3"
            )

    def __bool__(self) -> bool:
        return bool(self.clones)

    @property
    def origins(self) -> FrozenSet[Node]:
        return frozenset(self.clones.values())

    def origin_of(self, node: Node) -> Node:
        """Return the node whose validator key *node* uses."""
        return self.clones.get(node, node)

    def groups(self, live: Optional[Iterable[Node]] = None) -> List[FrozenSet[Node]]:
        """Partition the cluster (or the *live* subset of it) into identity groups.

        Groups come back in the order their identity first appears in the
        cluster.
        """
        allowed = set(self.nodes if live is None else live)
        index: Dict[Node, List[Node]] = {}
        for node in self.nodes:
            if node not in allowed:
                continue
            index.setdefault(self.origin_of(node), []).append(node)
        return [frozenset(members) for members in index.values()]

    def duplicated_groups(self, live: Optional[Iterable[Node]] = None) -> List[FrozenSet[Node]]:
        """Return only the groups with more than one member."""
        return [group for group in self.groups(live) if len(group) > 1]


def clone_count(n: int) -> int:
    """Number of clones used for an *n*-node cluster."""
    return math.floor(n / CLONE_DIVISOR)


def assign_identities(nodes: Sequence[Node], enabled: bool) -> IdentityAssignment:
    """Pick clones and their origin for *nodes*.

    The first ``floor(n / 3.01)`` nodes become clones of the node right after
    them.

    Raises:
        IdentityAssignmentError: duplication is enabled but the cluster is too
            small to hold one clone.
    """
    cluster: Tuple[Node, ...] = tuple(nodes)
    if not enabled:
        return IdentityAssignment(cluster)

    k = clone_count(len(cluster))
    if k < 1:
        raise IdentityAssignmentError(
            f"identity duplication needs at least 4 nodes; got {len(cluster)}"
        )
    origin = cluster[k]
    clones = {clone: origin for clone in cluster[:k]}
    logger.info("Nodes %s will impersonate validator %s", ", ".join(cluster[:k]), origin)
    return IdentityAssignment(cluster, clones)
