"""Voting weight allocation for clusters with a duplicated validator.

The genesis file keeps one record per public key, so every member of an
identity group must carry the same weight: whichever record survives
deduplication then yields the same voting power.

With ``n`` identity groups, plain validators get 2 votes and the duplicated
identity gets ``4(n-1) - 1``. The plain bloc holds ``2(n-1)`` votes out of
``6(n-1) - 1``, just over 1/3, so the duplicated identity alone stays below
the 2/3 commit threshold, while it plus any single plain validator reaches
it. The partition nemesis exploits exactly that.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Dict, Iterable, Mapping, Set, Tuple

from tmharness.errors import UnsupportedDuplicationError
from tmharness.types import Node, WeightTable
from tmharness.validators.identity import IdentityAssignment

PLAIN_WEIGHT: int = 2


def duplicated_weight(identity_count: int) -> int:
    """Weight of the duplicated identity among *identity_count* identities."""
    return 4 * (identity_count - 1) - 1


def validator_weights(assignment: IdentityAssignment) -> WeightTable:
    """Compute the per-node voting weight table.

    Args:
        assignment: Clone map for the cluster.

    Returns:
        Node -> weight. Uniform weight 1 without duplication.

    Raises:
        UnsupportedDuplicationError: more than one identity is duplicated.
    """
    if not assignment:
        return {node: 1 for node in assignment.nodes}

    groups = assignment.groups()
    dups = [group for group in groups if len(group) > 1]
    if len(dups) != 1:
        raise UnsupportedDuplicationError(
            f"Don't know how to handle {len(dups)} duplicated validator keys; expected exactly one"
        )

    weights: WeightTable = {}
    dup_weight = duplicated_weight(len(groups))
    for group in groups:
        # Every member carries the full weight; never divide it.
        value = dup_weight if len(group) > 1 else PLAIN_WEIGHT
        for node in group:
            weights[node] = value
    return {node: weights[node] for node in assignment.nodes}


def identity_powers(weights: Mapping[Node, int], assignment: IdentityAssignment) -> Dict[Node, int]:
    """Voting power per identity (keyed by origin) after deduplication."""
    powers: Dict[Node, int] = {}
    for node in assignment.nodes:
        powers.setdefault(assignment.origin_of(node), weights[node])
    return powers


def voting_shares(weights: Mapping[Node, int], assignment: IdentityAssignment) -> Tuple[Fraction, Fraction]:
    """Return ``(duplicated share, plain bloc share)`` of the total power.

    The duplicated share is zero when no identity is shared.
    """
    powers = identity_powers(weights, assignment)
    total = sum(powers.values())
    duplicated = sum(powers[origin] for origin in assignment.origins)
    return Fraction(duplicated, total), Fraction(total - duplicated, total)


def has_weighted_quorum(
    signers: Iterable[Node],
    *,
    weights: Mapping[Node, int],
    assignment: IdentityAssignment,
    ratio: Fraction = Fraction(2, 3),
) -> bool:
    """Check whether *signers* hold strictly more than *ratio* of the power.

    Several signers sharing one identity count once, as they would on chain.
    """
    powers = identity_powers(weights, assignment)
    identities: Set[Node] = {assignment.origin_of(node) for node in signers}
    signed = sum(powers[identity] for identity in identities)
    return Fraction(signed, sum(powers.values())) > ratio


__all__ = [
    "PLAIN_WEIGHT",
    "duplicated_weight",
    "validator_weights",
    "identity_powers",
    "voting_shares",
    "has_weighted_quorum",
]
