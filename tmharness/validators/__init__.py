"""Validator identity, weighting and genesis helpers.

Everything here is computed once per test, before any node starts, and is
side-effect free apart from the key registry used during setup.
"""

from __future__ import annotations

from .identity import IdentityAssignment, assign_identities, clone_count
from .weights import (
    duplicated_weight,
    has_weighted_quorum,
    identity_powers,
    validator_weights,
    voting_shares,
)
from .keys import ValidatorCell, ValidatorRegistry, registry
from .genesis import gen_genesis

__all__ = [
    "IdentityAssignment",
    "assign_identities",
    "clone_count",
    "duplicated_weight",
    "has_weighted_quorum",
    "identity_powers",
    "validator_weights",
    "voting_shares",
    "ValidatorCell",
    "ValidatorRegistry",
    "registry",
    "gen_genesis",
]
