"""tmharness: fault injection and consistency checks for Tendermint clusters.

Nodes may be told to share a validator identity, the cluster is partitioned
or has its clocks skewed on a schedule, and a randomised register workload is
checked key by key afterwards.
"""

from __future__ import annotations

# Public API re-exports -------------------------------------------------------

from .errors import (  # noqa: F401
    ConfigurationError,
    HarnessError,
    IdentityAssignmentError,
    NemesisError,
    RPCError,
    UnsupportedDuplicationError,
)
from .types import ErrorKind, OpFunction, Operation, OpType, Outcome  # noqa: F401
from .validators import (  # noqa: F401
    IdentityAssignment,
    assign_identities,
    gen_genesis,
    validator_weights,
)
from .nemesis import GrudgeBuilder, NemesisProfile, select_profile  # noqa: F401
from .generator import OperationGenerator, WorkloadConfig  # noqa: F401
from .client import RegisterClient, classify  # noqa: F401
from .config import Settings, get_settings  # noqa: F401
from .runner import HarnessTest, RunResult, build_test, run_test  # noqa: F401

__all__ = [
    "ConfigurationError",
    "HarnessError",
    "IdentityAssignmentError",
    "NemesisError",
    "RPCError",
    "UnsupportedDuplicationError",
    "ErrorKind",
    "OpFunction",
    "Operation",
    "OpType",
    "Outcome",
    "IdentityAssignment",
    "assign_identities",
    "gen_genesis",
    "validator_weights",
    "GrudgeBuilder",
    "NemesisProfile",
    "select_profile",
    "OperationGenerator",
    "WorkloadConfig",
    "RegisterClient",
    "classify",
    "Settings",
    "get_settings",
    "HarnessTest",
    "RunResult",
    "build_test",
    "run_test",
]
