"""Exception hierarchy for the harness.

Configuration problems abort a run before any node is touched. RPC errors are
caught by :class:`tmharness.client.RegisterClient` and folded into operation
records, so only nemesis and setup failures ever reach the orchestrator.
"""

from __future__ import annotations

from typing import Optional


class HarnessError(Exception):
    """Base class for every error raised by tmharness."""


# --------------------------------------------------------------------------------------
# Configuration
# --------------------------------------------------------------------------------------


class ConfigurationError(HarnessError):
    """The requested test cannot be built from the given options."""


class IdentityAssignmentError(ConfigurationError):
    """Identity duplication was requested but is infeasible for the cluster."""


class UnsupportedDuplicationError(ConfigurationError):
    """More than one validator identity is shared between nodes."""


# --------------------------------------------------------------------------------------
# RPC
# --------------------------------------------------------------------------------------


class RPCError(HarnessError):
    """A node answered, but the application rejected the request.

    Attributes:
        code: Raw ABCI result code.
        kind: Symbolic name of ``code`` (e.g. ``"unauthorized"``).
        log: Free-form log string returned by the application.
    """

    def __init__(self, code: int, kind: str, log: str = "") -> None:
        super().__init__(f"{kind} (code {code}){': ' + log if log else ''}")
        self.code = code
        self.kind = kind
        self.log = log


class Unauthorized(RPCError):
    """The application refused the transaction (CAS mismatch)."""


class UnknownAddress(RPCError):
    """The requested key does not exist."""


class RPCTransportError(HarnessError):
    """The request never produced an application-level answer."""

    def __init__(self, node: str, message: str) -> None:
        super().__init__(f"{node}: {message}")
        self.node = node


class RPCConnectionRefused(RPCTransportError):
    """The node refused the TCP connection; nothing was sent."""


class RPCTimeout(RPCTransportError):
    """No response arrived in time; the request may or may not have applied."""


# --------------------------------------------------------------------------------------
# Nemesis / setup
# --------------------------------------------------------------------------------------


class NemesisError(HarnessError):
    """Applying or healing a fault failed."""


class RemoteCommandError(NemesisError):
    """A command run on a cluster node exited non-zero."""

    def __init__(self, node: str, command: str, returncode: int, stderr: Optional[str] = None) -> None:
        super().__init__(f"{node}: `{command}` exited {returncode}: {(stderr or '').strip()}")
        self.node = node
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class KeyCellError(HarnessError):
    """A validator key cell was delivered twice or never delivered."""
