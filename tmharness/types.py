"""Base types shared by the harness modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

Node = str
Cluster = Tuple[Node, ...]
WeightTable = Dict[Node, int]
DropTable = Dict[Node, FrozenSet[Node]]
Process = Union[int, str]

NEMESIS_PROCESS: str = "nemesis"

_UNCHANGED: Any = object()


class OpType(Enum):
    """Phase of an operation record."""

    INVOKE = "invoke"
    OK = "ok"
    FAIL = "fail"
    INFO = "info"


class OpFunction(Enum):
    """What an operation does.

    Register verbs are issued by clients; the rest are nemesis actions.
    """

    READ = "read"
    WRITE = "write"
    CAS = "cas"
    START = "start"
    STOP = "stop"
    RESET = "reset"
    BUMP = "bump"


class ErrorKind(Enum):
    """Why a register operation did not complete with ``ok``."""

    PRECONDITION_FAILED = "precondition-failed"
    NOT_FOUND = "not-found"
    CONNECTION_REFUSED = "connection-refused"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Operation:
    """One entry of a test history.

    ``value`` holds ``None`` for an invoked read, the written value for a
    write, and an ``(old, new)`` pair for a cas. Completed reads carry the
    value observed. Nemesis operations use ``key=None``.
    """

    type: OpType
    f: OpFunction
    key: Optional[int] = None
    value: Any = None
    process: Optional[Process] = None
    time: Optional[int] = None
    error: Optional[Union[ErrorKind, str]] = None
    index: Optional[int] = None

    def complete(
        self,
        type: OpType,
        *,
        value: Any = _UNCHANGED,
        error: Optional[Union[ErrorKind, str]] = None,
    ) -> "Operation":
        """Return the completion record for this invocation.

        The invocation's value is carried over unless a new one is given.
        """
        return replace(
            self,
            type=type,
            value=self.value if value is _UNCHANGED else value,
            error=error,
            time=None,
            index=None,
        )

    def resolve(self, outcome: "Outcome") -> "Operation":
        """Apply a classified :class:`Outcome` to this invocation."""
        if outcome.has_value:
            return self.complete(outcome.type, value=outcome.value, error=outcome.error)
        return self.complete(outcome.type, error=outcome.error)

    @property
    def is_client_op(self) -> bool:
        return self.process != NEMESIS_PROCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        value = self.value
        if isinstance(value, tuple):
            value = list(value)
        elif isinstance(value, dict):
            value = {str(k): sorted(v) if isinstance(v, (set, frozenset)) else v for k, v in value.items()}
        elif isinstance(value, (set, frozenset)):
            value = sorted(value)
        data: Dict[str, Any] = {
            "index": self.index,
            "time": self.time,
            "type": self.type.value,
            "f": self.f.value,
            "process": self.process,
            "key": self.key,
            "value": value,
        }
        if self.error is not None:
            data["error"] = self.error.value if isinstance(self.error, ErrorKind) else self.error
        return data


@dataclass(frozen=True)
class Outcome:
    """Classified result of one register call."""

    type: OpType
    value: Any = None
    error: Optional[Union[ErrorKind, str]] = None
    has_value: bool = field(default=False, compare=False)
