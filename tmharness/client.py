"""Register client and outcome classification.

A timed-out write or cas may still have been committed, so it completes as
``info`` (indeterminate). A timed-out read cannot have changed anything and
completes as ``fail``. Reporting a possibly-applied write as failed would let
the checker reject valid histories.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from tmharness.errors import (
    RPCConnectionRefused,
    RPCError,
    RPCTimeout,
    Unauthorized,
    UnknownAddress,
)
from tmharness.types import ErrorKind, Node, OpFunction, Operation, OpType, Outcome

logger = logging.getLogger(__name__)


class RegisterRPC(Protocol):
    """Transport used by :class:`RegisterClient` (see :mod:`tmharness.rpc`)."""

    def read(self, key: Any) -> Any:  # pragma: no cover
        ...

    def write(self, key: Any, value: Any) -> None:  # pragma: no cover
        ...

    def cas(self, key: Any, old: Any, new: Any) -> None:  # pragma: no cover
        ...


def classify(f: OpFunction, exc: Exception) -> Outcome:
    """Map an RPC exception raised while running *f* to an :class:`Outcome`.

    Raises:
        Exception: *exc* itself when it is not an RPC failure.
    """
    if isinstance(exc, Unauthorized):
        return Outcome(OpType.FAIL, error=ErrorKind.PRECONDITION_FAILED)
    if isinstance(exc, UnknownAddress):
        return Outcome(OpType.FAIL, error=ErrorKind.NOT_FOUND)
    if isinstance(exc, RPCConnectionRefused):
        return Outcome(OpType.FAIL, error=ErrorKind.CONNECTION_REFUSED)
    if isinstance(exc, RPCTimeout):
        crash = OpType.FAIL if f is OpFunction.READ else OpType.INFO
        return Outcome(crash, error=ErrorKind.TIMEOUT)
    if isinstance(exc, RPCError):
        # Unexpected application error: we cannot tell whether it applied.
        crash = OpType.FAIL if f is OpFunction.READ else OpType.INFO
        return Outcome(crash, error=exc.kind)
    raise exc


class RegisterClient:
    """Issues register operations against a single node."""

    def __init__(self, node: Node, rpc: RegisterRPC) -> None:
        self.node = node
        self.rpc = rpc

    def read(self, key: Any) -> Any:
        return self.rpc.read(key)

    def write(self, key: Any, value: Any) -> None:
        self.rpc.write(key, value)

    def cas(self, key: Any, old: Any, new: Any) -> None:
        self.rpc.cas(key, old, new)

    def perform(self, op: Operation) -> Outcome:
        """Run *op* and classify the result without raising for RPC errors."""
        try:
            if op.f is OpFunction.READ:
                return Outcome(OpType.OK, value=self.read(op.key), has_value=True)
            if op.f is OpFunction.WRITE:
                self.write(op.key, op.value)
                return Outcome(OpType.OK)
            if op.f is OpFunction.CAS:
                old, new = op.value
                self.cas(op.key, old, new)
                return Outcome(OpType.OK)
        except (RPCError, RPCConnectionRefused, RPCTimeout) as exc:
            return classify(op.f, exc)
        raise ValueError(f"register client cannot perform {op.f.value}")

    def invoke(self, op: Operation) -> Operation:
        """Run *op* and return its completion record."""
        outcome = self.perform(op)
        completed = op.resolve(outcome)
        logger.debug("%s %s %s -> %s %s", self.node, op.f.value, op.key, outcome.type.value, outcome.error or "")
        return completed

    def close(self) -> None:
        close = getattr(self.rpc, "close", None)
        if close is not None:
            close()


ClientFactory = Callable[[Node], RegisterClient]
