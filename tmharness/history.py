"""Thread-safe operation history."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from tmharness.types import NEMESIS_PROCESS, OpFunction, Operation, OpType, Process

Pair = Tuple[Operation, Optional[Operation]]
Window = Tuple[int, Optional[int]]


def pairs(ops: Iterable[Operation]) -> List[Pair]:
    """Match every invocation with its completion (``None`` if still pending)."""
    open_ops: Dict[Process, Operation] = {}
    done: List[Pair] = []
    for op in ops:
        if op.type is OpType.INVOKE:
            open_ops[op.process] = op
            continue
        invoke = open_ops.pop(op.process, None)
        if invoke is not None:
            done.append((invoke, op))
    done.extend((invoke, None) for invoke in open_ops.values())
    done.sort(key=lambda pair: pair[0].index if pair[0].index is not None else -1)
    return done


def nemesis_windows(ops: Iterable[Operation]) -> List[Window]:
    """Return ``(start, stop)`` times of fault windows, in nanoseconds.

    ``stop`` is ``None`` for a window still open when the history ended.
    """
    windows: List[Window] = []
    started: Optional[int] = None
    for op in ops:
        if op.process != NEMESIS_PROCESS or op.type is OpType.INVOKE:
            continue
        if op.f is OpFunction.START and started is None:
            started = op.time
        elif op.f is OpFunction.STOP and started is not None:
            windows.append((started, op.time))
            started = None
    if started is not None:
        windows.append((started, None))
    return windows


def split_by_key(ops: Iterable[Operation]) -> Dict[int, List[Operation]]:
    """Split client operations into independent per-key sub-histories."""
    split: Dict[int, List[Operation]] = {}
    for op in ops:
        if op.is_client_op:
            split.setdefault(op.key, []).append(op)
    return split


class History:
    """Append-only log of invocations and completions.

    Every recorded operation gets a sequential ``index`` and a ``time`` in
    nanoseconds since the history was created.
    """

    def __init__(self, start_ns: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._ops: List[Operation] = []
        self._t0 = start_ns if start_ns is not None else time.monotonic_ns()

    def record(self, op: Operation) -> Operation:
        """Stamp *op* and append it; return the stamped copy."""
        with self._lock:
            stamped = replace(op, index=len(self._ops), time=time.monotonic_ns() - self._t0)
            self._ops.append(stamped)
        return stamped

    def ops(self) -> List[Operation]:
        with self._lock:
            return list(self._ops)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.ops())

    def __len__(self) -> int:
        with self._lock:
            return len(self._ops)

    def client_ops(self) -> List[Operation]:
        return [op for op in self.ops() if op.is_client_op]

    def nemesis_ops(self) -> List[Operation]:
        return [op for op in self.ops() if op.process == NEMESIS_PROCESS]

    def by_key(self) -> Dict[int, List[Operation]]:
        return split_by_key(self.ops())

    def pairs(self) -> List[Pair]:
        return pairs(self.ops())

    def nemesis_windows(self) -> List[Window]:
        return nemesis_windows(self.ops())

    def to_list(self) -> List[dict]:
        return [op.to_dict() for op in self.ops()]

    def write(self, path: Path) -> Path:
        """Dump the history as JSON to *path*."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as fh:
            json.dump(self.to_list(), fh, indent=1)
        return path


def as_ops(history: "History | Sequence[Operation]") -> List[Operation]:
    if isinstance(history, History):
        return history.ops()
    return list(history)
