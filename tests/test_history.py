"""Unit tests for the operation history."""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING

from tmharness.history import History, nemesis_windows, pairs, split_by_key
from tmharness.types import NEMESIS_PROCESS, ErrorKind, OpFunction, Operation, OpType

if TYPE_CHECKING:  # pragma: no cover - typing-only imports
    from pathlib import Path

    from _pytest.fixtures import FixtureRequest
    from _pytest.monkeypatch import MonkeyPatch
    from pytest_mock.plugin import MockerFixture


def _invoke(f: OpFunction, process, key=None, value=None) -> Operation:
    return Operation(OpType.INVOKE, f, key=key, value=value, process=process)


def test_record_stamps_index_and_time() -> None:
    """Recorded ops are numbered in order with non-decreasing times."""
    history = History()
    first = history.record(_invoke(OpFunction.READ, 0, key=1))
    second = history.record(first.complete(OpType.OK, value=None))

    assert (first.index, second.index) == (0, 1)
    assert 0 <= first.time <= second.time
    assert len(history) == 2


def test_concurrent_records_get_unique_indices() -> None:
    """Appends from many threads never collide."""
    history = History()

    def work(process: int) -> None:
        for _ in range(200):
            history.record(_invoke(OpFunction.READ, process, key=0))

    threads = [threading.Thread(target=work, args=(p,)) for p in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(op.index for op in history) == list(range(1600))


def test_pairs_match_completions_per_process() -> None:
    """Completions pair with the open invocation of the same process."""
    history = History()
    a = history.record(_invoke(OpFunction.WRITE, 0, key=1, value=3))
    b = history.record(_invoke(OpFunction.READ, 1, key=1))
    a_done = history.record(a.complete(OpType.OK))
    c = history.record(_invoke(OpFunction.CAS, 0, key=1, value=(3, 4)))

    assert history.pairs() == [(a, a_done), (b, None), (c, None)]


def test_nemesis_windows() -> None:
    """Start/stop completions on the nemesis lane bound the fault windows."""
    ops = [
        Operation(OpType.INFO, OpFunction.START, process=NEMESIS_PROCESS, time=10),
        Operation(OpType.INFO, OpFunction.STOP, process=NEMESIS_PROCESS, time=20),
        Operation(OpType.INVOKE, OpFunction.START, process=NEMESIS_PROCESS, time=25),
        Operation(OpType.INFO, OpFunction.START, process=NEMESIS_PROCESS, time=30),
    ]
    assert nemesis_windows(ops) == [(10, 20), (30, None)]


def test_split_by_key_skips_nemesis() -> None:
    """Per-key sub-histories hold client ops only."""
    ops = [
        _invoke(OpFunction.READ, 0, key=1),
        _invoke(OpFunction.START, NEMESIS_PROCESS),
        _invoke(OpFunction.WRITE, 1, key=2, value=1),
        _invoke(OpFunction.READ, 2, key=1),
    ]
    split = split_by_key(ops)

    assert sorted(split) == [1, 2]
    assert [op.process for op in split[1]] == [0, 2]
    assert pairs(split[2]) == [(ops[2], None)]


def test_write_json(tmp_path: "Path") -> None:
    """The history file is a JSON list with plain values."""
    history = History()
    op = history.record(_invoke(OpFunction.CAS, 0, key=4, value=(1, 2)))
    history.record(op.complete(OpType.FAIL, error=ErrorKind.PRECONDITION_FAILED))

    path = history.write(tmp_path / "out" / "history.json")
    data = json.loads(path.read_text())

    assert [entry["type"] for entry in data] == ["invoke", "fail"]
    assert data[0]["value"] == [1, 2]
    assert data[1]["error"] == "precondition-failed"
    assert "error" not in data[0]
