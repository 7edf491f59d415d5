"""Shared fakes for the tmharness test-suite.

Nothing here talks to a real node: the remote shell, the register RPC, the
node daemon and the checker are in-memory stand-ins that record what they
were asked to do.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import matplotlib
import pytest

matplotlib.use("Agg")

from tmharness.errors import Unauthorized, UnknownAddress  # noqa: E402
from tmharness.types import Operation  # noqa: E402

NODES5: Tuple[str, ...] = ("n1", "n2", "n3", "n4", "n5")


class FakeRemote:
    """Records every command; answers ``date`` with a fixed clock."""

    def __init__(self, clock: str = "1000.000000000\n") -> None:
        self.clock = clock
        self.commands: List[Tuple[str, Tuple[str, ...]]] = []
        self._lock = threading.Lock()

    def exec(self, node: str, *args: str) -> str:
        with self._lock:
            self.commands.append((node, args))
        if args[:2] == ("date", "+%s.%N"):
            return self.clock
        return ""

    def on(self, node: str) -> List[Tuple[str, ...]]:
        with self._lock:
            return [args for target, args in self.commands if target == node]


class InMemoryRegister:
    """Linearizable register store with merkleeyes-style errors."""

    def __init__(self) -> None:
        self.values: Dict[Any, Any] = {}
        self._lock = threading.Lock()

    def read(self, key: Any) -> Any:
        with self._lock:
            return self.values.get(key)

    def write(self, key: Any, value: Any) -> None:
        with self._lock:
            self.values[key] = value

    def cas(self, key: Any, old: Any, new: Any) -> None:
        with self._lock:
            if key not in self.values:
                raise UnknownAddress(111, "base-unknown-address")
            if self.values[key] != old:
                raise Unauthorized(4, "unauthorized")
            self.values[key] = new


class FakeDaemon:
    """Node daemon that hands out one key per node and records lifecycle calls."""

    def __init__(self) -> None:
        self.generated: List[str] = []
        self.installed: Dict[str, Tuple[Mapping[str, str], str]] = {}
        self.versions: Dict[str, Mapping[str, str]] = {}
        self.started: List[str] = []
        self.stopped: List[str] = []
        self._lock = threading.Lock()

    def generate_validator(self, node: str) -> Dict[str, Any]:
        with self._lock:
            self.generated.append(node)
        return {
            "address": f"addr-{node}",
            "pub_key": {"type": "ed25519", "data": f"pub-{node}"},
            "priv_key": {"type": "ed25519", "data": f"priv-{node}"},
        }

    def install(self, node: str, files: Mapping[str, str], seeds: str, versions: Mapping[str, str]) -> None:
        with self._lock:
            self.installed[node] = (dict(files), seeds)
            self.versions[node] = dict(versions)

    def start(self, node: str) -> None:
        with self._lock:
            self.started.append(node)

    def stop(self, node: str) -> None:
        with self._lock:
            self.stopped.append(node)

    def log_files(self, node: str) -> List[str]:
        return [f"/opt/tendermint/{node}.log"]


class RecordingChecker:
    """Always valid; keeps what it was given."""

    def __init__(self) -> None:
        self.history: Sequence[Operation] = ()
        self.context = None

    def check(self, history: Sequence[Operation], context: Any) -> Dict[str, Any]:
        self.history = list(history)
        self.context = context
        return {"valid": True}


@pytest.fixture
def nodes5() -> Tuple[str, ...]:
    return NODES5


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def register() -> InMemoryRegister:
    return InMemoryRegister()


@pytest.fixture
def fake_daemon() -> FakeDaemon:
    return FakeDaemon()


@pytest.fixture
def recording_checker() -> RecordingChecker:
    return RecordingChecker()
