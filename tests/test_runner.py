"""End-to-end runs against in-memory fakes."""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING

import pytest
import requests

from tmharness.client import RegisterClient
from tmharness.config import get_settings
from tmharness.errors import ConfigurationError, NemesisError, RPCTimeout
from tmharness.history import pairs
from tmharness.nemesis.base import Nemesis
from tmharness.nemesis.grudge import random_halves
from tmharness.nemesis.net import IptablesNet, Partitioner
from tmharness.nemesis.profiles import ActiveNemesis, NemesisProfile, StartStop
from tmharness.runner import build_test, run_test
from tmharness.types import NEMESIS_PROCESS, OpFunction, OpType

if TYPE_CHECKING:  # pragma: no cover - typing-only imports
    from pathlib import Path

    from _pytest.fixtures import FixtureRequest
    from _pytest.monkeypatch import MonkeyPatch
    from pytest_mock.plugin import MockerFixture


@pytest.fixture
def settings(tmp_path: "Path"):
    return get_settings(
        nodes="n1,n2,n3,n4,n5",
        time_limit=0.3,
        stagger=0.005,
        store_dir=tmp_path / "store",
        enable_duplicated_identity=True,
    )


def _register_clients(register):
    return lambda node: RegisterClient(node, register)


def test_build_test(settings, fake_remote, register, recording_checker) -> None:
    """The test is named after its profile and weighted for the shared identity."""
    test = build_test(
        settings, remote=fake_remote, client_factory=_register_clients(register), checker=recording_checker
    )

    assert test.name == "tendermint none"
    assert test.nodes == ("n1", "n2", "n3", "n4", "n5")
    assert test.weights["n1"] == 11
    assert test.concurrency == 10
    assert test.cluster is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"nodes": "n1,n2,n3", "enable_duplicated_identity": True},
        {"nodes": "n1,n2,n3,n4,n5", "concurrency": 7},
    ],
)
def test_configuration_errors_fail_before_setup(overrides: dict, fake_daemon) -> None:
    """Infeasible tests are refused before any node is touched."""
    with pytest.raises(ConfigurationError):
        build_test(get_settings(**overrides), daemon=fake_daemon)
    assert fake_daemon.generated == []
    assert fake_daemon.started == []


def test_run_without_faults(settings, fake_remote, register, recording_checker) -> None:
    """Every invocation completes and the run is stored."""
    test = build_test(
        settings, remote=fake_remote, client_factory=_register_clients(register), checker=recording_checker
    )
    result = run_test(test)

    assert result.valid
    ops = recording_checker.history
    assert ops and all(op.is_client_op for op in ops)
    assert all(done is not None for _, done in pairs(ops))
    assert {op.process for op in ops} <= set(range(test.concurrency))
    assert {op.f for op in ops} == {OpFunction.READ, OpFunction.WRITE, OpFunction.CAS}

    assert result.store_path.parent.name == "tendermint none"
    saved = json.loads((result.store_path / "history.json").read_text())
    assert len(saved) == len(ops)
    assert json.loads((result.store_path / "results.json").read_text()) == {"valid": True}
    assert recording_checker.context.store_dir == result.store_path


def test_default_checks_store_timelines(settings, fake_remote, register) -> None:
    """Without a linearizability checker the verdict is unknown and every key gets a timeline."""
    test = build_test(settings, remote=fake_remote, client_factory=_register_clients(register))
    result = run_test(test)

    assert result.results["valid"] == "unknown"
    assert not result.valid
    keys = result.results["timeline"]["results"]
    assert keys
    for key in keys:
        assert (result.store_path / "independent" / str(key) / "timeline.png").exists()
    assert (result.store_path / "latency-raw.png").exists()


def test_readers_and_writers_per_node(settings, fake_remote, register, recording_checker) -> None:
    """Reader processes only read; writers never do."""
    test = build_test(
        settings, remote=fake_remote, client_factory=_register_clients(register), checker=recording_checker
    )
    run_test(test)

    for op in recording_checker.history:
        reader = op.process % 10 < 5
        assert (op.f is OpFunction.READ) == reader


def test_nemesis_events_on_their_own_lane(settings, fake_remote, register, recording_checker) -> None:
    """Partitions are recorded on the nemesis lane and healed at the end."""
    test = build_test(
        settings, remote=fake_remote, client_factory=_register_clients(register), checker=recording_checker
    )
    test.nemesis = ActiveNemesis(
        NemesisProfile.HALF_SPLIT,
        Partitioner(random_halves, IptablesNet(fake_remote)),
        StartStop(0.02, 0.05),
    )
    run_test(test)

    nemesis_ops = [op for op in recording_checker.history if op.process == NEMESIS_PROCESS]
    assert nemesis_ops
    assert nemesis_ops[0].f is OpFunction.START
    assert all(op.key is None for op in nemesis_ops)
    assert {op.type for op in nemesis_ops} == {OpType.INVOKE, OpType.INFO}
    assert any(args[:2] == ("iptables", "-A") for _, args in fake_remote.commands)
    for node in test.nodes:
        assert fake_remote.on(node)[-2:] == [("iptables", "-F", "-w"), ("iptables", "-X", "-w")]


def test_info_retires_the_process(settings, fake_remote, recording_checker, mocker: "MockerFixture") -> None:
    """After an indeterminate write the worker continues under a new process id."""
    rpc = mocker.Mock()
    rpc.read.return_value = None
    rpc.write.side_effect = RPCTimeout("n1", "slow")
    rpc.cas.side_effect = RPCTimeout("n1", "slow")
    test = build_test(
        settings,
        remote=fake_remote,
        client_factory=lambda node: RegisterClient(node, rpc),
        checker=recording_checker,
    )
    run_test(test)

    ops = recording_checker.history
    infos = [op for op in ops if op.type is OpType.INFO]
    assert infos
    assert all(op.f is not OpFunction.READ for op in infos)
    assert max(op.process for op in ops) >= test.concurrency
    # a process never has two invocations outstanding
    open_by_process = {}
    for op in ops:
        if op.type is OpType.INVOKE:
            assert op.process not in open_by_process
            open_by_process[op.process] = op
        else:
            open_by_process.pop(op.process)


class _FlakyRegister:
    """Delegates to a register but breaks the transfer of its third write."""

    def __init__(self, register) -> None:
        self.register = register
        self.writes = 0
        self._lock = threading.Lock()

    def read(self, key):
        return self.register.read(key)

    def write(self, key, value) -> None:
        with self._lock:
            self.writes += 1
            broken = self.writes == 3
        if broken:
            raise requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")
        self.register.write(key, value)

    def cas(self, key, old, new) -> None:
        self.register.cas(key, old, new)


def test_crashed_write_does_not_abort_the_run(settings, fake_remote, register, recording_checker) -> None:
    """An unexpected client error becomes an info op and the workload carries on."""
    flaky = _FlakyRegister(register)
    test = build_test(
        settings,
        remote=fake_remote,
        client_factory=lambda node: RegisterClient(node, flaky),
        checker=recording_checker,
    )
    result = run_test(test)

    assert result.valid
    assert recording_checker.context is not None
    ops = recording_checker.history
    crashed = [i for i, op in enumerate(ops) if op.error == "ChunkedEncodingError"]
    assert len(crashed) == 1
    crash = ops[crashed[0]]
    assert crash.type is OpType.INFO
    assert crash.f is OpFunction.WRITE
    assert flaky.writes > 3
    # the crashed process is retired; its thread keeps going under a new id
    assert any(op.process == crash.process + test.concurrency for op in ops[crashed[0]:])


def test_crashed_read_fails(settings, fake_remote, recording_checker, mocker: "MockerFixture") -> None:
    """A read that blows up cannot have changed anything and completes as fail."""
    rpc = mocker.Mock()
    rpc.read.side_effect = ValueError("bad payload")
    test = build_test(
        settings,
        remote=fake_remote,
        client_factory=lambda node: RegisterClient(node, rpc),
        checker=recording_checker,
    )
    run_test(test)

    reads = [op for op in recording_checker.history if op.f is OpFunction.READ and op.type is not OpType.INVOKE]
    assert reads
    assert all(op.type is OpType.FAIL and op.error == "ValueError" for op in reads)


class _Broken(Nemesis):
    def __init__(self) -> None:
        self.torn_down = False

    def invoke(self, op):
        raise NemesisError("iptables missing")

    def teardown(self) -> None:
        self.torn_down = True


def test_nemesis_failure_aborts(settings, fake_remote, fake_daemon, register, recording_checker) -> None:
    """A fault that cannot be applied stops the run after cleaning up."""
    test = build_test(
        settings,
        daemon=fake_daemon,
        remote=fake_remote,
        client_factory=_register_clients(register),
        checker=recording_checker,
    )
    broken = _Broken()
    test.nemesis = ActiveNemesis(NemesisProfile.HALF_SPLIT, broken, StartStop(0, 1))

    with pytest.raises(NemesisError):
        run_test(test)
    assert broken.torn_down
    assert sorted(fake_daemon.stopped) == list(test.nodes)
    assert recording_checker.context is None


def test_cluster_lifecycle(settings, fake_remote, fake_daemon, register, recording_checker) -> None:
    """With a daemon every node is set up at the pinned versions before the workload and stopped after."""
    test = build_test(
        settings,
        daemon=fake_daemon,
        remote=fake_remote,
        client_factory=_register_clients(register),
        checker=recording_checker,
    )
    run_test(test)

    assert sorted(fake_daemon.started) == list(test.nodes)
    assert sorted(fake_daemon.stopped) == list(test.nodes)
    assert "n1" not in fake_daemon.generated
    assert fake_daemon.versions["n3"] == settings.versions
