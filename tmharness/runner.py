"""Test orchestration.

:func:`build_test` turns :class:`~tmharness.config.Settings` into a fully
wired :class:`HarnessTest`, failing fast on configuration errors before any
node is touched. :func:`run_test` then:

1. sets up the cluster (when a node daemon is supplied),
2. sets up the nemesis and starts its schedule on a dedicated thread,
3. runs the workers until the time limit,
4. tears the nemesis and the cluster down,
5. checks the history and stores history, results and plots.
"""

from __future__ import annotations

import json
import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from tmharness.checker import CheckContext, Checker, default_checker
from tmharness.client import ClientFactory, RegisterClient
from tmharness.cluster import Cluster, NodeDaemon
from tmharness.config import Settings
from tmharness.control import Remote, SSHRemote
from tmharness.generator import OperationGenerator, WorkloadConfig
from tmharness.history import History
from tmharness.nemesis.profiles import ActiveNemesis, NemesisContext, select_profile
from tmharness.rpc import TendermintRPC
from tmharness.types import NEMESIS_PROCESS, Cluster as Nodes, Node, OpFunction, Operation, OpType, WeightTable
from tmharness.validators.identity import IdentityAssignment, assign_identities
from tmharness.validators.weights import validator_weights

logger = logging.getLogger(__name__)


@dataclass
class HarnessTest:
    """Everything needed to run one test."""

    name: str
    settings: Settings
    assignment: IdentityAssignment
    weights: WeightTable
    nemesis: ActiveNemesis
    generator: OperationGenerator
    client_factory: ClientFactory
    checker: Checker
    cluster: Optional[Cluster] = None

    @property
    def nodes(self) -> Nodes:
        return self.assignment.nodes

    @property
    def concurrency(self) -> int:
        return self.generator.concurrency


@dataclass
class RunResult:
    name: str
    results: Dict[str, Any]
    history: History
    store_path: Optional[Path] = None

    @property
    def valid(self) -> bool:
        return self.results.get("valid") is True


def rpc_client_factory(settings: Settings) -> ClientFactory:
    """Clients talking to each node's Tendermint RPC endpoint."""

    def factory(node: Node) -> RegisterClient:
        return RegisterClient(node, TendermintRPC(node, port=settings.rpc_port, timeout=settings.rpc_timeout))

    return factory


def build_test(
    settings: Settings,
    *,
    daemon: Optional[NodeDaemon] = None,
    remote: Optional[Remote] = None,
    client_factory: Optional[ClientFactory] = None,
    checker: Optional[Checker] = None,
) -> HarnessTest:
    """Assemble a test from *settings*.

    Raises:
        ConfigurationError: the options describe an infeasible test.
    """
    assignment = assign_identities(settings.nodes, settings.enable_duplicated_identity)
    weights = validator_weights(assignment)
    if remote is None:
        remote = SSHRemote(settings.ssh_user, settings.ssh_options)
    active = select_profile(
        settings.nemesis_profile,
        NemesisContext(assignment, remote=remote, ntp_server=settings.ntp_server),
    )
    workload = WorkloadConfig.for_cluster(
        len(assignment.nodes), ops_per_key=settings.ops_per_key, stagger_s=settings.stagger
    )
    generator = OperationGenerator(workload, settings.effective_concurrency)
    return HarnessTest(
        name=f"tendermint {active.profile.value}",
        settings=settings,
        assignment=assignment,
        weights=weights,
        nemesis=active,
        generator=generator,
        client_factory=client_factory or rpc_client_factory(settings),
        checker=checker or default_checker(),
        cluster=Cluster(assignment, weights, daemon, versions=settings.versions) if daemon is not None else None,
    )


def _run_nemesis(
    test: HarnessTest,
    history: History,
    stop: threading.Event,
    errors: List[BaseException],
) -> None:
    rng = random.Random()
    try:
        for delay, op in test.nemesis.schedule.steps(test.nodes, rng):
            if stop.wait(delay):
                return
            op = history.record(replace(op, process=NEMESIS_PROCESS))
            logger.info("nemesis %s %s", op.f.value, op.value if op.value is not None else "")
            done = test.nemesis.nemesis.invoke(op)
            done = history.record(replace(done, process=NEMESIS_PROCESS))
            logger.info("nemesis %s -> %s", op.f.value, done.value)
    except Exception as exc:
        logger.exception("Nemesis failed; aborting the run")
        errors.append(exc)
        stop.set()


def _invoke(client: RegisterClient, op: Operation) -> Operation:
    """Run *op*, turning an unexpected exception into a crashed completion.

    A crashed read cannot have changed anything and completes as ``fail``; a
    crashed write or cas may have applied and completes as ``info``.
    """
    try:
        return client.invoke(op)
    except Exception as exc:
        logger.warning("%s crashed on %s: %r", client.node, op.f.value, exc, exc_info=True)
        crash = OpType.FAIL if op.f is OpFunction.READ else OpType.INFO
        return op.complete(crash, error=type(exc).__name__)


def _run_worker(test: HarnessTest, thread: int, history: History, stop: threading.Event) -> int:
    stream = test.generator.stream(thread, random.Random())
    node = test.nodes[thread % len(test.nodes)]
    client = test.client_factory(node)
    process = thread
    issued = 0
    try:
        while not stop.wait(stream.pause()):
            op = history.record(replace(stream.next_op(), process=process))
            done = history.record(_invoke(client, op))
            issued += 1
            if done.type is OpType.INFO:
                # An info op may still be in flight; never reuse its process.
                process += test.concurrency
    finally:
        client.close()
    return issued


def run_workload(test: HarnessTest, history: History) -> None:
    """Run the nemesis schedule and the workers until the time limit."""
    stop = threading.Event()
    nemesis_errors: List[BaseException] = []
    nemesis_thread = threading.Thread(
        target=_run_nemesis, args=(test, history, stop, nemesis_errors), name="nemesis", daemon=True
    )
    nemesis_thread.start()
    try:
        with ThreadPoolExecutor(max_workers=test.concurrency, thread_name_prefix="worker") as pool:
            futures = [pool.submit(_run_worker, test, thread, history, stop) for thread in range(test.concurrency)]
            wait(futures, timeout=test.settings.time_limit)
            stop.set()
            issued = sum(future.result() for future in futures)
        logger.info("Workload finished: %d operations issued", issued)
    finally:
        stop.set()
        nemesis_thread.join()
    if nemesis_errors:
        raise nemesis_errors[0]


def _store_path(test: HarnessTest) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S.%f")
    return Path(test.settings.store_dir) / test.name / stamp


def run_test(test: HarnessTest) -> RunResult:
    """Run *test* end to end and return the checker verdict."""
    logger.info("Running %s on %s", test.name, ", ".join(test.nodes))
    if test.assignment:
        logger.info("Validator weights: %s", test.weights)
    history = History()

    if test.cluster is not None:
        test.cluster.setup_all()
    try:
        test.nemesis.nemesis.setup(test.nodes)
        try:
            run_workload(test, history)
        finally:
            test.nemesis.nemesis.teardown()
    finally:
        if test.cluster is not None:
            test.cluster.teardown_all()

    store_path = _store_path(test)
    context = CheckContext(name=test.name, nodes=test.nodes, store_dir=store_path)
    results = test.checker.check(history.ops(), context)
    logger.info("%s: valid = %s", test.name, results.get("valid"))

    history.write(store_path / "history.json")
    with (store_path / "results.json").open("w", encoding="utf-8") as fh:
        json.dump(results, fh, indent=2, default=str)
    return RunResult(test.name, results, history, store_path)
