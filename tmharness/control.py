"""Running commands on cluster nodes."""

from __future__ import annotations

import logging
import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, TypeVar

from tmharness.errors import RemoteCommandError
from tmharness.types import Node

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Remote(Protocol):
    """Anything that can run a command on a node and return its stdout."""

    def exec(self, node: Node, *args: str) -> str:  # pragma: no cover
        """Run *args* on *node* as root; raise :class:`RemoteCommandError` on failure."""


class SSHRemote:
    """Run commands through the local ``ssh`` binary."""

    def __init__(
        self,
        user: str = "root",
        options: Sequence[str] = ("-o", "StrictHostKeyChecking=no", "-o", "BatchMode=yes"),
        timeout: float = 30.0,
    ) -> None:
        self.user = user
        self.options = list(options)
        self.timeout = timeout

    def command(self, node: Node, *args: str) -> List[str]:
        remote = " ".join(shlex.quote(arg) for arg in args)
        return ["ssh", *self.options, f"{self.user}@{node}", remote]

    def exec(self, node: Node, *args: str) -> str:
        cmd = self.command(node, *args)
        logger.debug("%s: %s", node, " ".join(args))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired as exc:
            raise RemoteCommandError(node, " ".join(args), -1, f"timed out after {self.timeout}s") from exc
        if proc.returncode != 0:
            raise RemoteCommandError(node, " ".join(args), proc.returncode, proc.stderr)
        return proc.stdout


def on_nodes(nodes: Iterable[Node], fn: Callable[[Node], T], *, max_workers: Optional[int] = None) -> Dict[Node, T]:
    """Call ``fn(node)`` for every node in parallel and collect the results.

    The first exception raised by any call propagates.
    """
    targets = list(nodes)
    if not targets:
        return {}
    with ThreadPoolExecutor(max_workers=max_workers or len(targets)) as pool:
        futures = {node: pool.submit(fn, node) for node in targets}
        return {node: future.result() for node, future in futures.items()}
