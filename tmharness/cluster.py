"""Cluster setup glue.

Installing binaries and supervising the Tendermint and merkleeyes daemons is
the job of a :class:`NodeDaemon` supplied by the caller. This module owns only
the identity-aware part of setup: deciding which validator key each node
runs with and which genesis it boots from.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from tmharness.control import on_nodes
from tmharness.types import Node
from tmharness.validators.genesis import gen_genesis
from tmharness.validators.identity import IdentityAssignment
from tmharness.validators.keys import ValidatorKey, ValidatorRegistry, registry as default_registry

logger = logging.getLogger(__name__)

P2P_PORT: int = 46656


class NodeDaemon(Protocol):
    """External collaborator that manages the software on one node."""

    def generate_validator(self, node: Node) -> ValidatorKey:  # pragma: no cover
        """Create a fresh validator key on *node* and return it."""

    def install(
        self, node: Node, files: Mapping[str, str], seeds: str, versions: Mapping[str, str]
    ) -> None:  # pragma: no cover
        """Install the pinned *versions* (component -> version) and write *files* on *node*."""

    def start(self, node: Node) -> None:  # pragma: no cover
        ...

    def stop(self, node: Node) -> None:  # pragma: no cover
        ...

    def log_files(self, node: Node) -> List[str]:  # pragma: no cover
        ...


def seeds(nodes: Sequence[Node], node: Node, port: int = P2P_PORT) -> str:
    """Comma-separated p2p seed list for *node*: every other node."""
    return ",".join(f"{peer}:{port}" for peer in nodes if peer != node)


class Cluster:
    """Per-node setup and teardown for a Tendermint test cluster."""

    def __init__(
        self,
        assignment: IdentityAssignment,
        weights: Mapping[Node, int],
        daemon: NodeDaemon,
        *,
        versions: Optional[Mapping[str, str]] = None,
        registry: Optional[ValidatorRegistry] = None,
        key_timeout: Optional[float] = None,
    ) -> None:
        self.assignment = assignment
        self.nodes = assignment.nodes
        self.weights = dict(weights)
        self.daemon = daemon
        self.versions = dict(versions or {})
        self.registry = registry if registry is not None else default_registry
        self.key_timeout = key_timeout

    def provision_validator(self, node: Node) -> ValidatorKey:
        """Generate *node*'s key, or copy its origin's key if it is a clone."""
        origin = self.assignment.origin_of(node)
        if origin != node:
            logger.info("%s copying %s validator key", node, origin)
            key = self.registry.wait(origin, self.key_timeout)
        else:
            key = self.daemon.generate_validator(node)
        self.registry.deliver(node, key)
        return key

    def setup(self, node: Node) -> None:
        key = self.provision_validator(node)
        genesis = gen_genesis(self.nodes, self.weights, self.registry, timeout=self.key_timeout)
        files: Dict[str, str] = {
            "priv_validator.json": json.dumps(key),
            "genesis.json": json.dumps(genesis),
        }
        self.daemon.install(node, files, seeds(self.nodes, node), self.versions)
        self.daemon.start(node)
        logger.info("%s is up", node)

    def teardown(self, node: Node) -> None:
        self.daemon.stop(node)

    def log_files(self, node: Node) -> List[str]:
        return list(self.daemon.log_files(node))

    def setup_all(self) -> None:
        """Set up every node concurrently; clones wait for their origin's key."""
        self.registry.clear()
        self.registry.prepare(self.nodes)
        on_nodes(self.nodes, self.setup)

    def teardown_all(self) -> Dict[Node, Any]:
        try:
            return on_nodes(self.nodes, self.teardown)
        finally:
            self.registry.clear()
