"""Network partitions applied with iptables."""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Sequence, Union

from tmharness.control import Remote, on_nodes
from tmharness.errors import NemesisError
from tmharness.nemesis.base import Nemesis
from tmharness.nemesis.grudge import Grudge
from tmharness.types import DropTable, Node, OpFunction, Operation, OpType

logger = logging.getLogger(__name__)

GrudgeFn = Callable[[Sequence[Node]], Union[Grudge, DropTable]]


class IptablesNet:
    """Drop inbound traffic between nodes using iptables rules."""

    def __init__(self, remote: Remote) -> None:
        self.remote = remote

    def drop_all(self, drops: Mapping[Node, frozenset]) -> None:
        """Make each node ignore packets from every peer listed for it."""

        def apply(node: Node) -> None:
            for src in sorted(drops[node]):
                self.remote.exec(node, "iptables", "-A", "INPUT", "-s", src, "-j", "DROP", "-w")

        on_nodes([node for node, srcs in drops.items() if srcs], apply)

    def heal(self, nodes: Sequence[Node]) -> None:
        """Flush every rule on *nodes*."""

        def flush(node: Node) -> None:
            self.remote.exec(node, "iptables", "-F", "-w")
            self.remote.exec(node, "iptables", "-X", "-w")

        on_nodes(nodes, flush)


class Partitioner(Nemesis):
    """Cuts the network on ``start`` and heals it on ``stop``.

    *grudge_fn* is called with the current nodes on every ``start``, so each
    activation gets a fresh partition.
    """

    def __init__(self, grudge_fn: GrudgeFn, net: IptablesNet) -> None:
        self.grudge_fn = grudge_fn
        self.net = net
        self.nodes: tuple = ()

    def setup(self, nodes: Sequence[Node]) -> None:
        super().setup(nodes)
        self.net.heal(self.nodes)

    def invoke(self, op: Operation) -> Operation:
        if op.f is OpFunction.START:
            grudge = self.grudge_fn(self.nodes)
            if isinstance(grudge, Grudge):
                value = grudge.describe()
                drops = grudge.drops()
            else:
                drops = dict(grudge)
                value = {node: sorted(srcs) for node, srcs in sorted(drops.items())}
            logger.info("Cutting network: %s", value)
            self.net.drop_all(drops)
            return op.complete(OpType.INFO, value=value)
        if op.f is OpFunction.STOP:
            self.net.heal(self.nodes)
            logger.info("Network healed")
            return op.complete(OpType.INFO, value="network healed")
        raise NemesisError(f"partitioner cannot handle {op.f.value}")

    def teardown(self) -> None:
        self.net.heal(self.nodes)
