"""Write-once validator key cells.

Each node publishes its validator key exactly once during setup. Clones block
on their origin's cell until the origin has generated its key, and genesis
assembly blocks until every cell is filled. Setup runs one thread per node,
so the cells are the only synchronisation between them.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Mapping, Optional, cast

from tmharness.errors import KeyCellError
from tmharness.types import Node

logger = logging.getLogger(__name__)

ValidatorKey = Mapping[str, Any]


class ValidatorCell:
    """Single-assignment cell holding one node's validator key."""

    def __init__(self, node: Node) -> None:
        self.node = node
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._value: Optional[ValidatorKey] = None

    def deliver(self, value: ValidatorKey) -> None:
        """Store *value*; a second delivery is an error."""
        with self._lock:
            if self._ready.is_set():
                raise KeyCellError(f"validator key for {self.node} already delivered")
            self._value = value
            self._ready.set()

    def get(self, timeout: Optional[float] = None) -> ValidatorKey:
        """Block until a value is delivered and return it.

        Raises:
            KeyCellError: *timeout* seconds passed without a delivery.
        """
        if not self._ready.wait(timeout):
            raise KeyCellError(f"timed out after {timeout}s waiting for {self.node}'s validator key")
        return cast(ValidatorKey, self._value)

    @property
    def delivered(self) -> bool:
        return self._ready.is_set()


class ValidatorRegistry:
    """Process-wide index of key cells by node."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cells: Dict[Node, ValidatorCell] = {}

    def cell(self, node: Node) -> ValidatorCell:
        """Return the cell for *node*, creating it on first use."""
        with self._lock:
            cell = self._cells.get(node)
            if cell is None:
                cell = self._cells[node] = ValidatorCell(node)
            return cell

    def prepare(self, nodes: Iterable[Node]) -> None:
        """Create empty cells for *nodes* ahead of setup."""
        for node in nodes:
            self.cell(node)

    def deliver(self, node: Node, key: ValidatorKey) -> None:
        self.cell(node).deliver(key)

    def wait(self, node: Node, timeout: Optional[float] = None) -> ValidatorKey:
        return self.cell(node).get(timeout)

    def clear(self) -> None:
        """Forget every cell. Called between test runs."""
        with self._lock:
            self._cells.clear()

    def __contains__(self, node: object) -> bool:
        with self._lock:
            return node in self._cells


registry = ValidatorRegistry()
