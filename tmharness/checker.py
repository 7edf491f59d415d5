"""Checker composition.

The linearizability checker itself lives outside this package; it is loaded
by dotted path and run once per key through :class:`IndependentChecker`.
Every checker returns a dict with a ``"valid"`` entry that is ``True``,
``False`` or ``"unknown"``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Sequence, Tuple, Union

from tmharness.config import import_string
from tmharness.errors import ConfigurationError
from tmharness.history import nemesis_windows, pairs, split_by_key
from tmharness.plotting import latency_quantiles, save_latency_plot, save_timeline_plot
from tmharness.types import Node, Operation, OpType

logger = logging.getLogger(__name__)

Validity = Union[bool, str]
UNKNOWN: str = "unknown"


@dataclass(frozen=True)
class CheckContext:
    """Test facts a checker may need besides the history."""

    name: str
    nodes: Tuple[Node, ...] = ()
    store_dir: Optional[Path] = None
    model: str = "cas-register"


class Checker(Protocol):
    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:  # pragma: no cover
        """Analyse *history* and return a result containing ``"valid"``."""


def merge_valid(values: Iterable[Validity]) -> Validity:
    """``False`` beats ``"unknown"`` beats ``True``."""
    merged: Validity = True
    for value in values:
        if value is False:
            return False
        if value is not True:
            merged = UNKNOWN
    return merged


class ComposeChecker:
    """Runs several named checkers over the same history."""

    def __init__(self, checkers: Mapping[str, Checker]) -> None:
        self.checkers = dict(checkers)

    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:
        results = {name: checker.check(history, context) for name, checker in self.checkers.items()}
        results["valid"] = merge_valid(result.get("valid", UNKNOWN) for result in results.values())
        return results


class IndependentChecker:
    """Applies a single-register checker to each key's sub-history."""

    def __init__(self, inner: Checker) -> None:
        self.inner = inner

    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:
        results: Dict[Any, Dict[str, Any]] = {}
        for key, ops in sorted(split_by_key(history).items()):
            sub_context = context
            if context.store_dir is not None:
                sub_context = CheckContext(
                    name=context.name,
                    nodes=context.nodes,
                    store_dir=context.store_dir / "independent" / str(key),
                    model=context.model,
                )
            results[key] = self.inner.check(ops, sub_context)
        failures = [key for key, result in results.items() if result.get("valid") is False]
        if failures:
            logger.warning("Keys with invalid histories: %s", failures)
        return {
            "valid": merge_valid(result.get("valid", UNKNOWN) for result in results.values()),
            "results": results,
            "failures": failures,
        }


class StatsChecker:
    """Counts outcomes per function; valid when every function succeeded at least once."""

    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:
        by_f: Dict[str, Dict[str, int]] = {}
        for op in history:
            if not op.is_client_op or op.type is OpType.INVOKE:
                continue
            counts = by_f.setdefault(op.f.value, {"ok": 0, "fail": 0, "info": 0})
            counts[op.type.value] += 1
        for counts in by_f.values():
            counts["count"] = counts["ok"] + counts["fail"] + counts["info"]
        valid = bool(by_f) and all(counts["ok"] > 0 for counts in by_f.values())
        return {"valid": valid, "by_f": by_f}


class PerfChecker:
    """Latency summary plus a scatter plot with fault windows shaded."""

    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:
        client_pairs = [pair for pair in pairs(history) if pair[0].is_client_op]
        result: Dict[str, Any] = {"valid": True, "latency_ms": latency_quantiles(client_pairs)}
        if context.store_dir is not None:
            plot = save_latency_plot(
                client_pairs,
                nemesis_windows(history),
                title=f"{context.name} latency",
                output_path=context.store_dir / "latency-raw.png",
            )
            result["latency_plot"] = str(plot)
        return result


class TimelineChecker:
    """Draws the operations of one key on a per-process timeline."""

    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:
        client_pairs = [pair for pair in pairs(history) if pair[0].is_client_op]
        result: Dict[str, Any] = {"valid": True, "operations": len(client_pairs)}
        if context.store_dir is not None:
            plot = save_timeline_plot(
                client_pairs, title=f"{context.name} timeline", output_path=context.store_dir / "timeline.png"
            )
            result["timeline"] = str(plot)
        return result


class UncheckedLinearizability:
    """Stands in for a missing linearizability checker; never vouches for a history."""

    def check(self, history: Sequence[Operation], context: CheckContext) -> Dict[str, Any]:
        return {"valid": UNKNOWN, "reason": "no linearizability checker configured"}


def load_checker(path: str) -> Checker:
    """Load a checker from ``"package.module:attribute"``.

    The attribute may be a checker object, a checker class, or a
    zero-argument factory.
    """
    target = import_string(path)
    checker = target() if isinstance(target, type) or not hasattr(target, "check") else target
    if not hasattr(checker, "check"):
        raise ConfigurationError(f"{path!r} does not provide a check() method")
    return checker


def default_checker(linearizable: Optional[Checker] = None) -> ComposeChecker:
    """``perf``, ``stats``, and per-key ``timeline`` and ``linear`` checks.

    Without *linearizable* the ``linear`` entry reports ``"unknown"``, so the
    composed verdict can never be ``True``.
    """
    if linearizable is None:
        logger.warning("No linearizability checker configured; the verdict will be unknown")
        linearizable = UncheckedLinearizability()
    return ComposeChecker(
        {
            "perf": PerfChecker(),
            "stats": StatsChecker(),
            "timeline": IndependentChecker(TimelineChecker()),
            "linear": IndependentChecker(linearizable),
        }
    )
