from __future__ import annotations

"""Latency and timeline plots for test histories.

In the latency plot each completed client operation becomes one point
(completion time vs latency), coloured by outcome and marked by function.
Fault windows are shaded so latency spikes can be lined up with partitions.
The timeline plot draws one row per process with a bar per operation.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from tmharness.history import Pair, Window
from tmharness.types import OpFunction, OpType

_COLORS: Dict[OpType, str] = {
    OpType.OK: "#1f77b4",
    OpType.FAIL: "#d62728",
    OpType.INFO: "#ff7f0e",
}
_MARKERS: Dict[OpFunction, str] = {
    OpFunction.READ: "o",
    OpFunction.WRITE: "^",
    OpFunction.CAS: "s",
}


def latency_points(pairs: Sequence[Pair]) -> Dict[Tuple[OpFunction, OpType], np.ndarray]:
    """Group completed pairs into ``(time_s, latency_ms)`` arrays.

    Returns:
        Mapping ``(f, completion type)`` -> array of shape ``(k, 2)``.
    """
    groups: Dict[Tuple[OpFunction, OpType], List[Tuple[float, float]]] = {}
    for invoke, done in pairs:
        if done is None or invoke.time is None or done.time is None:
            continue
        if invoke.f not in _MARKERS:
            continue
        groups.setdefault((invoke.f, done.type), []).append(
            (done.time / 1e9, (done.time - invoke.time) / 1e6)
        )
    return {key: np.asarray(points, dtype=float) for key, points in groups.items()}


def latency_quantiles(pairs: Sequence[Pair], qs: Sequence[float] = (0.5, 0.95, 0.99, 1.0)) -> Dict[str, float]:
    """Latency quantiles in milliseconds over every completed operation."""
    samples = [
        (done.time - invoke.time) / 1e6
        for invoke, done in pairs
        if done is not None and invoke.time is not None and done.time is not None and invoke.f in _MARKERS
    ]
    if not samples:
        return {}
    values = np.quantile(np.asarray(samples, dtype=float), qs)
    return {f"p{round(q * 100)}": float(v) for q, v in zip(qs, values)}


def save_latency_plot(
    pairs: Sequence[Pair],
    windows: Sequence[Window],
    *,
    title: str,
    output_path: Path,
    end_time_s: Optional[float] = None,
) -> Path:
    """Save a raw latency scatter plot and return its path.

    Args:
        pairs: Invocation/completion pairs from the history.
        windows: Fault windows in nanoseconds; open windows extend to the end.
        title: Figure title.
        output_path: Destination file path (parent directories will be created).
        end_time_s: Where open windows stop; defaults to the last point.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    points = latency_points(pairs)
    _, ax = plt.subplots(figsize=(10, 4.5), constrained_layout=True)

    last = end_time_s
    if last is None:
        last = max((float(arr[:, 0].max()) for arr in points.values() if len(arr)), default=0.0)
    for start_ns, stop_ns in windows:
        stop_s = stop_ns / 1e9 if stop_ns is not None else last
        ax.axvspan(start_ns / 1e9, stop_s, color="#999999", alpha=0.2, linewidth=0)

    for (f, outcome), arr in sorted(points.items(), key=lambda item: (item[0][0].value, item[0][1].value)):
        ax.scatter(
            arr[:, 0],
            arr[:, 1],
            s=8,
            marker=_MARKERS[f],
            color=_COLORS.get(outcome, "#7f7f7f"),
            label=f"{f.value} {outcome.value}",
        )

    ax.set_yscale("log")
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Latency (ms)")
    ax.set_title(title)
    ax.grid(True, linestyle=":", linewidth=0.8, alpha=0.8)
    if points:
        ax.legend(loc="upper left", fontsize=8, markerscale=1.5)

    plt.savefig(output_path, dpi=150)
    plt.close()
    return output_path


def save_timeline_plot(pairs: Sequence[Pair], *, title: str, output_path: Path) -> Path:
    """Save a per-process timeline of operations and return its path.

    Each operation is a bar from invocation to completion on its process's
    row, coloured by outcome. Operations that never completed are grey and
    run to the last completion in the history.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    timed = [(invoke, done) for invoke, done in pairs if invoke.time is not None]
    end_ns = max((done.time for _, done in timed if done is not None and done.time is not None), default=0)
    processes = sorted({invoke.process for invoke, _ in timed})
    rows = {process: i for i, process in enumerate(processes)}

    _, ax = plt.subplots(figsize=(10, max(2.0, 0.35 * len(processes) + 1.0)), constrained_layout=True)
    for invoke, done in timed:
        start_s = invoke.time / 1e9
        if done is not None and done.time is not None:
            stop_s, color = done.time / 1e9, _COLORS.get(done.type, "#7f7f7f")
        else:
            stop_s, color = max(end_ns, invoke.time) / 1e9, "#bbbbbb"
        row = rows[invoke.process]
        ax.broken_barh([(start_s, max(stop_s - start_s, 1e-4))], (row - 0.4, 0.8), facecolors=color)
        label = invoke.f.value if invoke.value is None else f"{invoke.f.value} {invoke.value}"
        ax.text(start_s, row, label, fontsize=5, va="center", clip_on=True)

    ax.set_yticks(range(len(processes)))
    ax.set_yticklabels([str(process) for process in processes])
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Process")
    ax.set_title(title)
    ax.grid(True, axis="x", linestyle=":", linewidth=0.8, alpha=0.8)

    plt.savefig(output_path, dpi=150)
    plt.close()
    return output_path
