import os
import time
from datetime import datetime, timezone
from typing import NamedTuple

import psutil


class MemoryUsage(NamedTuple):
    num: float
    unit: str


# (upper bound, divisor, unit) ladder used when no unit is forced
_MEMORY_LADDER = (
    (1e3, 1, ""),
    (9e5, 1e3, "K"),
    (9e8, 1e6, "M"),
    (9e11, 1e9, "G"),
)
_FORCED_DIVISORS = {"B": (1, ""), "K": (1e3, "K"), "M": (1e6, "M"), "G": (1e9, "G"), "T": (1e12, "T")}


def memory_usage_bytes() -> int:
    """Resident set size of the current process."""
    return psutil.Process(os.getpid()).memory_info().rss


def format_memory(usage: float, unit: str = "") -> MemoryUsage:
    """
    Scale a byte count for display.

    With no unit the magnitude picks one of "", K, M, G, T using the
    1e3 / 9e5 / 9e8 / 9e11 cut-offs. A forced unit (B, K, M, G, T) skips
    the ladder.
    """
    unit = (unit or "").upper()
    if unit:
        if unit not in _FORCED_DIVISORS:
            raise ValueError(f"Unknown memory unit: {unit!r}")
        divisor, label = _FORCED_DIVISORS[unit]
        if divisor == 1:
            return MemoryUsage(usage, label)
        return MemoryUsage(round(usage / divisor, 2), label)

    for bound, divisor, label in _MEMORY_LADDER:
        if usage < bound:
            if divisor == 1:
                return MemoryUsage(usage, label)
            return MemoryUsage(round(usage / divisor, 2), label)
    return MemoryUsage(round(usage / 1e12, 2), "T")


def collect_process_metrics() -> dict:
    """
    Collect process-level metrics attached to a finished report.
    Returns a structured dict; fields that cannot be read are None.
    """
    metrics = {}
    metrics["timestamp"] = datetime.now(timezone.utc).isoformat()
    metrics["uptime_seconds"] = round(time.perf_counter(), 2)

    try:
        proc = psutil.Process(os.getpid())
        with proc.oneshot():
            metrics["rss_bytes"] = proc.memory_info().rss
            metrics["cpu_percent"] = proc.cpu_percent(interval=None)
            metrics["threads"] = proc.num_threads()
    except psutil.Error as e:
        metrics["rss_bytes"] = None
        metrics["cpu_percent"] = None
        metrics["threads"] = None
        metrics["error"] = str(e)

    return metrics


def to_ms(seconds: float | None) -> float:
    """Seconds to milliseconds, rounded to one decimal. None reads as 0."""
    if seconds is None:
        return 0.0
    return round(seconds * 1000, 1)
