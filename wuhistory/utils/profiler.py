"""
Resource profiling for stress workloads.

`profile_block` wraps one workload run and records wall time, process CPU
percent, sampled peak RSS and the tracemalloc peak. RSS is sampled from a
background thread because writer pools allocate in bursts that start/end
snapshots miss.

Usage:
    from wuhistory.utils.profiler import profile_block

    with profile_block("distinct") as stats:
        inserted = run_workload()

    print(stats.rate(inserted), stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
import tracemalloc
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, Optional

import psutil


@dataclass
class ProfileStats:
    """Measurements for one profiled block."""

    label: str
    start_ts: float = 0.0
    end_ts: float = 0.0
    duration_seconds: float = 0.0
    peak_rss_bytes: Optional[int] = None
    peak_traced_bytes: Optional[int] = None
    cpu_percent: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def rate(self, count: int) -> float:
        """Items per second over the block; 0.0 for an unmeasured block."""
        if self.duration_seconds <= 0:
            return 0.0
        return count / self.duration_seconds

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _RssSampler(threading.Thread):
    """Polls the process RSS until stopped and keeps the maximum."""

    def __init__(self, process: psutil.Process, interval_s: float) -> None:
        super().__init__(name="rss-sampler", daemon=True)
        self._process = process
        self._interval_s = interval_s
        self._stopped = threading.Event()
        self.peak = process.memory_info().rss

    def run(self) -> None:
        while not self._stopped.is_set():
            try:
                self.peak = max(self.peak, self._process.memory_info().rss)
            except psutil.Error:
                return
            self._stopped.wait(self._interval_s)

    def stop(self) -> int:
        self._stopped.set()
        self.join(timeout=1.0)
        return self.peak


@contextlib.contextmanager
def profile_block(
    label: str, sample_interval_ms: int = 50, enable_tracemalloc: bool = True
) -> Iterator[ProfileStats]:
    """
    Profile the enclosed block; the yielded stats are filled in on exit.

    Parameters
    ----------
    label : str
        Name recorded on the stats (usually the workload name).
    sample_interval_ms : int
        RSS polling interval.
    enable_tracemalloc : bool
        Track the Python allocation peak. tracemalloc is only stopped on exit
        if this block started it.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    started_tracing = enable_tracemalloc and not tracemalloc.is_tracing()
    if started_tracing:
        tracemalloc.start()

    process.cpu_percent(interval=None)  # primes the CPU counter
    sampler = _RssSampler(process, sample_interval_ms / 1000.0)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        peak = sampler.stop()
        stats.peak_rss_bytes = peak or None
        stats.cpu_percent = process.cpu_percent(interval=None)
        if enable_tracemalloc and tracemalloc.is_tracing():
            stats.peak_traced_bytes = tracemalloc.get_traced_memory()[1]
            if started_tracing:
                tracemalloc.stop()


__all__ = ["ProfileStats", "profile_block"]
