"""
Profiling utilities for detection passes.

Measures wall-clock duration (perf_counter) and peak resident memory (psutil,
sampled on a background thread) of a block of code. The orchestrator wraps
every pass in `profile_block` so pass outcomes are reported with a duration
even when the pass fails.

Usage:
    from aml_monitor.utils.profiler import profile_block

    with profile_block("aml_processing") as stats:
        run_detection()

    print(stats.duration_seconds, stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)


@contextlib.contextmanager
def profile_block(
    label: str, sample_interval_ms: int = 250
) -> Generator[ProfileStats, None, None]:
    """
    Profile a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    sample_interval_ms : int
        Interval in milliseconds between RSS samples.

    Notes
    -----
    Stats are filled in on exit, including when the block raises.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    peak_rss = process.memory_info().rss
    stop_sampling = threading.Event()

    def _sample_memory() -> None:
        nonlocal peak_rss
        while not stop_sampling.wait(timeout=sample_interval_ms / 1000.0):
            try:
                peak_rss = max(peak_rss, process.memory_info().rss)
            except psutil.Error:
                return

    sampler = threading.Thread(target=_sample_memory, name=f"rss-{label}", daemon=True)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts

        stop_sampling.set()
        sampler.join(timeout=1.0)
        try:
            peak_rss = max(peak_rss, process.memory_info().rss)
        except psutil.Error:
            pass
        stats.peak_rss_bytes = peak_rss or None


__all__ = ["ProfileStats", "profile_block"]
