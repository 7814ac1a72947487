"""Profiler: measure wall-clock execution time of a loaded executable."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence

from gpu_runtime.backend import DeviceBuffer
from gpu_runtime.executor import LoadedExecutable


@dataclass
class ProfileResult:
    """Timing summary over the measured iterations (warmup excluded)."""
    total_ms: float  # mean per iteration
    iterations: int
    min_ms: float = 0.0
    max_ms: float = 0.0


def profile(
    loaded: LoadedExecutable,
    argument_handles: Sequence[Sequence[DeviceBuffer]],
    warmup: int = 3,
    iterations: int = 10,
) -> ProfileResult:
    """Profile execution.

    Runs warmup iterations then measures each iteration, including the wait
    for every result buffer. Results are freed as soon as they are timed.
    """
    if iterations < 1:
        raise ValueError(f"iterations must be >= 1, got {iterations}")

    for _ in range(warmup):
        _run_once(loaded, argument_handles)

    samples = []
    for _ in range(iterations):
        start = time.perf_counter()
        _run_once(loaded, argument_handles)
        samples.append((time.perf_counter() - start) * 1000)

    return ProfileResult(
        total_ms=sum(samples) / iterations,
        iterations=iterations,
        min_ms=min(samples),
        max_ms=max(samples),
    )


def _run_once(loaded: LoadedExecutable, argument_handles):
    results = loaded.execute(argument_handles)
    for outputs in results:
        for buf in outputs:
            buf.block_until_ready()
            buf.delete()
