"""Throughput and latency metering for training loops.

``MetricsMeter`` keeps a short window of step latencies and sample counts and
turns them into ``meter/*`` metrics that loggers report next to the step's
own metrics.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Deque, Optional

from ..types import LogDict


class MetricsMeter:
    """Track step latency and samples/s.

    Args:
        window: Number of recent steps used for moving averages
    """

    def __init__(self, window: int = 20) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self.window = window
        self.reset()

    def reset(self) -> None:
        """Reset all accumulated statistics."""
        self._start_time = time.perf_counter()
        self._step_times: Deque[float] = deque(maxlen=self.window)
        self._window_samples: Deque[int] = deque(maxlen=self.window)
        self.total_samples = 0

    def update(self, *, step: int, batch_size: Optional[int], step_time_s: float) -> LogDict:
        """Record one step and return the derived metrics.

        Args:
            step: Step number the metrics belong to
            batch_size: Samples processed this step (None when unknown)
            step_time_s: Wall-clock latency of the step in seconds
        """
        if step_time_s < 0:
            raise ValueError("step_time_s must be non-negative")

        self._step_times.append(step_time_s)
        extras: LogDict = {"meter/step_time_s": step_time_s}

        if batch_size is not None and batch_size >= 0:
            self.total_samples += batch_size
            self._window_samples.append(batch_size)
            window_time = sum(self._step_times)
            if window_time > 0:
                extras["meter/samples_per_s_ma"] = sum(self._window_samples) / window_time

        extras["meter/step_time_s_ma"] = sum(self._step_times) / len(self._step_times)

        elapsed = self.elapsed()
        if elapsed > 0 and self.total_samples:
            extras["meter/samples_per_s"] = self.total_samples / elapsed

        extras["meter/samples"] = self.total_samples
        extras["meter/step"] = step
        return extras

    def elapsed(self) -> float:
        """Seconds since the last reset."""
        return time.perf_counter() - self._start_time


__all__ = ["MetricsMeter"]
