"""Base metric-logger utilities for kvtrain.

Metric loggers receive training metrics (loss, accuracy, throughput, ...)
keyed by step. Diagnostic messages go through the standard ``logging``
module instead.
"""

import time
from abc import ABC, abstractmethod
from typing import List, Mapping

from ..types import Logger, LogValue


def format_value(value: LogValue) -> str:
    """Format a metric value for display."""
    if isinstance(value, float):
        if value != 0.0 and (abs(value) < 1e-3 or abs(value) > 1e5):
            return f"{value:.3e}"
        return f"{value:.6f}"
    return str(value)


class BaseLogger(ABC):
    """Abstract base class for metric loggers."""

    def __init__(self, name: str = "kvtrain"):
        self.name = name
        self._start_time = time.time()

    @abstractmethod
    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        """Log a dictionary of metrics for ``step``."""

    def log_scalar(self, name: str, value: LogValue, step: int) -> None:
        """Log a single scalar value."""
        self.log_dict({name: value}, step)

    def flush(self) -> None:
        """Flush any buffered data. Override if needed."""
        pass

    def close(self) -> None:
        """Release resources. Override if needed."""
        pass

    def _get_elapsed_time(self) -> float:
        return time.time() - self._start_time


class MultiLogger:
    """Fan metrics out to several loggers."""

    def __init__(self, loggers: List[Logger]):
        self.loggers = loggers

    def log_scalar(self, name: str, value: LogValue, step: int) -> None:
        for logger in self.loggers:
            logger.log_scalar(name, value, step)

    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        for logger in self.loggers:
            logger.log_dict(metrics, step)

    def flush(self) -> None:
        for logger in self.loggers:
            if hasattr(logger, "flush"):
                logger.flush()

    def close(self) -> None:
        for logger in self.loggers:
            if hasattr(logger, "close"):
                logger.close()


class NullLogger:
    """No-op logger for when metric logging is disabled."""

    def log_scalar(self, name: str, value: LogValue, step: int) -> None:
        pass

    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        pass

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass
