"""Console metric logger."""

import sys
import time
from typing import Iterable, Mapping, Optional, TextIO

from .base import BaseLogger, format_value
from ..types import LogValue


class Basic(BaseLogger):
    """Print one line of metrics per call.

    Example:
        >>> logger = Basic(show_timestamp=False)
        >>> logger.log_dict({"epoch": 0, "accuracy": 0.95}, step=120)
        Step    120 |     5.23s | epoch=0 accuracy=0.950000

    Args:
        name: Name/prefix for this logger
        output: Output stream (defaults to sys.stdout)
        show_timestamp: Prefix lines with the wall-clock time
        show_elapsed: Include seconds since the logger was created
        exclude_prefixes: Metric name prefixes to leave out of the line
    """

    def __init__(
        self,
        name: str = "kvtrain",
        output: Optional[TextIO] = None,
        show_timestamp: bool = True,
        show_elapsed: bool = True,
        exclude_prefixes: Iterable[str] = (),
    ):
        super().__init__(name)
        self.output = output or sys.stdout
        self.show_timestamp = show_timestamp
        self.show_elapsed = show_elapsed
        self.exclude_prefixes = tuple(exclude_prefixes)

    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        shown = {
            key: value
            for key, value in metrics.items()
            if not key.startswith(self.exclude_prefixes)
        }
        if not shown:
            return

        components = []
        if self.show_timestamp:
            components.append(f"[{self._get_timestamp()}]")
        components.append(f"Step {step:6d}")
        if self.show_elapsed:
            components.append(f"{self._get_elapsed_time():8.2f}s")
        components.append(" ".join(f"{key}={format_value(value)}" for key, value in shown.items()))

        print(" | ".join(components), file=self.output)

    def _get_timestamp(self) -> str:
        return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())

    def flush(self) -> None:
        if hasattr(self.output, "flush"):
            self.output.flush()

    def close(self) -> None:
        # Don't close stdout/stderr
        if self.output not in (sys.stdout, sys.stderr):
            if hasattr(self.output, "close"):
                self.output.close()
