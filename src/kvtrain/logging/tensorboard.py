"""TensorBoard metric logger."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Mapping

from tensorboard.compat.proto import event_pb2, summary_pb2  # type: ignore
from tensorboard.summary.writer.event_file_writer import EventFileWriter  # type: ignore

from .base import BaseLogger
from ..types import LogValue


class TensorBoardLogger(BaseLogger):
    """Write numeric metrics as TensorBoard scalar events.

    Non-numeric values (strings, run descriptions) are skipped.
    """

    def __init__(
        self,
        logdir: str | Path,
        *,
        name: str = "kvtrain",
        flush_secs: float = 2.0,
    ) -> None:
        super().__init__(name=name)
        self.logdir = Path(logdir)
        self.logdir.mkdir(parents=True, exist_ok=True)
        self._writer = EventFileWriter(str(self.logdir), flush_secs=flush_secs)

    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        values = [
            summary_pb2.Summary.Value(tag=key, simple_value=float(value))
            for key, value in metrics.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        ]
        if not values:
            return
        event = event_pb2.Event(
            wall_time=time.time(), step=step, summary=summary_pb2.Summary(value=values)
        )
        self._writer.add_event(event)

    def flush(self) -> None:
        self._writer.flush()

    def close(self) -> None:
        try:
            self._writer.flush()
        finally:
            self._writer.close()


__all__ = ["TensorBoardLogger"]
