"""CSV metric logger."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, List, Mapping

from .base import BaseLogger
from ..types import LogValue


class CSVLogger(BaseLogger):
    """Write one CSV row per ``log_dict`` call.

    Columns are the union of all metric names seen so far, preceded by
    ``step``. When a new metric name appears the file is rewritten with the
    wider header; earlier rows get empty cells for it.
    """

    def __init__(self, path: str | Path, *, name: str = "kvtrain", append: bool = False) -> None:
        super().__init__(name=name)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._rows: List[Dict[str, LogValue]] = []
        self._fieldnames: List[str] = ["step"]

        if append and self.path.exists():
            with self.path.open(newline="", encoding="utf-8") as handle:
                reader = csv.DictReader(handle)
                self._fieldnames = list(reader.fieldnames or ["step"])
                self._rows = [dict(row) for row in reader]
        self._rewrite()

    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        if not metrics:
            return

        row: Dict[str, LogValue] = {"step": step, **metrics}
        self._rows.append(row)
        new_keys = [key for key in row if key not in self._fieldnames]
        if new_keys:
            self._fieldnames.extend(new_keys)
            self._rewrite()
            return

        with self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=self._fieldnames, restval="")
            writer.writerow(row)

    def _rewrite(self) -> None:
        with self.path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=self._fieldnames, restval="")
            writer.writeheader()
            writer.writerows(self._rows)


__all__ = ["CSVLogger"]
