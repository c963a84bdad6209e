"""Checkpoint directory layout and metadata shared by checkpoint backends."""

import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import CheckpointError


@dataclass(frozen=True)
class CheckpointMetadata:
    """Metadata written next to each checkpoint."""

    step: int
    timestamp: float
    kvtrain_version: str
    jax_version: str
    extra: Optional[Dict[str, Any]] = None


class BaseCheckpointStrategy:
    """Step-numbered checkpoint directories under ``checkpoint_dir``.

    Each checkpoint lives in ``step_XXXXXXXX``; ``keep_n`` bounds how many are
    retained.
    """

    _STEP_DIR = re.compile(r"step_(\d+)$")

    def __init__(self, checkpoint_dir: str | Path, keep_n: int = 3):
        if keep_n <= 0:
            raise CheckpointError(
                "keep_n must be a positive integer",
                suggestion="Pass keep_n >= 1 to retain at least one checkpoint",
            )
        self.checkpoint_dir = Path(checkpoint_dir)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.keep_n = keep_n

    def get_checkpoint_path(self, step: int) -> Path:
        return self.checkpoint_dir / f"step_{step:08d}"

    def list_available_steps(self) -> List[int]:
        """Available checkpoint steps in ascending order."""
        steps = []
        for path in self.checkpoint_dir.iterdir():
            match = self._STEP_DIR.match(path.name)
            if path.is_dir() and match:
                steps.append(int(match.group(1)))
        return sorted(steps)

    def latest_step(self) -> Optional[int]:
        steps = self.list_available_steps()
        return steps[-1] if steps else None

    def resolve_step(self, step: Optional[int] = None) -> int:
        """Return ``step`` if it exists, or the latest step when ``step`` is None."""
        available = self.list_available_steps()
        if step is None:
            if not available:
                raise CheckpointError(
                    f"No checkpoints found in {self.checkpoint_dir}",
                    suggestion="Save a checkpoint first or point to a populated directory",
                )
            return available[-1]
        if step not in available:
            raise CheckpointError(
                f"Checkpoint for step {step} not found",
                suggestion=f"Available steps: {available}" if available else "No checkpoints available",
            )
        return step

    def cleanup_old_checkpoints(self) -> None:
        """Remove all but the newest ``keep_n`` checkpoints."""
        for step in self.list_available_steps()[:-self.keep_n]:
            shutil.rmtree(self.get_checkpoint_path(step))
