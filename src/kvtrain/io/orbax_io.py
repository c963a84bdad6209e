"""Orbax-based checkpoint strategy for kvtrain."""

from __future__ import annotations

import json
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

import jax
from orbax.checkpoint import PyTreeCheckpointer  # type: ignore[import]

from .._version import __version__ as KVTRAIN_VERSION
from ..exceptions import CheckpointError
from ..types import PyTree
from .checkpoint import BaseCheckpointStrategy, CheckpointMetadata


class OrbaxCheckpoint(BaseCheckpointStrategy):
    """Persist training state with Orbax.

    ``save`` writes the state's ``params`` and the leaves of its ``opt_state``
    under ``step_XXXXXXXX/state`` and the step number to ``metadata.json``.
    ``restore`` returns a dict with ``params``, ``opt_state`` (or None) and
    ``step``; the engine turns it back into a ``TrainState``.
    """

    def __init__(self, checkpoint_dir: str | Path, keep_n: int = 3) -> None:
        super().__init__(checkpoint_dir, keep_n=keep_n)
        try:
            self._checkpointer = PyTreeCheckpointer()
        except Exception as exc:
            raise CheckpointError(
                f"Failed to initialize Orbax checkpointer: {exc}",
                suggestion="Install orbax-checkpoint and ensure it matches the JAX version",
            ) from exc

    def save(self, state: PyTree) -> None:
        step = getattr(state, "step", None)
        if not isinstance(step, int):
            raise CheckpointError(
                f"State.step must be an integer, got {type(step).__name__}",
                suggestion="Save a TrainState created by the Engine",
            )

        item: Dict[str, Any] = {"params": dict(state.params)}
        opt_leaves = jax.tree_util.tree_leaves(getattr(state, "opt_state", None))
        if opt_leaves:
            # zero-padded keys keep leaf order through restore
            item["opt_state"] = {f"{i:06d}": leaf for i, leaf in enumerate(opt_leaves)}

        checkpoint_path = self.get_checkpoint_path(step)
        checkpoint_path.mkdir(parents=True, exist_ok=True)
        try:
            self._checkpointer.save(self._state_path(checkpoint_path), item, force=True)
            self._write_metadata(checkpoint_path, step)
            self.cleanup_old_checkpoints()
        except Exception as exc:
            raise CheckpointError(
                f"Failed to save checkpoint for step {step}: {exc}",
                suggestion="Verify filesystem permissions and available disk space",
            ) from exc

    def restore(self, step: int | None = None) -> Dict[str, Any]:
        resolved_step = self.resolve_step(step)
        checkpoint_path = self.get_checkpoint_path(resolved_step)
        try:
            item = self._checkpointer.restore(self._state_path(checkpoint_path))
        except Exception as exc:
            raise CheckpointError(
                f"Failed to restore checkpoint for step {resolved_step}: {exc}",
                suggestion=f"Available steps: {self.list_available_steps()}",
            ) from exc

        opt_state = item.get("opt_state")
        return {
            "params": dict(item["params"]),
            "opt_state": [opt_state[key] for key in sorted(opt_state)] if opt_state else None,
            "step": resolved_step,
        }

    @staticmethod
    def _state_path(checkpoint_path: Path) -> str:
        return (checkpoint_path / "state").absolute().as_posix()

    def _write_metadata(self, path: Path, step: int) -> None:
        metadata = CheckpointMetadata(
            step=step,
            timestamp=time.time(),
            kvtrain_version=KVTRAIN_VERSION,
            jax_version=jax.__version__,
            extra={"keep_n": self.keep_n},
        )
        with open(path / "metadata.json", "w", encoding="utf-8") as fh:
            json.dump(asdict(metadata), fh, indent=2)
