# kvtrain checkpointing components

from .checkpoint import BaseCheckpointStrategy, CheckpointMetadata
from .orbax_io import OrbaxCheckpoint

__all__ = [
    "BaseCheckpointStrategy",
    "CheckpointMetadata",
    "OrbaxCheckpoint",
]
