"""Checkpoint stores for conversation snapshots."""

from pathlib import Path

from orchestrator.checkpoint.base import Checkpoint, CheckpointStore
from orchestrator.checkpoint.file import FileCheckpointStore
from orchestrator.checkpoint.memory import InMemoryCheckpointStore
from orchestrator.config import EngineSettings


def create_checkpoint_store(settings: EngineSettings) -> CheckpointStore:
    """Build the checkpoint store selected by ``settings.checkpoint_backend``."""
    if settings.checkpoint_backend == "file":
        return FileCheckpointStore(Path(settings.checkpoint_path))
    return InMemoryCheckpointStore()


__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "create_checkpoint_store",
]
