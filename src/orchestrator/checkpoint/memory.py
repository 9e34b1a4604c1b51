"""In-memory checkpoint store."""

import copy
from typing import Any, Dict, Optional

from orchestrator.checkpoint.base import Checkpoint, CheckpointStore


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store; snapshots are deep-copied in and out."""

    def __init__(self):
        """Initialize empty storage."""
        self._checkpoints: Dict[str, Checkpoint] = {}

    async def put(
        self, thread_id: str, snapshot: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None
    ) -> Checkpoint:
        """Overwrite the thread's checkpoint."""
        checkpoint = Checkpoint(
            thread_id=thread_id,
            state=copy.deepcopy(snapshot),
            metadata=dict(metadata or {}),
        )
        self._checkpoints[thread_id] = checkpoint
        return checkpoint

    async def get(self, thread_id: str) -> Optional[Checkpoint]:
        """Return a copy of the thread's checkpoint."""
        checkpoint = self._checkpoints.get(thread_id)
        if checkpoint is None:
            return None
        return checkpoint.model_copy(deep=True)

    async def delete(self, thread_id: str) -> None:
        """Remove the thread's checkpoint."""
        self._checkpoints.pop(thread_id, None)

    def __len__(self) -> int:
        return len(self._checkpoints)
