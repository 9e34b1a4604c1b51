"""Checkpoint store interface."""

import abc
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class Checkpoint(BaseModel):
    """The single live snapshot for a thread."""

    thread_id: str
    state: Dict[str, Any]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    written_at: float = Field(default_factory=time.time)


class CheckpointStore(abc.ABC):
    """Swappable persistence strategy for conversation snapshots.

    ``put`` overwrites the thread's checkpoint (last write wins). Callers treat
    failures of either method as non-fatal.
    """

    @abc.abstractmethod
    async def put(
        self, thread_id: str, snapshot: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None
    ) -> Checkpoint:
        """Persist ``snapshot`` as the live checkpoint for ``thread_id``."""

    @abc.abstractmethod
    async def get(self, thread_id: str) -> Optional[Checkpoint]:
        """Return the live checkpoint, or None when the thread is unknown."""

    @abc.abstractmethod
    async def delete(self, thread_id: str) -> None:
        """Remove the thread's checkpoint."""
