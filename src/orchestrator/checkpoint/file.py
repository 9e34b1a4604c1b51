"""File-backed checkpoint store.

One JSON document per thread. Writes go to a temporary file in the same
directory and are moved into place with ``os.replace``, so a crash or a
cancelled turn never leaves a partially written checkpoint behind.
"""

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from orchestrator.checkpoint.base import Checkpoint, CheckpointStore

logger = logging.getLogger(__name__)


class FileCheckpointStore(CheckpointStore):
    """Checkpoint store writing ``<root>/<hash(thread_id)>.json``."""

    def __init__(self, root: Path):
        """Initialize with a directory (created on first write)."""
        self.root = Path(root)

    def _path(self, thread_id: str) -> Path:
        digest = hashlib.sha256(thread_id.encode("utf-8")).hexdigest()[:32]
        return self.root / f"{digest}.json"

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def put(
        self, thread_id: str, snapshot: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None
    ) -> Checkpoint:
        """Atomically overwrite the thread's checkpoint file."""
        checkpoint = Checkpoint(thread_id=thread_id, state=snapshot, metadata=dict(metadata or {}))
        payload = checkpoint.model_dump_json()
        await asyncio.to_thread(self._write, self._path(thread_id), payload)
        return checkpoint

    async def get(self, thread_id: str) -> Optional[Checkpoint]:
        """Load the thread's checkpoint file if present."""
        path = self._path(thread_id)
        exists = await asyncio.to_thread(path.exists)
        if not exists:
            return None
        payload = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return Checkpoint.model_validate_json(payload)

    async def delete(self, thread_id: str) -> None:
        """Remove the thread's checkpoint file."""
        path = self._path(thread_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            logger.debug("No checkpoint to delete", extra={"thread_id": thread_id})
