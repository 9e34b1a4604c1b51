"""Out-of-band storage for evicted tool results.

Full payloads are kept here, keyed by ``(thread_id, reference)``, while the
conversation only carries a preview. The in-memory store is bounded and drops
the least recently used payload once full.
"""

import abc
import hashlib
import logging
import os
import tempfile
from collections import OrderedDict
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ResultStore(abc.ABC):
    """Keyed store for full tool result payloads."""

    @abc.abstractmethod
    def put(self, thread_id: str, reference: str, content: str) -> None:
        """Store the full payload for a reference."""

    @abc.abstractmethod
    def get(self, thread_id: str, reference: str) -> Optional[str]:
        """Return the payload, or None when it is unknown or was dropped."""

    @abc.abstractmethod
    def delete_thread(self, thread_id: str) -> None:
        """Drop every payload stored for a thread."""


class InMemoryResultStore(ResultStore):
    """Bounded LRU result store."""

    def __init__(self, max_entries: int = 256):
        """Initialize with a capacity in entries."""
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: "OrderedDict[tuple[str, str], str]" = OrderedDict()

    def put(self, thread_id: str, reference: str, content: str) -> None:
        """Store a payload, dropping the least recently used one when full."""
        key = (thread_id, reference)
        self._entries[key] = content
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            (dropped_thread, dropped_ref), _ = self._entries.popitem(last=False)
            logger.info(
                "Evicted result store full; dropped oldest payload",
                extra={"thread_id": dropped_thread, "reference": dropped_ref},
            )

    def get(self, thread_id: str, reference: str) -> Optional[str]:
        """Return a payload and mark it as recently used."""
        key = (thread_id, reference)
        content = self._entries.get(key)
        if content is not None:
            self._entries.move_to_end(key)
        return content

    def delete_thread(self, thread_id: str) -> None:
        """Drop every payload stored for a thread."""
        for key in [k for k in self._entries if k[0] == thread_id]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


def _safe_name(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]


class FileResultStore(ResultStore):
    """Result store writing one file per payload under ``root/<thread>/``."""

    def __init__(self, root: Path):
        """Initialize with a root directory (created on demand)."""
        self.root = Path(root)

    def _path(self, thread_id: str, reference: str) -> Path:
        return self.root / _safe_name(thread_id) / f"{_safe_name(reference)}.txt"

    def put(self, thread_id: str, reference: str, content: str) -> None:
        """Write the payload atomically."""
        path = self._path(thread_id, reference)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, thread_id: str, reference: str) -> Optional[str]:
        """Read the payload if it exists."""
        path = self._path(thread_id, reference)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def delete_thread(self, thread_id: str) -> None:
        """Remove the thread directory."""
        directory = self.root / _safe_name(thread_id)
        if not directory.exists():
            return
        for child in directory.iterdir():
            child.unlink()
        directory.rmdir()
