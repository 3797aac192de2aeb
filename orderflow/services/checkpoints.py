"""
Change Feed Checkpoints

Persists the position up to which a feed consumer has fully handled
events, so a restarted worker resumes instead of starting over.

The file store keeps one JSON object per file ({consumer: position}) and
guards read-modify-write cycles with a FileLock, the same way concurrent
processes share data files elsewhere in the service. Writes go to a
temporary file that is renamed into place.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from orderflow.core.config import Settings, StoreBackend

logger = logging.getLogger(__name__)


class BaseCheckpointStore(ABC):
    """Abstract checkpoint persistence."""

    @abstractmethod
    def load(self, consumer: str) -> int:
        """Return the saved position for ``consumer`` (0 when none)."""
        pass

    @abstractmethod
    def save(self, consumer: str, position: int) -> None:
        pass


class MemoryCheckpointStore(BaseCheckpointStore):
    """Checkpoints that live only as long as the process."""

    def __init__(self):
        self.positions: dict[str, int] = {}

    def load(self, consumer: str) -> int:
        return self.positions.get(consumer, 0)

    def save(self, consumer: str, position: int) -> None:
        self.positions[consumer] = position


class FileCheckpointStore(BaseCheckpointStore):
    """JSON checkpoint file shared safely between processes."""

    def __init__(self, path: str, lock_timeout: float = 10.0):
        self.path = Path(path)
        self.lock_path = Path(f"{path}.lock")
        self.lock_timeout = lock_timeout

    def _ensure_dir(self) -> None:
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created checkpoint directory: {self.path.parent}")

    def _read(self) -> dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable checkpoint file {self.path}: {e}")
            return {}
        return {k: int(v) for k, v in data.items()}

    def load(self, consumer: str) -> int:
        self._ensure_dir()
        with FileLock(str(self.lock_path), timeout=self.lock_timeout):
            return self._read().get(consumer, 0)

    def save(self, consumer: str, position: int) -> None:
        self._ensure_dir()
        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                data = self._read()
                data[consumer] = position
                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
                os.replace(tmp_path, self.path)
        except Timeout:
            # The next save carries a position at least as recent
            logger.warning(f"Checkpoint lock busy; position {position} not saved")


def create_checkpoint_store(settings: Settings, path: Optional[str] = None) -> BaseCheckpointStore:
    """
    File checkpoints when a path is configured, memory otherwise.

    The in-memory order store restarts its feed at 1 in every process, so
    its cursor must not outlive the process either.
    """
    if settings.resolved_store_backend == StoreBackend.MEMORY:
        logger.info("Feed checkpoints: in memory (in-memory order store)")
        return MemoryCheckpointStore()

    path = path or settings.feed_checkpoint_path
    if path:
        logger.info(f"Feed checkpoints: {path}")
        return FileCheckpointStore(path)
    logger.info("Feed checkpoints: in memory")
    return MemoryCheckpointStore()
