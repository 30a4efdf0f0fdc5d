"""
blockhunt/projection/storage.py

Key-value storage backends for the projection store.

Provides two backends:
1. Memory - Fast, volatile (tests, dev network)
2. Local disk - Survives restarts

Every put replaces the whole value for a key in one step, so a reader never
sees half of a record.
"""

import os
import json
import logging
import hashlib
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from abc import ABC, abstractmethod

logger = logging.getLogger("blockhunt.projection.storage")


# ============================================================================
# CONSTANTS
# ============================================================================

# Default storage path
DEFAULT_STORAGE_DIR = Path.home() / ".blockhunt" / "projection"

INDEX_FILE = "index.json"


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageError(Exception):
    """Raised when a backend cannot persist a value."""
    pass


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class FileBackend(StorageBackend):
    """
    Local file storage backend.

    One file per key, written to a temporary file and renamed into place.
    An index file maps keys to file names.
    """

    def __init__(self, storage_dir: Optional[Path] = None):
        self.storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._index_file = self.storage_dir / INDEX_FILE
        self._index: Dict[str, str] = self._load_index()

    def _load_index(self) -> Dict[str, str]:
        """Load key index from disk."""
        if self._index_file.exists():
            try:
                with open(self._index_file, "r") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load index, rebuilding empty: {e}")
        return {}

    def _save_index(self) -> None:
        self._atomic_write(self._index_file, json.dumps(self._index).encode())

    def _key_to_path(self, key: str) -> Path:
        """Convert key to file path."""
        # Use hash to avoid filesystem issues with special chars
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.json"

    def _atomic_write(self, path: Path, data: bytes) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, key: str) -> Optional[bytes]:
        if key not in self._index:
            return None
        path = self._key_to_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            logger.warning(f"Index lists {key} but {path.name} is missing")
            return None

    async def put(self, key: str, value: bytes) -> None:
        path = self._key_to_path(key)
        try:
            self._atomic_write(path, value)
            if key not in self._index:
                self._index[key] = path.name
                self._save_index()
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        if key not in self._index:
            return False

        path = self._key_to_path(key)
        try:
            if path.exists():
                path.unlink()
            del self._index[key]
            self._save_index()
            return True
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            raise StorageError(f"Failed to delete {key}: {e}") from e

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._index if key.startswith(prefix)]
