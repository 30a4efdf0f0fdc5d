"""
blockhunt/projection/

Local projection of hackathon records: ledger-confirmed fields plus the
off-ledger metadata the ledger does not carry.
"""

from .store import (
    ProjectionStore,
    HackathonProjection,
    HackathonStatus,
    MirroredFields,
    METADATA_FIELDS,
)

from .storage import (
    StorageBackend,
    MemoryBackend,
    FileBackend,
    StorageError,
)

__all__ = [
    "ProjectionStore",
    "HackathonProjection",
    "HackathonStatus",
    "MirroredFields",
    "METADATA_FIELDS",
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "StorageError",
]
