"""
blockhunt/projection/store.py

Local projection of hackathon state.

A projection record holds two kinds of fields:

- Off-ledger metadata (title, description, schedule, organizer). The
  projection is the only source for these.
- Mirrored fields (registered, ended, funded amount, winners, distributed).
  The ledger is authoritative for these; they are only written through
  apply_mirror, after the ledger has confirmed the change, and always as one
  write of the whole record.

Usage:
    store = ProjectionStore()
    await store.create(1, "ETH Hack", "48h build", organizer_id=7)
    record = await store.get(1)
    print(record.status())
"""

import json
import logging
import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import trio

from ..config import StoreConfig
from ..errors import HackathonNotFound, ValidationError
from .storage import StorageBackend, MemoryBackend, FileBackend

logger = logging.getLogger("blockhunt.projection.store")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class HackathonStatus(Enum):
    """Schedule-derived status shown to participants."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"


# Fields only the projection owns; update_metadata may touch these
METADATA_FIELDS = frozenset({"title", "description", "start_date", "end_date"})


@dataclass(frozen=True)
class MirroredFields:
    """The ledger-authoritative subset of a hackathon record."""
    registered: bool = False
    ended: bool = False
    funded: bool = False
    total_funding: int = 0
    winners: Tuple[str, ...] = ()
    distributed: bool = False

    @classmethod
    def from_ledger(cls, view: Any) -> "MirroredFields":
        """Build from a LedgerRecordView."""
        return cls(
            registered=view.exists,
            ended=view.ended,
            funded=view.funded,
            total_funding=view.total_funding,
            winners=tuple(w.lower() for w in view.winners),
            distributed=view.distributed,
        )

    def diff(self, other: "MirroredFields") -> Dict[str, Tuple[Any, Any]]:
        """Fields that differ, as {name: (self_value, other_value)}."""
        result = {}
        for f in fields(self):
            mine = getattr(self, f.name)
            theirs = getattr(other, f.name)
            if mine != theirs:
                result[f.name] = (mine, theirs)
        return result


@dataclass
class HackathonProjection:
    """Projection record for one hackathon."""
    hackathon_id: int
    title: str
    description: str
    organizer_id: int
    start_date: Optional[float] = None
    end_date: Optional[float] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    # Mirrored from the ledger
    registered: bool = False
    manually_ended: bool = False
    funded_amount: int = 0
    winners: List[str] = field(default_factory=list)
    prizes_distributed: bool = False

    # Written together with the mirrored field they describe
    manually_ended_at: Optional[float] = None
    funded_at: Optional[float] = None
    winners_set_at: Optional[float] = None
    prizes_distributed_at: Optional[float] = None

    @property
    def funded(self) -> bool:
        return self.funded_amount > 0

    def status(self, now: Optional[float] = None) -> HackathonStatus:
        """
        Schedule status.

        A manually ended hackathon is always ENDED; otherwise the status
        follows start_date and end_date (both inclusive for ACTIVE).
        """
        if self.manually_ended:
            return HackathonStatus.ENDED
        now = time.time() if now is None else now
        if self.start_date is not None and now < self.start_date:
            return HackathonStatus.UPCOMING
        if self.end_date is not None and now > self.end_date:
            return HackathonStatus.ENDED
        return HackathonStatus.ACTIVE

    def mirror(self) -> MirroredFields:
        return MirroredFields(
            registered=self.registered,
            ended=self.manually_ended,
            funded=self.funded,
            total_funding=self.funded_amount,
            winners=tuple(self.winners),
            distributed=self.prizes_distributed,
        )

    def to_dict(self) -> dict:
        return {
            'hackathon_id': self.hackathon_id,
            'title': self.title,
            'description': self.description,
            'organizer_id': self.organizer_id,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'registered': self.registered,
            'manually_ended': self.manually_ended,
            'funded_amount': self.funded_amount,
            'winners': list(self.winners),
            'prizes_distributed': self.prizes_distributed,
            'manually_ended_at': self.manually_ended_at,
            'funded_at': self.funded_at,
            'winners_set_at': self.winners_set_at,
            'prizes_distributed_at': self.prizes_distributed_at,
            'status': self.status().value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HackathonProjection":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


# ============================================================================
# PROJECTION STORE
# ============================================================================

class ProjectionStore:
    """
    Async store of HackathonProjection records.

    Writes are serialized by a lock and each write replaces the full
    record, so concurrent readers see either the old or the new record.
    """

    KEY_PREFIX = "hackathon:"

    def __init__(self, backend: Optional[StorageBackend] = None, namespace: str = "hackathons"):
        """
        Initialize ProjectionStore.

        Args:
            backend: Storage backend (defaults to in-memory)
            namespace: Key namespace for isolation
        """
        self.backend = backend or MemoryBackend()
        self.namespace = namespace
        self._write_lock = trio.Lock()

    @classmethod
    def from_config(cls, config: StoreConfig) -> "ProjectionStore":
        if config.storage_dir:
            backend: StorageBackend = FileBackend(Path(config.storage_dir))
        else:
            backend = MemoryBackend()
        return cls(backend=backend, namespace=config.namespace)

    def _make_key(self, hackathon_id: int) -> str:
        return f"{self.namespace}:{self.KEY_PREFIX}{hackathon_id}"

    async def _write(self, record: HackathonProjection) -> None:
        data = json.dumps(record.to_dict(), sort_keys=True).encode()
        await self.backend.put(self._make_key(record.hackathon_id), data)

    async def get(self, hackathon_id: int) -> Optional[HackathonProjection]:
        """Fetch a record; each call returns an independent copy."""
        data = await self.backend.get(self._make_key(hackathon_id))
        if data is None:
            return None
        return HackathonProjection.from_dict(json.loads(data.decode()))

    async def require(self, hackathon_id: int) -> HackathonProjection:
        record = await self.get(hackathon_id)
        if record is None:
            raise HackathonNotFound(f"Hackathon {hackathon_id} not found", hackathon_id)
        return record

    async def list(self) -> List[HackathonProjection]:
        """All records ordered by id."""
        records = []
        prefix = f"{self.namespace}:{self.KEY_PREFIX}"
        for key in await self.backend.list_keys(prefix):
            data = await self.backend.get(key)
            if data is not None:
                records.append(HackathonProjection.from_dict(json.loads(data.decode())))
        return sorted(records, key=lambda r: r.hackathon_id)

    async def create(
        self,
        hackathon_id: int,
        title: str,
        description: str,
        organizer_id: int,
        start_date: Optional[float] = None,
        end_date: Optional[float] = None,
    ) -> HackathonProjection:
        """
        Create a projection record with off-ledger metadata only.

        Raises:
            ValidationError: If metadata is missing or the schedule is inverted,
                or a record with this id already exists
        """
        if not title or not description:
            raise ValidationError("Title and description are required", hackathon_id)
        if start_date is not None and end_date is not None and end_date <= start_date:
            raise ValidationError("End date must be after start date", hackathon_id)

        async with self._write_lock:
            if await self.backend.get(self._make_key(hackathon_id)) is not None:
                raise ValidationError(f"Hackathon {hackathon_id} already exists", hackathon_id)
            record = HackathonProjection(
                hackathon_id=hackathon_id,
                title=title,
                description=description,
                organizer_id=organizer_id,
                start_date=start_date,
                end_date=end_date,
            )
            await self._write(record)

        logger.info(f"Created projection for hackathon {hackathon_id}: {title!r}")
        return record

    async def update_metadata(self, hackathon_id: int, **changes: Any) -> HackathonProjection:
        """
        Update off-ledger metadata.

        Raises:
            ValueError: If a change targets a mirrored or unknown field
            HackathonNotFound: If the record does not exist
        """
        illegal = set(changes) - METADATA_FIELDS
        if illegal:
            raise ValueError(f"Not metadata fields: {sorted(illegal)}")

        async with self._write_lock:
            record = await self.require(hackathon_id)
            record = replace(record, **changes, updated_at=time.time())
            if (record.start_date is not None and record.end_date is not None
                    and record.end_date <= record.start_date):
                raise ValidationError("End date must be after start date", hackathon_id)
            await self._write(record)
        return record

    async def apply_mirror(
        self,
        hackathon_id: int,
        mirrored: MirroredFields,
        timestamp: Optional[float] = None,
    ) -> HackathonProjection:
        """
        Overwrite every mirrored field in one write.

        Transition timestamps are stamped for fields that changed in this
        write and cleared for flags that are no longer set.

        Args:
            hackathon_id: Target record
            mirrored: Ledger-confirmed values
            timestamp: Time to stamp on transitions (defaults to now)

        Returns:
            The updated record
        """
        now = time.time() if timestamp is None else timestamp

        async with self._write_lock:
            record = await self.require(hackathon_id)
            before = record.mirror()

            record.registered = mirrored.registered
            record.manually_ended = mirrored.ended
            record.funded_amount = mirrored.total_funding if mirrored.funded else 0
            record.winners = list(mirrored.winners)
            record.prizes_distributed = mirrored.distributed

            record.manually_ended_at = _stamp(before.ended, mirrored.ended, record.manually_ended_at, now)
            record.funded_at = _stamp(before.funded, mirrored.funded, record.funded_at, now)
            record.prizes_distributed_at = _stamp(
                before.distributed, mirrored.distributed, record.prizes_distributed_at, now
            )
            if not mirrored.winners:
                record.winners_set_at = None
            elif before.winners != mirrored.winners:
                record.winners_set_at = now

            record.updated_at = now
            await self._write(record)

        return record


def _stamp(was: bool, now_set: bool, current: Optional[float], now: float) -> Optional[float]:
    if not now_set:
        return None
    if not was or current is None:
        return now
    return current
