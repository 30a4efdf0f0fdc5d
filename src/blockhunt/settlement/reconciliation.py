"""
blockhunt/settlement/reconciliation.py

Bring projection records back in line with the ledger.

The ledger is authoritative for registered, ended, funded, total_funding,
winners and distributed. Reconciliation reads those fields from the ledger
and, if the projection disagrees, overwrites the projection. It never writes
to the ledger.

Reconciliation runs:
- before the next command on an id whose last command had an unknown outcome
- after a command was reverted by the ledger
- as a sweep over every record when the orchestrator starts
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..errors import SettlementError
from ..ledger.client import LedgerClient
from ..metrics import SettlementMetrics
from ..projection.store import MirroredFields, ProjectionStore

logger = logging.getLogger("blockhunt.settlement.reconciliation")


@dataclass
class ReconcileReport:
    """Result of reconciling one hackathon."""
    hackathon_id: int
    diverged: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    checked_at: float = field(default_factory=time.time)

    @property
    def consistent(self) -> bool:
        """True if the projection already matched the ledger."""
        return not self.diverged

    def to_dict(self) -> dict:
        return {
            'hackathon_id': self.hackathon_id,
            'consistent': self.consistent,
            'diverged': {
                name: {'projection': local, 'ledger': ledger}
                for name, (local, ledger) in self.diverged.items()
            },
            'checked_at': self.checked_at,
        }


@dataclass
class SweepResult:
    """Result of reconciling every projection record."""
    reports: List[ReconcileReport] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def repaired(self) -> List[int]:
        return [r.hackathon_id for r in self.reports if not r.consistent]


class Reconciler:
    """Overwrites projection mirrored fields with ledger state."""

    def __init__(
        self,
        store: ProjectionStore,
        ledger: LedgerClient,
        metrics: Optional[SettlementMetrics] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.metrics = metrics

    async def reconcile(self, hackathon_id: int) -> ReconcileReport:
        """
        Re-read the ledger and repair the projection of one hackathon.

        Raises:
            HackathonNotFound: If there is no projection record
            LedgerUnavailable: If the ledger cannot be read
        """
        record = await self.store.require(hackathon_id)
        try:
            view = await self.ledger.get_hackathon(hackathon_id)
        except SettlementError:
            if self.metrics:
                self.metrics.record_reconciliation([], failed=True)
            raise

        ledger_fields = MirroredFields.from_ledger(view)
        report = ReconcileReport(
            hackathon_id=hackathon_id,
            diverged=record.mirror().diff(ledger_fields),
        )

        if not report.consistent:
            logger.warning(
                f"Hackathon {hackathon_id} projection diverged from ledger on "
                f"{sorted(report.diverged)}; overwriting from ledger"
            )
            await self.store.apply_mirror(hackathon_id, ledger_fields)
        else:
            logger.debug(f"Hackathon {hackathon_id} projection matches ledger")

        if self.metrics:
            self.metrics.record_reconciliation(list(report.diverged))
        return report

    async def reconcile_all(self) -> SweepResult:
        """Reconcile every projection record; failures are collected, not raised."""
        result = SweepResult()
        for record in await self.store.list():
            try:
                result.reports.append(await self.reconcile(record.hackathon_id))
            except SettlementError as e:
                logger.error(f"Reconciliation of hackathon {record.hackathon_id} failed: {e}")
                result.failed[record.hackathon_id] = str(e)

        logger.info(
            f"Reconciliation sweep: {len(result.reports)} checked, "
            f"{len(result.repaired)} repaired, {len(result.failed)} failed"
        )
        return result
