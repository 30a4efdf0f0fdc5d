"""
blockhunt/settlement/orchestrator.py

Settlement orchestrator: turns lifecycle commands into ledger operations and
keeps the projection in step with what the ledger confirmed.

Flow for every accepted command:
1. Validate arguments (winner addresses, amount) without touching the ledger
2. Take the per-hackathon lock
3. Re-read the ledger first if the previous command on this id ended with an
   unknown outcome
4. Check ownership and the local lifecycle precondition
5. Submit exactly one ledger operation and wait for its receipt
6. Write all mirrored projection fields in one step
7. Return the operation identifier

Nothing is written to the projection before the ledger confirms. A
confirmation timeout is never treated as a failure to resubmit: the id is
flagged and the next command on it re-reads the ledger first.

Usage:
    orchestrator = SettlementOrchestrator(store, ledger)
    await orchestrator.start()

    result = await orchestrator.end_hackathon(1, principal)
    print(result.operation_id)
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, Hashable, List, Optional, Set, Tuple

import trio

from ..config import OrchestratorConfig
from ..errors import (
    SettlementError,
    PreconditionViolation,
    AuthorizationDenied,
    LedgerSubmissionFailure,
    LedgerExecutionReverted,
    ConfirmationTimeout,
    ReconciliationInconsistency,
    HackathonNotFound,
)
from ..ledger.chain import Receipt
from ..ledger.client import LedgerClient
from ..ledger.contract import event_summary, find_events
from ..metrics import (
    SettlementMetrics,
    OUTCOME_CONFIRMED,
    OUTCOME_REJECTED,
    OUTCOME_REVERTED,
    OUTCOME_SUBMISSION_FAILED,
    OUTCOME_UNKNOWN,
)
from ..projection.storage import StorageError
from ..projection.store import HackathonProjection, MirroredFields, ProjectionStore
from .commands import (
    CommandKind,
    CommandResult,
    Principal,
    Role,
    SettlementCommand,
    validate_amount,
    validate_winners,
)
from .reconciliation import Reconciler, ReconcileReport, SweepResult

logger = logging.getLogger("blockhunt.settlement.orchestrator")

# Lock key shared by withdraw, pause and unpause
CONTRACT_LOCK_KEY = "__contract__"


def _outcome_for(error: SettlementError) -> str:
    if isinstance(error, ConfirmationTimeout):
        return OUTCOME_UNKNOWN
    if isinstance(error, LedgerSubmissionFailure):
        return OUTCOME_SUBMISSION_FAILED
    if isinstance(error, LedgerExecutionReverted):
        return OUTCOME_REVERTED
    return OUTCOME_REJECTED


class SettlementOrchestrator:
    """
    Coordinates settlement commands between the ledger and the projection.

    Commands on the same hackathon run one at a time; commands on different
    hackathons run concurrently.
    """

    def __init__(
        self,
        store: ProjectionStore,
        ledger: LedgerClient,
        config: Optional[OrchestratorConfig] = None,
        metrics: Optional[SettlementMetrics] = None,
    ):
        """
        Initialize SettlementOrchestrator.

        Args:
            store: Projection store
            ledger: Client for the HackathonFunding contract
            config: Orchestrator settings
            metrics: Optional metrics collector
        """
        self.store = store
        self.ledger = ledger
        self.config = config or OrchestratorConfig()
        self.metrics = metrics
        self.reconciler = Reconciler(store, ledger, metrics)

        # Locks live only while a command holds or waits for them
        self._locks: Dict[Hashable, trio.Lock] = {}
        self._lock_users: Dict[Hashable, int] = {}
        self._needs_reconcile: Set[int] = set()
        # Timed-out operation per hackathon, until it is known not to be pending
        self._unconfirmed: Dict[int, str] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> Optional[SweepResult]:
        """
        Recover from a previous run.

        Reconciles every projection record against the ledger; ids that
        could not be read stay blocked until a later re-read succeeds.
        """
        if not self.config.reconcile_on_start:
            return None
        sweep = await self.reconciler.reconcile_all()
        for hackathon_id in sweep.failed:
            self._flag(hackathon_id)
        return sweep

    def blocked_hackathons(self) -> List[int]:
        """Ids whose next command must re-read the ledger first."""
        return sorted(self._needs_reconcile)

    # ------------------------------------------------------------------
    # Command surface
    # ------------------------------------------------------------------

    async def register_hackathon(self, hackathon_id: int, requester: Principal) -> CommandResult:
        return await self.execute(SettlementCommand.register(hackathon_id, requester))

    async def end_hackathon(self, hackathon_id: int, requester: Principal) -> CommandResult:
        return await self.execute(SettlementCommand.end(hackathon_id, requester))

    async def fund_hackathon(self, hackathon_id: int, requester: Principal, amount: int) -> CommandResult:
        return await self.execute(SettlementCommand.fund(hackathon_id, requester, amount))

    async def set_winners(self, hackathon_id: int, requester: Principal,
                          winners: List[str]) -> CommandResult:
        return await self.execute(SettlementCommand.set_winners(hackathon_id, requester, winners))

    async def distribute_prizes(self, hackathon_id: int, requester: Principal) -> CommandResult:
        return await self.execute(SettlementCommand.distribute(hackathon_id, requester))

    async def withdraw(self, requester: Principal) -> CommandResult:
        return await self.execute(SettlementCommand.withdraw(requester))

    async def pause(self, requester: Principal) -> CommandResult:
        return await self.execute(SettlementCommand.pause(requester))

    async def unpause(self, requester: Principal) -> CommandResult:
        return await self.execute(SettlementCommand.unpause(requester))

    async def reconcile(self, hackathon_id: int) -> ReconcileReport:
        """
        Re-read the ledger for one hackathon and repair its projection.

        Raises:
            ReconciliationInconsistency: If the ledger cannot be read
        """
        async with self._serialized(hackathon_id):
            report = await self._reconcile_or_block(hackathon_id)
            self._unflag(hackathon_id)
            return report

    async def execute(self, command: SettlementCommand) -> CommandResult:
        """
        Run one settlement command to confirmation.

        Returns:
            CommandResult carrying the ledger operation identifier

        Raises:
            ValidationError, AuthorizationDenied, PreconditionViolation,
            LedgerSubmissionFailure, ConfirmationTimeout,
            LedgerExecutionReverted, ReconciliationInconsistency
        """
        started = time.time()
        try:
            if command.kind.contract_level:
                result = await self._run_contract_command(command)
            else:
                result = await self._run_hackathon_command(command)
        except SettlementError as e:
            self._record(command, _outcome_for(e), started, str(e))
            raise
        self._record(command, OUTCOME_CONFIRMED, started)
        return result

    # ------------------------------------------------------------------
    # Hackathon commands
    # ------------------------------------------------------------------

    async def _run_hackathon_command(self, command: SettlementCommand) -> CommandResult:
        hackathon_id = command.hackathon_id
        if hackathon_id is None:
            raise PreconditionViolation(f"{command.kind.value} requires a hackathon id")

        # Fail fast on malformed arguments, before any lock or ledger call
        args, value = self._prepare(command)

        async with self._serialized(hackathon_id):
            if hackathon_id in self._needs_reconcile:
                await self._reconcile_or_block(hackathon_id)
                self._unflag(hackathon_id)

            record = await self.store.require(hackathon_id)
            self._authorize(record, command.requester, command.kind)
            self._check_preconditions(command.kind, record)

            # Once submitted a command confirms or fails; it cannot be cancelled.
            with trio.CancelScope(shield=True):
                receipt = await self._submit_and_confirm(command, args, value)
                mirrored = self._confirmed_mirror(command.kind, record, args, value)
                updated = await self._apply(hackathon_id, mirrored, command.kind)

        self._record_value(command.kind, receipt, value)
        logger.info(
            f"Hackathon {hackathon_id}: {command.kind.value} confirmed in block "
            f"{receipt.block_number} ({receipt.tx_hash}) [{event_summary(receipt.events)}]"
        )
        return CommandResult(
            kind=command.kind,
            operation_id=receipt.tx_hash,
            block_number=receipt.block_number,
            hackathon_id=hackathon_id,
            events=[e.to_dict() for e in receipt.events],
            projection=updated.to_dict(),
        )

    def _prepare(self, command: SettlementCommand) -> Tuple[Tuple[Any, ...], int]:
        hackathon_id = command.hackathon_id
        if command.kind == CommandKind.FUND:
            return (hackathon_id,), validate_amount(command.amount, hackathon_id)
        if command.kind == CommandKind.SET_WINNERS:
            return (hackathon_id, validate_winners(command.winners, hackathon_id)), 0
        return (hackathon_id,), 0

    def _authorize(self, record: HackathonProjection, requester: Principal, kind: CommandKind) -> None:
        action = kind.value.replace("_", " ")
        if requester.role != Role.ORGANIZER:
            raise AuthorizationDenied(f"Only organizers can {action}", record.hackathon_id)
        if record.organizer_id != requester.user_id:
            raise AuthorizationDenied(
                f"Only the hackathon organizer can {action}", record.hackathon_id
            )

    def _check_preconditions(self, kind: CommandKind, record: HackathonProjection) -> None:
        hackathon_id = record.hackathon_id

        def violation(message: str) -> PreconditionViolation:
            return PreconditionViolation(message, hackathon_id)

        if kind == CommandKind.REGISTER:
            if record.registered:
                raise violation("Hackathon is already registered on the ledger")

        elif kind == CommandKind.END:
            if not record.registered:
                raise violation("Hackathon must be registered on the ledger before ending")
            if record.manually_ended:
                raise violation("Hackathon has already been ended")

        elif kind == CommandKind.FUND:
            if not record.manually_ended:
                raise violation("Hackathon must be ended before funding")
            if record.funded:
                raise violation("Hackathon is already funded")

        elif kind == CommandKind.SET_WINNERS:
            if not record.manually_ended:
                raise violation("Hackathon must be ended before setting winners")
            if not record.funded:
                raise violation("Hackathon must be funded before setting winners")
            if record.prizes_distributed:
                raise violation("Prizes have already been distributed")

        elif kind == CommandKind.DISTRIBUTE:
            if not record.manually_ended:
                raise violation("Hackathon must be ended before distributing prizes")
            if not record.funded:
                raise violation("Hackathon must be funded before distributing prizes")
            if not record.winners:
                raise violation("Winners must be selected before distributing prizes")
            if record.prizes_distributed:
                raise violation("Prizes have already been distributed")

    def _confirmed_mirror(
        self,
        kind: CommandKind,
        record: HackathonProjection,
        args: Tuple[Any, ...],
        value: int,
    ) -> MirroredFields:
        current = record.mirror()
        if kind == CommandKind.REGISTER:
            return replace(current, registered=True)
        if kind == CommandKind.END:
            return replace(current, ended=True)
        if kind == CommandKind.FUND:
            return replace(current, registered=True, funded=True, total_funding=value)
        if kind == CommandKind.SET_WINNERS:
            return replace(current, winners=tuple(args[1]))
        if kind == CommandKind.DISTRIBUTE:
            return replace(current, distributed=True)
        raise ValueError(f"No projection change for {kind}")

    async def _apply(self, hackathon_id: int, mirrored: MirroredFields,
                     kind: CommandKind) -> HackathonProjection:
        try:
            return await self.store.apply_mirror(hackathon_id, mirrored)
        except StorageError as e:
            # The ledger already moved; only a re-read can repair this.
            self._flag(hackathon_id)
            logger.error(
                f"Hackathon {hackathon_id}: {kind.value} confirmed but projection "
                f"write failed: {e}"
            )
            raise ReconciliationInconsistency(
                f"{kind.value} confirmed on the ledger but the projection was not "
                f"updated; the next command will re-read the ledger",
                hackathon_id,
            ) from e

    # ------------------------------------------------------------------
    # Contract commands
    # ------------------------------------------------------------------

    async def _run_contract_command(self, command: SettlementCommand) -> CommandResult:
        requester = command.requester
        operator = self.config.treasury_operator_id
        if requester.role != Role.ORGANIZER or operator is None or requester.user_id != operator:
            raise AuthorizationDenied(f"Only the treasury operator can {command.kind.value}")

        async with self._serialized(CONTRACT_LOCK_KEY):
            if command.kind == CommandKind.WITHDRAW:
                pending = [
                    r.hackathon_id for r in await self.store.list()
                    if r.funded and not r.prizes_distributed
                ]
                if pending:
                    raise PreconditionViolation(
                        f"Cannot withdraw while hackathons {pending} are funded "
                        f"and not distributed"
                    )

            with trio.CancelScope(shield=True):
                receipt = await self._submit_and_confirm(command, (), 0)

        self._record_value(command.kind, receipt, 0)
        logger.info(
            f"Contract: {command.kind.value} confirmed in block "
            f"{receipt.block_number} ({receipt.tx_hash})"
        )
        return CommandResult(
            kind=command.kind,
            operation_id=receipt.tx_hash,
            block_number=receipt.block_number,
            events=[e.to_dict() for e in receipt.events],
        )

    # ------------------------------------------------------------------
    # Ledger interaction
    # ------------------------------------------------------------------

    async def _submit_and_confirm(
        self,
        command: SettlementCommand,
        args: Tuple[Any, ...],
        value: int,
    ) -> Receipt:
        hackathon_id = command.hackathon_id
        operation = command.kind.operation

        try:
            tx_hash = await self.ledger.submit(operation, *args, value=value)
        except LedgerSubmissionFailure as e:
            # The node may have accepted it before failing; re-read before retry.
            if hackathon_id is not None:
                self._flag(hackathon_id)
            raise LedgerSubmissionFailure(
                f"{operation} was not submitted: {e.message}", hackathon_id
            ) from e

        try:
            return await self.ledger.wait_for_receipt(tx_hash)
        except ConfirmationTimeout as e:
            if hackathon_id is not None:
                self._flag(hackathon_id)
                self._unconfirmed[hackathon_id] = tx_hash
            logger.warning(
                f"{operation} {tx_hash} for hackathon {hackathon_id} has an unknown "
                f"outcome; ledger will be re-read before the next command"
            )
            raise ConfirmationTimeout(
                f"{operation} submitted as {tx_hash} but not confirmed; outcome unknown",
                hackathon_id,
                tx_hash=tx_hash,
            ) from e
        except LedgerExecutionReverted as e:
            logger.warning(f"{operation} {tx_hash} reverted by ledger: {e.reason}")
            if hackathon_id is not None:
                await self._reconcile_after_revert(hackathon_id)
            raise LedgerExecutionReverted(
                f"{operation} rejected by ledger: {e.reason}",
                hackathon_id,
                tx_hash=tx_hash,
                reason=e.reason,
            ) from e

    async def _reconcile_after_revert(self, hackathon_id: int) -> None:
        try:
            await self.reconciler.reconcile(hackathon_id)
        except SettlementError as e:
            self._flag(hackathon_id)
            logger.error(f"Reconciliation after revert failed for hackathon {hackathon_id}: {e}")

    async def _reconcile_or_block(self, hackathon_id: int) -> ReconcileReport:
        tx_hash = self._unconfirmed.get(hackathon_id)
        try:
            if tx_hash is None or not await self.ledger.is_pending(tx_hash):
                return await self.reconciler.reconcile(hackathon_id)
        except HackathonNotFound:
            raise
        except SettlementError as e:
            self._flag(hackathon_id)
            raise ReconciliationInconsistency(
                f"Hackathon {hackathon_id} is blocked until the ledger can be re-read: {e}",
                hackathon_id,
            ) from e

        # A re-read now could be overtaken when the operation lands
        self._flag(hackathon_id)
        logger.warning(f"Hackathon {hackathon_id}: {tx_hash} is still pending")
        raise ReconciliationInconsistency(
            f"Hackathon {hackathon_id} is blocked until {tx_hash} is mined or dropped",
            hackathon_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _serialized(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for key; the lock is dropped once nobody uses it."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = trio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def _flag(self, hackathon_id: int) -> None:
        self._needs_reconcile.add(hackathon_id)
        if self.metrics:
            self.metrics.set_blocked(len(self._needs_reconcile))

    def _unflag(self, hackathon_id: int) -> None:
        self._needs_reconcile.discard(hackathon_id)
        self._unconfirmed.pop(hackathon_id, None)
        if self.metrics:
            self.metrics.set_blocked(len(self._needs_reconcile))

    def _record(self, command: SettlementCommand, outcome: str, started: float,
                error: Optional[str] = None) -> None:
        if self.metrics:
            self.metrics.record_command(
                command.kind.value,
                outcome,
                duration_ms=(time.time() - started) * 1000,
                hackathon_id=command.hackathon_id,
                error=error,
            )

    def _record_value(self, kind: CommandKind, receipt: Receipt, value: int) -> None:
        if not self.metrics:
            return
        if kind == CommandKind.FUND:
            moved = value
        elif kind == CommandKind.DISTRIBUTE:
            moved = sum(e.args["amount"] for e in find_events(receipt.events, "PrizeDistributed"))
        elif kind == CommandKind.WITHDRAW:
            moved = sum(e.args["amount"] for e in find_events(receipt.events, "Withdrawn"))
        else:
            return
        self.metrics.record_value(kind.value, moved)
