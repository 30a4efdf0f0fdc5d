"""
blockhunt/ledger/contract.py

HackathonFunding ledger contract.

Custodies prize funds per hackathon and is the sole authority for paying
them out. Runs inside a LocalChain, which executes one transaction at a time
and rolls back every change made by a reverted transaction.

Lifecycle of one hackathon record:
    register ──► end ─────────────┐
        │                         ├──► set_winners* ──► distribute_prizes
        └──► fund (auto-creates) ─┘

Usage:
    from blockhunt.ledger.chain import LocalChain
    from blockhunt.ledger.contract import HackathonFunding

    chain = LocalChain()
    organizer = chain.create_account(balance=10 * WEI_PER_ETHER)
    address = chain.deploy(HackathonFunding, organizer)
    chain.send_transaction(organizer, address, "fund", (1,), value=WEI_PER_ETHER)
"""

import copy
import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TYPE_CHECKING

from ..config import BPS_DENOMINATOR, MAX_WINNERS, PRIZE_SPLITS_BPS
from .units import is_valid_address, is_zero_address

if TYPE_CHECKING:
    from .chain import LocalChain

logger = logging.getLogger("blockhunt.ledger.contract")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class ContractRevert(Exception):
    """Raised by a contract to abort the current transaction."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class CallContext:
    """Caller and attached value of the current call."""
    sender: str
    value: int = 0


@dataclass
class EventLog:
    """Event emitted by a contract during a transaction."""
    name: str
    args: Dict[str, Any]
    address: str = ""

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'args': dict(self.args),
            'address': self.address,
        }


@dataclass
class HackathonRecord:
    """Ledger state of one hackathon. Flags only move from False to True."""
    hackathon_id: int
    exists: bool = False
    total_funding: int = 0
    funded: bool = False
    ended: bool = False
    distributed: bool = False
    winners: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'hackathon_id': self.hackathon_id,
            'exists': self.exists,
            'total_funding': self.total_funding,
            'funded': self.funded,
            'ended': self.ended,
            'distributed': self.distributed,
            'winners': list(self.winners),
        }


class ActiveFundingIndex:
    """
    Ids that are funded and not yet distributed.

    Backed by a dense list for iteration plus an id -> position map.
    Removal moves the last id into the vacated slot and pops, so both
    add and remove are O(1). Iteration order is not insertion order
    once anything has been removed.
    """

    def __init__(self):
        self._ids: List[int] = []
        self._positions: Dict[int, int] = {}

    def add(self, hackathon_id: int) -> bool:
        if hackathon_id in self._positions:
            return False
        self._positions[hackathon_id] = len(self._ids)
        self._ids.append(hackathon_id)
        return True

    def remove(self, hackathon_id: int) -> bool:
        position = self._positions.pop(hackathon_id, None)
        if position is None:
            return False
        last = self._ids.pop()
        if last != hackathon_id:
            self._ids[position] = last
            self._positions[last] = position
        return True

    def ids(self) -> List[int]:
        return list(self._ids)

    def __contains__(self, hackathon_id: object) -> bool:
        return hackathon_id in self._positions

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._ids))


# ============================================================================
# PAYOUT MATH
# ============================================================================

def compute_payouts(total_funding: int, winners: List[str]) -> List[Tuple[str, int]]:
    """
    Split total_funding between winners in rank order.

    1 winner:  100%
    2 winners: 70% / remainder
    3 winners: 50% / 30% / remainder

    The last winner receives total_funding minus the earlier shares, so
    integer division never loses wei.

    Args:
        total_funding: Amount to split (wei)
        winners: Winner addresses, first place first

    Returns:
        List of (address, amount) tuples

    Raises:
        ValueError: If the winner count has no split
    """
    shares = PRIZE_SPLITS_BPS.get(len(winners))
    if shares is None:
        raise ValueError(f"No prize split for {len(winners)} winners")

    payouts = []
    paid = 0
    for winner, bps in zip(winners, shares):
        amount = total_funding * bps // BPS_DENOMINATOR
        payouts.append((winner, amount))
        paid += amount
    payouts.append((winners[-1], total_funding - paid))
    return payouts


# ============================================================================
# MODIFIERS
# ============================================================================

def only_organizer(method: Callable) -> Callable:
    @wraps(method)
    def wrapper(self: "HackathonFunding", ctx: CallContext, *args, **kwargs):
        if ctx.sender != self.organizer:
            raise ContractRevert("Only organizer")
        return method(self, ctx, *args, **kwargs)
    return wrapper


def when_not_paused(method: Callable) -> Callable:
    @wraps(method)
    def wrapper(self: "HackathonFunding", ctx: CallContext, *args, **kwargs):
        if self.paused:
            raise ContractRevert("Pausable: paused")
        return method(self, ctx, *args, **kwargs)
    return wrapper


def non_reentrant(method: Callable) -> Callable:
    @wraps(method)
    def wrapper(self: "HackathonFunding", ctx: CallContext, *args, **kwargs):
        if self._entered:
            raise ContractRevert("ReentrancyGuard: reentrant call")
        self._entered = True
        try:
            return method(self, ctx, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper


# ============================================================================
# CONTRACT
# ============================================================================

class HackathonFunding:
    """
    Prize custody contract for hackathons.

    The deployer is the organizer and the only account allowed to change
    state. Every precondition failure raises ContractRevert; the hosting
    chain then restores balances and storage to their pre-transaction state.
    """

    # State-changing entry points callable in a transaction
    MUTATING = frozenset({
        "register",
        "fund",
        "set_winners",
        "distribute_prizes",
        "end_hackathon",
        "withdraw",
        "pause",
        "unpause",
    })

    # Read-only entry points
    VIEWS = frozenset({
        "get_balance",
        "get_hackathon",
        "is_active",
        "active_hackathons",
        "get_prize_breakdown",
        "get_organizer",
        "is_paused",
    })

    def __init__(self, address: str, organizer: str, host: "LocalChain"):
        """
        Initialize HackathonFunding.

        Args:
            address: Address assigned by the chain at deployment
            organizer: Deployer account, owner of every record
            host: Chain used for balance queries and value transfers
        """
        self.address = address
        self.organizer = organizer
        self.paused = False
        self._host = host
        self._records: Dict[int, HackathonRecord] = {}
        self._active = ActiveFundingIndex()
        self._entered = False
        self._events: List[EventLog] = []

    # ------------------------------------------------------------------
    # Chain integration
    # ------------------------------------------------------------------

    def snapshot(self) -> Any:
        """Copy of all storage, restored by the chain on revert."""
        return copy.deepcopy((self._records, self._active, self.paused))

    def restore(self, state: Any) -> None:
        self._records, self._active, self.paused = state
        self._entered = False

    def drain_events(self) -> List[EventLog]:
        events, self._events = self._events, []
        return events

    def receive(self, ctx: CallContext) -> None:
        """Plain transfers are accepted and become surplus."""

    def _emit(self, name: str, **args: Any) -> None:
        self._events.append(EventLog(name=name, args=args, address=self.address))

    def _transfer(self, to: str, amount: int) -> None:
        try:
            self._host.transfer(self.address, to, amount)
        except Exception as e:
            raise ContractRevert(f"Transfer failed: {e}") from e

    def _require_record(self, hackathon_id: int) -> HackathonRecord:
        record = self._records.get(hackathon_id)
        if record is None or not record.exists:
            raise ContractRevert("Hackathon does not exist")
        return record

    def _create_record(self, hackathon_id: int) -> HackathonRecord:
        if not isinstance(hackathon_id, int) or isinstance(hackathon_id, bool) or hackathon_id < 0:
            raise ContractRevert("Invalid hackathon id")
        record = HackathonRecord(hackathon_id=hackathon_id, exists=True)
        self._records[hackathon_id] = record
        self._emit("Created", hackathon_id=hackathon_id)
        return record

    # ------------------------------------------------------------------
    # State-changing operations
    # ------------------------------------------------------------------

    @only_organizer
    @when_not_paused
    def register(self, ctx: CallContext, hackathon_id: int) -> None:
        if hackathon_id in self._records:
            raise ContractRevert("Hackathon already exists")
        self._create_record(hackathon_id)

    @only_organizer
    @when_not_paused
    @non_reentrant
    def fund(self, ctx: CallContext, hackathon_id: int) -> None:
        if ctx.value <= 0:
            raise ContractRevert("Funding amount must be greater than zero")

        record = self._records.get(hackathon_id)
        if record is None:
            record = self._create_record(hackathon_id)
        if record.funded:
            raise ContractRevert("Hackathon already funded")

        record.total_funding = ctx.value
        record.funded = True
        self._active.add(hackathon_id)
        self._emit("Funded", hackathon_id=hackathon_id, amount=ctx.value)

    @only_organizer
    @when_not_paused
    def set_winners(self, ctx: CallContext, hackathon_id: int, winners: List[str]) -> None:
        record = self._require_record(hackathon_id)
        if not record.funded:
            raise ContractRevert("Hackathon not funded")
        if record.distributed:
            raise ContractRevert("Prizes already distributed")
        if not 1 <= len(winners) <= MAX_WINNERS:
            raise ContractRevert(f"Winner count must be between 1 and {MAX_WINNERS}")

        normalized = []
        for winner in winners:
            if not is_valid_address(winner):
                raise ContractRevert("Invalid winner address")
            if is_zero_address(winner):
                raise ContractRevert("Winner cannot be the zero address")
            normalized.append(winner.lower())
        for i in range(len(normalized)):
            for j in range(i + 1, len(normalized)):
                if normalized[i] == normalized[j]:
                    raise ContractRevert("Duplicate winner address")

        record.winners = normalized
        self._emit("WinnersSet", hackathon_id=hackathon_id, winners=list(normalized))

    @only_organizer
    @when_not_paused
    @non_reentrant
    def distribute_prizes(self, ctx: CallContext, hackathon_id: int) -> None:
        record = self._require_record(hackathon_id)
        if not record.funded:
            raise ContractRevert("Hackathon not funded")
        if not record.winners:
            raise ContractRevert("Winners not set")
        if record.distributed:
            raise ContractRevert("Prizes already distributed")
        if not record.ended:
            raise ContractRevert("Hackathon has not ended")
        if self._host.balance_of(self.address) < record.total_funding:
            raise ContractRevert("Insufficient contract balance")

        payouts = compute_payouts(record.total_funding, record.winners)
        if sum(amount for _, amount in payouts) != record.total_funding:
            raise ContractRevert("Payout sum mismatch")

        # Effects before interactions: a recipient calling back in sees the
        # record already distributed.
        record.distributed = True
        self._active.remove(hackathon_id)

        for winner, amount in payouts:
            self._transfer(winner, amount)
            self._emit("PrizeDistributed", hackathon_id=hackathon_id, winner=winner, amount=amount)

    @only_organizer
    @when_not_paused
    def end_hackathon(self, ctx: CallContext, hackathon_id: int) -> None:
        record = self._require_record(hackathon_id)
        if record.ended:
            raise ContractRevert("Hackathon already ended")
        record.ended = True
        self._emit("Ended", hackathon_id=hackathon_id)

    @only_organizer
    @when_not_paused
    @non_reentrant
    def withdraw(self, ctx: CallContext) -> None:
        if len(self._active) > 0:
            raise ContractRevert("Active hackathons still funded")
        amount = self._host.balance_of(self.address)
        if amount == 0:
            raise ContractRevert("No funds to withdraw")
        self._transfer(self.organizer, amount)
        self._emit("Withdrawn", organizer=self.organizer, amount=amount)

    @only_organizer
    def pause(self, ctx: CallContext) -> None:
        if self.paused:
            raise ContractRevert("Pausable: paused")
        self.paused = True
        self._emit("Paused", account=ctx.sender)

    @only_organizer
    def unpause(self, ctx: CallContext) -> None:
        if not self.paused:
            raise ContractRevert("Pausable: not paused")
        self.paused = False
        self._emit("Unpaused", account=ctx.sender)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_balance(self) -> int:
        return self._host.balance_of(self.address)

    def get_hackathon(self, hackathon_id: int) -> dict:
        record = self._records.get(hackathon_id)
        if record is None:
            return HackathonRecord(hackathon_id=hackathon_id).to_dict()
        return record.to_dict()

    def is_active(self, hackathon_id: int) -> bool:
        return hackathon_id in self._active

    def active_hackathons(self) -> List[int]:
        return self._active.ids()

    def get_prize_breakdown(self, hackathon_id: int) -> List[Tuple[str, int]]:
        record = self._records.get(hackathon_id)
        if record is None or not record.funded or not record.winners:
            return []
        return compute_payouts(record.total_funding, record.winners)

    def get_organizer(self) -> str:
        return self.organizer

    def is_paused(self) -> bool:
        return self.paused


def find_events(events: List[EventLog], name: str) -> List[EventLog]:
    """Filter a receipt's events by name."""
    return [event for event in events if event.name == name]


def event_summary(events: List[EventLog]) -> Optional[str]:
    """Comma separated event names, for log lines."""
    if not events:
        return None
    return ", ".join(event.name for event in events)
