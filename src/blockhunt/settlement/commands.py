"""
blockhunt/settlement/commands.py

Settlement commands, principals and command results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import MAX_WINNERS
from ..errors import ValidationError
from ..ledger.units import is_valid_address, is_zero_address


class Role(Enum):
    """Roles issued by the authentication layer."""
    USER = "user"
    ORGANIZER = "organizer"


@dataclass(frozen=True)
class Principal:
    """Verified caller identity, supplied by the authentication layer."""
    user_id: int
    role: Role


class CommandKind(Enum):
    """Lifecycle transitions, one per ledger operation."""
    REGISTER = "register"
    END = "end_hackathon"
    FUND = "fund"
    SET_WINNERS = "set_winners"
    DISTRIBUTE = "distribute_prizes"
    WITHDRAW = "withdraw"
    PAUSE = "pause"
    UNPAUSE = "unpause"

    @property
    def operation(self) -> str:
        """Ledger method the command submits."""
        return self.value

    @property
    def contract_level(self) -> bool:
        """Commands that act on the whole contract rather than one hackathon."""
        return self in (CommandKind.WITHDRAW, CommandKind.PAUSE, CommandKind.UNPAUSE)


@dataclass(frozen=True)
class SettlementCommand:
    """
    A request to transition one hackathon (or the contract).

    Usage:
        SettlementCommand.fund(1, principal, amount=to_wei("1.5"))
        SettlementCommand.set_winners(1, principal, ["0xabc...", "0xdef..."])
    """
    kind: CommandKind
    requester: Principal
    hackathon_id: Optional[int] = None
    amount: int = 0
    winners: Tuple[str, ...] = ()

    @classmethod
    def register(cls, hackathon_id: int, requester: Principal) -> "SettlementCommand":
        return cls(CommandKind.REGISTER, requester, hackathon_id)

    @classmethod
    def end(cls, hackathon_id: int, requester: Principal) -> "SettlementCommand":
        return cls(CommandKind.END, requester, hackathon_id)

    @classmethod
    def fund(cls, hackathon_id: int, requester: Principal, amount: int) -> "SettlementCommand":
        return cls(CommandKind.FUND, requester, hackathon_id, amount=amount)

    @classmethod
    def set_winners(cls, hackathon_id: int, requester: Principal,
                    winners: List[str]) -> "SettlementCommand":
        return cls(CommandKind.SET_WINNERS, requester, hackathon_id, winners=tuple(winners))

    @classmethod
    def distribute(cls, hackathon_id: int, requester: Principal) -> "SettlementCommand":
        return cls(CommandKind.DISTRIBUTE, requester, hackathon_id)

    @classmethod
    def withdraw(cls, requester: Principal) -> "SettlementCommand":
        return cls(CommandKind.WITHDRAW, requester)

    @classmethod
    def pause(cls, requester: Principal) -> "SettlementCommand":
        return cls(CommandKind.PAUSE, requester)

    @classmethod
    def unpause(cls, requester: Principal) -> "SettlementCommand":
        return cls(CommandKind.UNPAUSE, requester)


@dataclass
class CommandResult:
    """Outcome of a confirmed command."""
    kind: CommandKind
    operation_id: str
    block_number: int
    hackathon_id: Optional[int] = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    projection: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            'command': self.kind.value,
            'operation_id': self.operation_id,
            'block_number': self.block_number,
            'hackathon_id': self.hackathon_id,
            'events': list(self.events),
            'projection': self.projection,
        }


def validate_winners(winners: Any, hackathon_id: Optional[int] = None) -> List[str]:
    """
    Check winner addresses before they are sent to the ledger.

    Returns:
        Lower-cased addresses in the given order

    Raises:
        ValidationError: On a wrong count, a malformed or zero address,
            or a duplicate
    """
    if not isinstance(winners, (list, tuple)) or not winners:
        raise ValidationError("Winners array is required", hackathon_id)
    if len(winners) > MAX_WINNERS:
        raise ValidationError(f"At most {MAX_WINNERS} winners are allowed", hackathon_id)

    normalized = []
    for winner in winners:
        if not is_valid_address(winner):
            raise ValidationError(f"Invalid address: {winner!r}", hackathon_id)
        if is_zero_address(winner):
            raise ValidationError("Winner cannot be the zero address", hackathon_id)
        address = winner.lower()
        if address in normalized:
            raise ValidationError(f"Duplicate winner: {winner}", hackathon_id)
        normalized.append(address)
    return normalized


def validate_amount(amount: Any, hackathon_id: Optional[int] = None) -> int:
    """Funding amounts are positive integers in wei."""
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValidationError(f"Amount must be an integer number of wei, got {amount!r}",
                              hackathon_id)
    if amount <= 0:
        raise ValidationError("Prize pool must be a positive number", hackathon_id)
    return amount
