"""
blockhunt/errors.py

Error taxonomy for settlement commands.

Hierarchy:
    SettlementError
    ├── PreconditionViolation
    │   ├── HackathonNotFound
    │   └── LedgerExecutionReverted
    ├── AuthorizationDenied
    ├── ValidationError
    ├── LedgerSubmissionFailure
    ├── ConfirmationTimeout
    └── ReconciliationInconsistency
"""

from typing import Any, Dict, Optional


class SettlementError(Exception):
    """Base class for errors surfaced by the settlement orchestrator."""

    code = "settlement_error"

    def __init__(self, message: str, hackathon_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.hackathon_id = hackathon_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.code,
            'message': self.message,
            'hackathon_id': self.hackathon_id,
        }


class PreconditionViolation(SettlementError):
    """Command issued in the wrong lifecycle phase. Not retried."""

    code = "precondition_violation"


class HackathonNotFound(PreconditionViolation):
    """No projection record exists for the hackathon id."""

    code = "hackathon_not_found"


class AuthorizationDenied(SettlementError):
    """Requester is not allowed to drive this hackathon."""

    code = "authorization_denied"


class ValidationError(SettlementError):
    """Malformed command arguments (winners, amount)."""

    code = "validation_error"


class LedgerSubmissionFailure(SettlementError):
    """
    The operation never reached the ledger (network or node error).

    Safe to retry once ledger state has been re-read.
    """

    code = "ledger_submission_failure"


class ConfirmationTimeout(SettlementError):
    """
    The operation was submitted but no receipt was readable in time.

    The outcome is unknown: it may or may not have been mined.
    """

    code = "confirmation_timeout"

    def __init__(self, message: str, hackathon_id: Optional[int] = None,
                 tx_hash: Optional[str] = None):
        super().__init__(message, hackathon_id)
        self.tx_hash = tx_hash

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['tx_hash'] = self.tx_hash
        return data


class LedgerExecutionReverted(PreconditionViolation):
    """The operation was included but reverted by the contract."""

    code = "ledger_execution_reverted"

    def __init__(self, message: str, hackathon_id: Optional[int] = None,
                 tx_hash: Optional[str] = None, reason: str = ""):
        super().__init__(message, hackathon_id)
        self.tx_hash = tx_hash
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['tx_hash'] = self.tx_hash
        data['reason'] = self.reason
        return data


class ReconciliationInconsistency(SettlementError):
    """Projection and ledger could not be brought into agreement."""

    code = "reconciliation_inconsistency"
