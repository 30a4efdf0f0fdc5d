"""
blockhunt/ledger/

Ledger side of blockhunt: the HackathonFunding contract, the in-process
chain that executes it, and the client the orchestrator talks through.
"""

from .contract import (
    HackathonFunding,
    HackathonRecord,
    ActiveFundingIndex,
    CallContext,
    ContractRevert,
    EventLog,
    compute_payouts,
    find_events,
)

from .chain import (
    LocalChain,
    Transaction,
    Receipt,
    Block,
    FaultPlan,
    ChainError,
    InsufficientFunds,
)

from .client import (
    LedgerClient,
    LocalLedgerClient,
    LedgerRecordView,
    LedgerUnavailable,
)

from .units import (
    is_valid_address,
    is_zero_address,
    normalize_address,
    to_wei,
    from_wei,
)

__all__ = [
    # Contract
    "HackathonFunding",
    "HackathonRecord",
    "ActiveFundingIndex",
    "CallContext",
    "ContractRevert",
    "EventLog",
    "compute_payouts",
    "find_events",
    # Chain
    "LocalChain",
    "Transaction",
    "Receipt",
    "Block",
    "FaultPlan",
    "ChainError",
    "InsufficientFunds",
    # Client
    "LedgerClient",
    "LocalLedgerClient",
    "LedgerRecordView",
    "LedgerUnavailable",
    # Units
    "is_valid_address",
    "is_zero_address",
    "normalize_address",
    "to_wei",
    "from_wei",
]
