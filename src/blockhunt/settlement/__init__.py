"""
blockhunt/settlement/

Settlement orchestration: commands, the orchestrator that carries them to
the ledger, and reconciliation of the projection against ledger state.
"""

from .commands import (
    Role,
    Principal,
    CommandKind,
    SettlementCommand,
    CommandResult,
    validate_winners,
    validate_amount,
)

from .orchestrator import (
    SettlementOrchestrator,
    CONTRACT_LOCK_KEY,
)

from .reconciliation import (
    Reconciler,
    ReconcileReport,
    SweepResult,
)

__all__ = [
    # Commands
    "Role",
    "Principal",
    "CommandKind",
    "SettlementCommand",
    "CommandResult",
    "validate_winners",
    "validate_amount",
    # Orchestrator
    "SettlementOrchestrator",
    "CONTRACT_LOCK_KEY",
    # Reconciliation
    "Reconciler",
    "ReconcileReport",
    "SweepResult",
]
