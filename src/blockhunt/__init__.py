"""
blockhunt - Hackathon prize settlement against an on-chain funding contract

Built on trio with:
- HackathonFunding contract (fund, winners, 100 / 70-30 / 50-30-20 payouts)
- In-process development chain with fault injection
- Projection store for off-ledger metadata and ledger-confirmed fields
- Settlement orchestrator with per-hackathon serialization
- Reconciliation of the projection against ledger state
- Prometheus metrics for monitoring

Usage:
    from blockhunt import (
        LocalChain, HackathonFunding, LocalLedgerClient,
        ProjectionStore, SettlementOrchestrator, Principal, Role, to_wei,
    )

    chain = LocalChain()
    signer = chain.create_account(balance=to_wei("10"))
    contract = chain.deploy(HackathonFunding, signer)

    orchestrator = SettlementOrchestrator(
        ProjectionStore(), LocalLedgerClient(chain, contract, signer)
    )
    await orchestrator.start()

    organizer = Principal(user_id=7, role=Role.ORGANIZER)
    await orchestrator.store.create(1, "ETH Hack", "48h build", organizer_id=7)
    await orchestrator.register_hackathon(1, organizer)
    await orchestrator.end_hackathon(1, organizer)
    await orchestrator.fund_hackathon(1, organizer, to_wei("1.5"))
    await orchestrator.set_winners(1, organizer, [alice, bob, carol])
    await orchestrator.distribute_prizes(1, organizer)

Metrics Usage:
    from blockhunt.metrics import SettlementMetrics

    metrics = SettlementMetrics()
    orchestrator = SettlementOrchestrator(store, ledger, metrics=metrics)
    prometheus_output = metrics.collect()
"""

from .config import (
    BlockhuntConfig,
    LedgerConfig,
    OrchestratorConfig,
    StoreConfig,
    WEI_PER_ETHER,
    MAX_WINNERS,
)
from .errors import (
    SettlementError,
    PreconditionViolation,
    HackathonNotFound,
    AuthorizationDenied,
    ValidationError,
    LedgerSubmissionFailure,
    ConfirmationTimeout,
    LedgerExecutionReverted,
    ReconciliationInconsistency,
)
from .ledger import (
    HackathonFunding,
    LocalChain,
    LedgerClient,
    LocalLedgerClient,
    LedgerUnavailable,
    compute_payouts,
    to_wei,
    from_wei,
)
from .projection import (
    ProjectionStore,
    HackathonProjection,
    HackathonStatus,
    MemoryBackend,
    FileBackend,
)
from .settlement import (
    SettlementOrchestrator,
    SettlementCommand,
    CommandKind,
    CommandResult,
    Principal,
    Role,
    Reconciler,
)
from .metrics import SettlementMetrics

__version__ = "1.0.0"

__all__ = [
    # Config
    "BlockhuntConfig",
    "LedgerConfig",
    "OrchestratorConfig",
    "StoreConfig",
    "WEI_PER_ETHER",
    "MAX_WINNERS",
    # Errors
    "SettlementError",
    "PreconditionViolation",
    "HackathonNotFound",
    "AuthorizationDenied",
    "ValidationError",
    "LedgerSubmissionFailure",
    "ConfirmationTimeout",
    "LedgerExecutionReverted",
    "ReconciliationInconsistency",
    # Ledger
    "HackathonFunding",
    "LocalChain",
    "LedgerClient",
    "LocalLedgerClient",
    "LedgerUnavailable",
    "compute_payouts",
    "to_wei",
    "from_wei",
    # Projection
    "ProjectionStore",
    "HackathonProjection",
    "HackathonStatus",
    "MemoryBackend",
    "FileBackend",
    # Settlement
    "SettlementOrchestrator",
    "SettlementCommand",
    "CommandKind",
    "CommandResult",
    "Principal",
    "Role",
    "Reconciler",
    # Metrics
    "SettlementMetrics",
]
