"""
blockhunt/tests/conftest.py

Shared fixtures: a dev chain with a deployed HackathonFunding contract, a
ledger client over it, an in-memory projection store and an orchestrator.
"""

import pytest

from blockhunt.config import LedgerConfig, OrchestratorConfig, WEI_PER_ETHER
from blockhunt.ledger import HackathonFunding, LocalChain, LocalLedgerClient
from blockhunt.metrics import SettlementMetrics
from blockhunt.projection import ProjectionStore
from blockhunt.settlement import Principal, Role, SettlementOrchestrator


ORGANIZER_ID = 7
OPERATOR_ID = 7


# ============================================================================
# CHAIN FIXTURES
# ============================================================================

@pytest.fixture
def chain():
    return LocalChain()


@pytest.fixture
def organizer_account(chain):
    return chain.create_account(balance=100 * WEI_PER_ETHER)


@pytest.fixture
def contract_address(chain, organizer_account):
    return chain.deploy(HackathonFunding, organizer_account)


@pytest.fixture
def contract(chain, contract_address):
    return chain.contract_at(contract_address)


@pytest.fixture
def winners(chain):
    return [chain.create_account() for _ in range(3)]


@pytest.fixture
def ledger_config():
    return LedgerConfig(confirmation_timeout=0.3, poll_interval=0.01)


@pytest.fixture
def ledger(chain, contract_address, organizer_account, ledger_config):
    return LocalLedgerClient(chain, contract_address, organizer_account, ledger_config)


# ============================================================================
# ORCHESTRATION FIXTURES
# ============================================================================

@pytest.fixture
def store():
    return ProjectionStore()


@pytest.fixture
def metrics():
    return SettlementMetrics()


@pytest.fixture
def organizer():
    return Principal(user_id=ORGANIZER_ID, role=Role.ORGANIZER)


@pytest.fixture
def orchestrator(store, ledger, metrics):
    config = OrchestratorConfig(treasury_operator_id=OPERATOR_ID)
    return SettlementOrchestrator(store, ledger, config, metrics)


@pytest.fixture
def advance(orchestrator, store, organizer, winners):
    """
    Drive a hackathon up to a lifecycle stage.

    Usage:
        await advance(1, "funded")
    """
    stages = ["created", "registered", "ended", "funded", "winners", "distributed"]

    async def _advance(hackathon_id: int, stage: str, amount: int = WEI_PER_ETHER):
        target = stages.index(stage)
        await store.create(hackathon_id, f"Hack {hackathon_id}", "Build things",
                           organizer_id=organizer.user_id)
        if target >= 1:
            await orchestrator.register_hackathon(hackathon_id, organizer)
        if target >= 2:
            await orchestrator.end_hackathon(hackathon_id, organizer)
        if target >= 3:
            await orchestrator.fund_hackathon(hackathon_id, organizer, amount)
        if target >= 4:
            await orchestrator.set_winners(hackathon_id, organizer, winners)
        if target >= 5:
            await orchestrator.distribute_prizes(hackathon_id, organizer)
        return await store.require(hackathon_id)

    return _advance
