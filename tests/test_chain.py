"""
blockhunt/tests/test_chain.py

Tests for the in-process development chain.
"""

import pytest

from blockhunt.config import WEI_PER_ETHER
from blockhunt.ledger.chain import ChainError, InsufficientFunds, LocalChain
from blockhunt.ledger.contract import HackathonFunding
from blockhunt.ledger.units import is_valid_address


class TestAccounts:
    """Test account creation and balances."""

    def test_create_account(self, chain):
        address = chain.create_account(balance=5)
        assert is_valid_address(address)
        assert address == address.lower()
        assert chain.balance_of(address) == 5

    def test_accounts_are_distinct(self, chain):
        assert chain.create_account() != chain.create_account()

    def test_fund_account_is_case_insensitive(self, chain):
        address = chain.create_account()
        chain.fund_account(address.upper().replace("0X", "0x"), 10)
        assert chain.balance_of(address) == 10

    def test_negative_faucet_rejected(self, chain):
        with pytest.raises(ValueError):
            chain.fund_account(chain.create_account(), -1)


class TestDeployment:
    """Test contract deployment and views."""

    def test_deploy_sets_organizer(self, chain, organizer_account, contract_address):
        assert chain.call(contract_address, "get_organizer") == organizer_account
        assert chain.call(contract_address, "get_balance") == 0

    def test_unknown_contract(self, chain):
        with pytest.raises(ChainError):
            chain.contract_at("0x" + "1" * 40)

    def test_unknown_view(self, chain, contract_address):
        with pytest.raises(ChainError):
            chain.call(contract_address, "withdraw")


class TestTransactions:
    """Test submission, mining and receipts."""

    def test_hashes_are_unique_per_nonce(self, chain, organizer_account, contract_address):
        first = chain.send_transaction(organizer_account, contract_address, "register", (1,))
        second = chain.send_transaction(organizer_account, contract_address, "register", (1,))

        assert first != second
        assert chain.get_transaction(first).nonce == 0
        assert chain.get_transaction(second).nonce == 1
        assert chain.get_receipt(first).succeeded
        assert not chain.get_receipt(second).succeeded

    def test_insufficient_funds(self, chain, contract_address):
        poor = chain.create_account(balance=1)
        with pytest.raises(InsufficientFunds):
            chain.send_transaction(poor, contract_address, "fund", (1,), value=2)

    def test_unknown_method(self, chain, organizer_account, contract_address):
        with pytest.raises(ChainError):
            chain.send_transaction(organizer_account, contract_address, "get_balance")

    def test_manual_mining(self):
        chain = LocalChain(automine=False)
        organizer = chain.create_account(balance=WEI_PER_ETHER)
        address = chain.deploy(HackathonFunding, organizer)

        tx_hash = chain.send_transaction(organizer, address, "register", (1,))
        assert chain.get_receipt(tx_hash) is None
        assert len(chain.pending_transactions()) == 1

        block = chain.mine()

        assert block.number == 1
        assert block.tx_hashes == [tx_hash]
        assert chain.get_receipt(tx_hash).block_number == 1
        assert chain.pending_transactions() == []
        assert chain.mine() is None

    def test_revert_restores_balances(self, chain, organizer_account, contract_address):
        chain.send_transaction(organizer_account, contract_address, "pause")
        before = chain.balance_of(organizer_account)

        tx_hash = chain.send_transaction(
            organizer_account, contract_address, "fund", (1,), value=WEI_PER_ETHER
        )

        receipt = chain.get_receipt(tx_hash)
        assert receipt.status == 0
        assert receipt.events == []
        assert chain.balance_of(organizer_account) == before
        assert chain.balance_of(contract_address) == 0

    def test_receipt_to_dict(self, chain, organizer_account, contract_address):
        tx_hash = chain.send_transaction(organizer_account, contract_address, "register", (4,))
        data = chain.get_receipt(tx_hash).to_dict()
        assert data["status"] == 1
        assert data["events"][0]["name"] == "Created"
        assert data["events"][0]["args"] == {"hackathon_id": 4}

    def test_block_number_advances(self, chain, organizer_account, contract_address):
        start = chain.block_number
        chain.send_transaction(organizer_account, contract_address, "register", (1,))
        chain.send_transaction(organizer_account, contract_address, "register", (2,))
        assert chain.block_number == start + 2


class TestFaultPlan:
    """Test injected channel failures."""

    def test_failed_submission(self, chain, organizer_account, contract_address):
        chain.faults.fail_submissions = 1
        with pytest.raises(ChainError, match="connection refused"):
            chain.send_transaction(organizer_account, contract_address, "register", (1,))

        # Only the next submission fails
        chain.send_transaction(organizer_account, contract_address, "register", (1,))
        assert chain.call(contract_address, "get_hackathon", 1)["exists"] is True

    def test_dropped_transaction(self, chain, organizer_account, contract_address):
        chain.faults.drop_transactions = 1
        tx_hash = chain.send_transaction(organizer_account, contract_address, "register", (1,))

        assert chain.get_transaction(tx_hash) is not None
        assert chain.get_receipt(tx_hash) is None
        assert chain.call(contract_address, "get_hackathon", 1)["exists"] is False

    def test_hidden_receipts(self, chain, organizer_account, contract_address):
        chain.faults.hide_receipts = True
        tx_hash = chain.send_transaction(organizer_account, contract_address, "register", (1,))

        with pytest.raises(ChainError):
            chain.get_receipt(tx_hash)

        # The transaction itself was mined
        assert chain.call(contract_address, "get_hackathon", 1)["exists"] is True

        chain.faults.clear()
        assert chain.get_receipt(tx_hash).succeeded

    def test_failed_reads(self, chain, contract_address):
        chain.faults.fail_reads = True
        with pytest.raises(ChainError):
            chain.call(contract_address, "get_balance")
