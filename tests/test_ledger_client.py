"""
blockhunt/tests/test_ledger_client.py

Tests for LocalLedgerClient: submission, confirmation and reads.
"""

import pytest
import trio

from blockhunt.config import LedgerConfig
from blockhunt.errors import (
    ConfirmationTimeout,
    LedgerExecutionReverted,
    LedgerSubmissionFailure,
    PreconditionViolation,
)
from blockhunt.ledger import (
    HackathonFunding,
    LedgerUnavailable,
    LocalChain,
    LocalLedgerClient,
)


class TestSubmitAndConfirm:
    """Test the submit / wait_for_receipt pair."""

    @pytest.mark.trio
    async def test_confirmed(self, ledger):
        tx_hash = await ledger.submit("register", 1)
        receipt = await ledger.wait_for_receipt(tx_hash)

        assert receipt.succeeded
        assert receipt.tx_hash == tx_hash
        assert receipt.events[0].name == "Created"

    @pytest.mark.trio
    async def test_value_attached(self, ledger):
        tx_hash = await ledger.submit("fund", 1, value=250)
        await ledger.wait_for_receipt(tx_hash)
        assert await ledger.get_balance() == 250
        assert await ledger.active_hackathons() == [1]

    @pytest.mark.trio
    async def test_unknown_operation(self, ledger):
        with pytest.raises(ValueError):
            await ledger.submit("get_balance")

    @pytest.mark.trio
    async def test_submission_failure(self, ledger, chain):
        chain.faults.fail_submissions = 1
        with pytest.raises(LedgerSubmissionFailure):
            await ledger.submit("register", 1)

    @pytest.mark.trio
    async def test_dropped_transaction_times_out(self, ledger, chain):
        chain.faults.drop_transactions = 1
        tx_hash = await ledger.submit("register", 1)

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await ledger.wait_for_receipt(tx_hash, timeout=0.05)

        assert exc_info.value.tx_hash == tx_hash

    @pytest.mark.trio
    async def test_hidden_receipt_times_out(self, ledger, chain):
        chain.faults.hide_receipts = True
        tx_hash = await ledger.submit("register", 1)

        with pytest.raises(ConfirmationTimeout):
            await ledger.wait_for_receipt(tx_hash, timeout=0.05)

    @pytest.mark.trio
    async def test_revert_carries_reason(self, ledger):
        await ledger.wait_for_receipt(await ledger.submit("register", 1))
        tx_hash = await ledger.submit("register", 1)

        with pytest.raises(LedgerExecutionReverted) as exc_info:
            await ledger.wait_for_receipt(tx_hash)

        assert exc_info.value.reason == "Hackathon already exists"
        assert exc_info.value.tx_hash == tx_hash
        assert isinstance(exc_info.value, PreconditionViolation)

    @pytest.mark.trio
    @pytest.mark.timeout(10)
    async def test_waits_for_later_block(self):
        chain = LocalChain(automine=False)
        organizer = chain.create_account(balance=10 ** 18)
        address = chain.deploy(HackathonFunding, organizer)
        client = LocalLedgerClient(
            chain, address, organizer, LedgerConfig(confirmation_timeout=5, poll_interval=0.01)
        )

        async def mine_later():
            await trio.sleep(0.1)
            chain.mine()

        async with trio.open_nursery() as nursery:
            nursery.start_soon(mine_later)
            tx_hash = await client.submit("register", 1)
            receipt = await client.wait_for_receipt(tx_hash)

        assert receipt.succeeded
        assert receipt.block_number == 1


class TestReads:
    """Test ledger views through the client."""

    @pytest.mark.trio
    async def test_missing_record(self, ledger):
        view = await ledger.get_hackathon(42)
        assert view.hackathon_id == 42
        assert view.exists is False
        assert view.winners == ()

    @pytest.mark.trio
    async def test_record_view(self, ledger, winners):
        for op, args, value in [
            ("fund", (1,), 100),
            ("end_hackathon", (1,), 0),
            ("set_winners", (1, winners), 0),
        ]:
            await ledger.wait_for_receipt(await ledger.submit(op, *args, value=value))

        view = await ledger.get_hackathon(1)
        assert view.exists and view.funded and view.ended
        assert view.total_funding == 100
        assert view.winners == tuple(winners)
        assert view.distributed is False

    @pytest.mark.trio
    async def test_paused(self, ledger):
        assert await ledger.is_paused() is False
        await ledger.wait_for_receipt(await ledger.submit("pause"))
        assert await ledger.is_paused() is True

    @pytest.mark.trio
    async def test_unreadable_ledger(self, ledger, chain):
        chain.faults.fail_reads = True
        with pytest.raises(LedgerUnavailable):
            await ledger.get_hackathon(1)

    @pytest.mark.trio
    async def test_is_pending(self, ledger, chain):
        chain.automine = False
        tx_hash = await ledger.submit("register", 1)
        assert await ledger.is_pending(tx_hash) is True

        chain.mine()
        assert await ledger.is_pending(tx_hash) is False

        chain.faults.drop_transactions = 1
        dropped = await ledger.submit("register", 2)
        assert await ledger.is_pending(dropped) is False
