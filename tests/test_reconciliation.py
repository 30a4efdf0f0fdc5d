"""
blockhunt/tests/test_reconciliation.py

Tests for reconciling projection records against the ledger.
"""

from unittest.mock import AsyncMock

import pytest

from blockhunt.errors import HackathonNotFound
from blockhunt.ledger import LedgerRecordView, LedgerUnavailable
from blockhunt.projection import MirroredFields
from blockhunt.settlement import Reconciler


ALICE = "0x" + "a1" * 20


@pytest.fixture
def mock_ledger():
    ledger = AsyncMock()
    ledger.get_hackathon.return_value = LedgerRecordView(hackathon_id=1)
    return ledger


@pytest.fixture
def reconciler(store, mock_ledger, metrics):
    return Reconciler(store, mock_ledger, metrics)


class TestReconcile:
    """Test Reconciler.reconcile()."""

    @pytest.mark.trio
    async def test_consistent_record_untouched(self, reconciler, store, metrics):
        created = await store.create(1, "T", "D", organizer_id=7)

        report = await reconciler.reconcile(1)

        assert report.consistent
        assert (await store.get(1)).updated_at == created.updated_at
        assert metrics.get_stats()["reconciliations"] == {"consistent": 1}

    @pytest.mark.trio
    async def test_ledger_overwrites_projection(self, reconciler, store, mock_ledger, metrics):
        await store.create(1, "T", "D", organizer_id=7)
        mock_ledger.get_hackathon.return_value = LedgerRecordView(
            hackathon_id=1, exists=True, funded=True, total_funding=500,
            ended=True, winners=(ALICE.upper().replace("0X", "0x"),),
        )

        report = await reconciler.reconcile(1)

        assert not report.consistent
        assert set(report.diverged) == {
            "registered", "ended", "funded", "total_funding", "winners",
        }
        record = await store.get(1)
        assert record.funded_amount == 500
        assert record.winners == [ALICE]
        assert record.title == "T"
        assert metrics.get_stats()["divergent_fields"]["winners"] == 1

    @pytest.mark.trio
    async def test_projection_ahead_of_ledger_is_rolled_back(self, reconciler, store):
        await store.create(1, "T", "D", organizer_id=7)
        await store.apply_mirror(1, MirroredFields(registered=True, ended=True))

        report = await reconciler.reconcile(1)

        assert report.diverged["ended"] == (True, False)
        assert (await store.get(1)).manually_ended is False

    @pytest.mark.trio
    async def test_never_writes_to_ledger(self, reconciler, store, mock_ledger):
        await store.create(1, "T", "D", organizer_id=7)
        await reconciler.reconcile(1)
        mock_ledger.submit.assert_not_called()

    @pytest.mark.trio
    async def test_unreadable_ledger(self, reconciler, store, mock_ledger, metrics):
        await store.create(1, "T", "D", organizer_id=7)
        mock_ledger.get_hackathon.side_effect = LedgerUnavailable("node down")

        with pytest.raises(LedgerUnavailable):
            await reconciler.reconcile(1)

        assert metrics.get_stats()["reconciliations"] == {"failed": 1}

    @pytest.mark.trio
    async def test_missing_projection(self, reconciler):
        with pytest.raises(HackathonNotFound):
            await reconciler.reconcile(5)

    @pytest.mark.trio
    async def test_report_to_dict(self, reconciler, store):
        await store.create(1, "T", "D", organizer_id=7)
        await store.apply_mirror(1, MirroredFields(registered=True))

        data = (await reconciler.reconcile(1)).to_dict()

        assert data["consistent"] is False
        assert data["diverged"] == {"registered": {"projection": True, "ledger": False}}


class TestReconcileAll:
    """Test the start-up sweep."""

    @pytest.mark.trio
    async def test_collects_failures(self, reconciler, store, mock_ledger):
        for hackathon_id in (1, 2, 3):
            await store.create(hackathon_id, "T", "D", organizer_id=7)
        await store.apply_mirror(3, MirroredFields(registered=True))

        async def get_hackathon(hackathon_id):
            if hackathon_id == 2:
                raise LedgerUnavailable("node down", hackathon_id)
            return LedgerRecordView(hackathon_id=hackathon_id)

        mock_ledger.get_hackathon.side_effect = get_hackathon

        sweep = await reconciler.reconcile_all()

        assert [r.hackathon_id for r in sweep.reports] == [1, 3]
        assert sweep.repaired == [3]
        assert list(sweep.failed) == [2]

    @pytest.mark.trio
    async def test_empty_store(self, reconciler):
        sweep = await reconciler.reconcile_all()
        assert sweep.reports == []
        assert sweep.failed == {}
