"""
Tests for Reconciliation Statistics

Run with: pytest tests/test_stats_reporter.py -v
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from database.reconciliation_models import ReconciliationStatus
from reconciliation.services.stats_reporter import StatsReporter

UTC = timezone.utc


class TestStatsFromStore:

    @pytest.mark.asyncio
    async def test_empty(self, recon):
        stats = await recon.get_stats()

        assert stats.total_payments == 0
        assert stats.matched_payments == 0
        assert stats.unmatched_payments == 0
        assert stats.total_amount == Decimal("0.00")
        assert stats.average_match_time_hours == 0.0
        assert stats.by_status == {"UNMATCHED": 0, "MATCHED": 0, "DISPUTED": 0, "VERIFIED": 0}

    @pytest.mark.asyncio
    async def test_counts_and_amounts(self, recon, make_case, make_payment):
        case_id = await make_case()
        other_case = await make_case()
        await make_payment(payment_amount_cents=10000)
        await make_payment(payment_amount_cents=2550)
        await make_payment(payment_amount_cents=15000, case_id=case_id)
        verified = await make_payment(payment_amount_cents=5000, case_id=other_case)
        await recon.record_status_change(verified, ReconciliationStatus.VERIFIED, "user-1")

        stats = await recon.get_stats()

        assert stats.total_payments == 4
        assert stats.matched_payments == 1
        assert stats.unmatched_payments == 2
        assert stats.total_amount == Decimal("325.50")
        assert stats.matched_amount == Decimal("150.00")
        assert stats.unmatched_amount == Decimal("125.50")
        assert stats.by_status["VERIFIED"] == 1

        data = stats.to_dict()
        assert data["total_amount"] == "325.50"

    @pytest.mark.asyncio
    async def test_average_match_time_after_confirm(self, recon, make_case, make_payment):
        case_id = await make_case()
        payment_id = await make_payment()
        await recon.confirm_match(payment_id, case_id, "user-1")

        stats = await recon.get_stats()

        assert stats.matched_payments == 1
        assert 0.0 <= stats.average_match_time_hours < 1.0


class TestAverageMatchTime:
    """Averaging against a stub store."""

    @pytest.mark.asyncio
    async def test_mean_hours(self):
        created = datetime(2024, 1, 1, tzinfo=UTC)
        store = AsyncMock()
        store.payment_totals_by_status.return_value = {
            ReconciliationStatus.MATCHED: (2, 20000),
        }
        store.list_match_timestamps.return_value = [
            (created, created + timedelta(hours=2)),
            (created.replace(tzinfo=None), datetime(2024, 1, 1, 6)),
        ]

        stats = await StatsReporter(store).get_stats()

        assert stats.average_match_time_hours == pytest.approx(4.0)
        assert stats.matched_amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_manual_create_has_no_match_time(self):
        """Records created already linked carry no matched_at and are left out."""
        store = AsyncMock()
        store.payment_totals_by_status.return_value = {ReconciliationStatus.MATCHED: (1, 100)}
        store.list_match_timestamps.return_value = []

        stats = await StatsReporter(store).get_stats()

        assert stats.average_match_time_hours == 0.0
