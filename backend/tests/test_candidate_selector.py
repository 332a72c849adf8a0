"""
Tests for Candidate Selection and Ranking

Run with: pytest tests/test_candidate_selector.py -v
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from database.reconciliation_models import Carrier, PaymentMethod, ReconciliationStatus
from reconciliation.errors import NotFoundError
from reconciliation.models import CaseCandidate, PaymentRecord
from reconciliation.services.candidate_selector import CandidateSelector
from reconciliation.services.case_store import SqlCaseStore

UTC = timezone.utc
PAYMENT_DATE = datetime(2024, 6, 1, tzinfo=UTC)


@pytest.fixture
def selector(store, session):
    return CandidateSelector(store, SqlCaseStore(session))


class TestFindMatches:

    @pytest.mark.asyncio
    async def test_ranked_highest_first(self, selector, make_case, make_payment):
        """Test candidates come back sorted by confidence."""
        weak = await make_case(claimed_amount_cents=16500, filed_date=PAYMENT_DATE - timedelta(days=45))
        strong = await make_case(claimed_amount_cents=15000, filed_date=PAYMENT_DATE - timedelta(days=3))
        payment_id = await make_payment(payment_date=PAYMENT_DATE)

        candidates = await selector.find_matches(payment_id)

        assert [c.case_id for c in candidates] == [strong, weak]
        assert candidates[0].confidence > candidates[1].confidence
        assert candidates[0].breakdown.match_details.payment_amount_cents == 15000

    @pytest.mark.asyncio
    async def test_same_carrier_only(self, selector, make_case, make_payment):
        await make_case(carrier=Carrier.UPS, filed_date=PAYMENT_DATE - timedelta(days=3))
        fedex = await make_case(carrier=Carrier.FEDEX, filed_date=PAYMENT_DATE - timedelta(days=3))
        payment_id = await make_payment(payment_date=PAYMENT_DATE, carrier=Carrier.FEDEX)

        candidates = await selector.find_matches(payment_id)

        assert [c.case_id for c in candidates] == [fedex]

    @pytest.mark.asyncio
    async def test_unknown_carrier_searches_all_carriers(self, selector, make_case, make_payment):
        await make_case(carrier=Carrier.UPS, filed_date=PAYMENT_DATE - timedelta(days=3))
        await make_case(carrier=Carrier.DHL, filed_date=PAYMENT_DATE - timedelta(days=3))
        payment_id = await make_payment(payment_date=PAYMENT_DATE, carrier=None)

        candidates = await selector.find_matches(payment_id)

        assert len(candidates) == 2
        assert all(c.breakdown.carrier_match == 50 for c in candidates)

    @pytest.mark.asyncio
    async def test_window_boundary(self, selector, make_case, make_payment):
        """Test cases filed more than 90 days before the payment are not considered."""
        inside = await make_case(filed_date=PAYMENT_DATE - timedelta(days=89))
        await make_case(filed_date=PAYMENT_DATE - timedelta(days=91))
        payment_id = await make_payment(payment_date=PAYMENT_DATE)

        candidates = await selector.find_matches(payment_id)

        assert [c.case_id for c in candidates] == [inside]
        assert candidates[0].confidence == 62

    @pytest.mark.asyncio
    async def test_below_floor_excluded(self, selector, make_case, make_payment):
        """$100 vs a $130 claim filed 80 days earlier scores 45: not presented."""
        await make_case(
            carrier=Carrier.UPS,
            claimed_amount_cents=13000,
            filed_date=PAYMENT_DATE - timedelta(days=80)
        )
        payment_id = await make_payment(payment_amount_cents=10000, payment_date=PAYMENT_DATE, carrier=None)

        assert await selector.find_matches(payment_id) == []

    @pytest.mark.asyncio
    async def test_no_cases(self, selector, make_payment):
        payment_id = await make_payment(payment_date=PAYMENT_DATE)
        assert await selector.find_matches(payment_id) == []

    @pytest.mark.asyncio
    async def test_missing_payment(self, selector):
        with pytest.raises(NotFoundError):
            await selector.find_matches("does-not-exist")


class TestRank:
    """Ranking against a stub case store."""

    def _payment(self, carrier=Carrier.FEDEX):
        return PaymentRecord(
            id="pay-1",
            payment_amount_cents=15000,
            payment_method=PaymentMethod.ACH,
            payment_date=PAYMENT_DATE,
            carrier=carrier,
            reconciliation_status=ReconciliationStatus.UNMATCHED,
        )

    def _case(self, case_id, claimed_cents=15000, days=3):
        return CaseCandidate(
            case_id=case_id,
            carrier=Carrier.FEDEX,
            claimed_amount_cents=claimed_cents,
            filed_date=PAYMENT_DATE - timedelta(days=days),
        )

    @pytest.mark.asyncio
    async def test_case_store_query(self):
        """Test the carrier filter and the window start passed to the case store."""
        case_store = AsyncMock()
        case_store.list_candidates.return_value = []
        selector = CandidateSelector(AsyncMock(), case_store)

        await selector.rank(self._payment())

        case_store.list_candidates.assert_awaited_once_with(
            Carrier.FEDEX, PAYMENT_DATE - timedelta(days=90)
        )

    @pytest.mark.asyncio
    async def test_ties_keep_store_order(self):
        case_store = AsyncMock()
        case_store.list_candidates.return_value = [
            self._case("case-a"),
            self._case("case-b", claimed_cents=100000),
            self._case("case-c"),
        ]
        selector = CandidateSelector(AsyncMock(), case_store)

        candidates = await selector.rank(self._payment())

        assert [c.case_id for c in candidates] == ["case-a", "case-c"]
        assert candidates[0].confidence == candidates[1].confidence
