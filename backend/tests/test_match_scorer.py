"""
Unit Tests for Payment-to-Case Match Scoring

Tests the weighted scorer:
- Sub-score bands (amount, date, carrier, reference)
- Overall confidence and rounding
- Match reason text
- Worked examples

Run with: pytest tests/test_match_scorer.py -v
"""

import pytest
from datetime import datetime, timedelta, timezone

from database.reconciliation_models import Carrier, PaymentMethod, ReconciliationStatus
from reconciliation.matching_rules.case_rules import (
    CaseMatchScorer,
    reference_similarity,
    round_half_up,
)
from reconciliation.models import CaseCandidate, PaymentRecord

UTC = timezone.utc
PAYMENT_DATE = datetime(2024, 1, 10, tzinfo=UTC)


def make_payment(amount_cents=15000, payment_date=PAYMENT_DATE, carrier=Carrier.FEDEX, reference=None):
    return PaymentRecord(
        id="pay-1",
        payment_amount_cents=amount_cents,
        payment_method=PaymentMethod.CHECK,
        payment_date=payment_date,
        carrier=carrier,
        carrier_reference=reference,
        reconciliation_status=ReconciliationStatus.UNMATCHED,
    )


def make_case(claimed_cents=15000, filed_date=datetime(2024, 1, 5, tzinfo=UTC), carrier=Carrier.FEDEX, confirmation=None):
    return CaseCandidate(
        case_id="case-1",
        carrier=carrier,
        claimed_amount_cents=claimed_cents,
        filed_date=filed_date,
        confirmation_number=confirmation,
    )


@pytest.fixture
def scorer():
    return CaseMatchScorer()


class TestWorkedExamples:
    """Worked examples."""

    def test_exact_fedex_match_scores_100(self, scorer):
        """$150 FEDEX REF123, 5 days after filing -> confidence 100."""
        result = scorer.score(
            make_payment(reference="REF123"),
            make_case(confirmation="REF123"),
        )

        assert result.amount_match == 100
        assert result.date_match == 100
        assert result.carrier_match == 100
        assert result.reference_match == 100
        assert result.confidence == 100
        assert result.match_score == 100
        assert result.match_details.days_diff == pytest.approx(5.0)
        assert result.match_details.amount_diff_cents == 0

    def test_thirty_percent_gap_other_carrier_scores_31(self, scorer):
        """$100 vs $130 claimed with nothing else matching -> confidence 31."""
        result = scorer.score(
            make_payment(amount_cents=10000, payment_date=datetime(2024, 6, 1, tzinfo=UTC)),
            make_case(claimed_cents=13000, filed_date=datetime(2024, 1, 1, tzinfo=UTC), carrier=Carrier.UPS),
        )

        assert result.amount_match == 77
        assert result.date_match == 0
        assert result.carrier_match == 0
        assert result.reference_match == 0
        assert result.confidence == 31
        assert result.match_details.amount_diff_cents == 3000


class TestAmountScore:

    @pytest.mark.parametrize("payment_cents,expected", [
        (15000, 100),   # exact
        (15750, 100),   # 5%
        (15751, 80),    # just over 5%
        (16500, 80),    # 10%
        (18000, 60),    # 20%
        (19500, 70),    # 30% -> 100 - 30
        (45000, 0),     # 200% -> floored at 0
    ])
    def test_amount_bands(self, scorer, payment_cents, expected):
        """Test amount bands against a $150 claim."""
        result = scorer.score(make_payment(amount_cents=payment_cents), make_case())
        assert result.amount_match == expected

    def test_zero_claim_counts_as_full_difference(self, scorer):
        """A zero claimed amount gives a 100% difference."""
        result = scorer.score(make_payment(), make_case(claimed_cents=0))
        assert result.amount_match == 0

    def test_monotonic_in_amount_gap(self, scorer):
        """Shrinking the gap never lowers the amount score (outside the 10-20% band)."""
        case = make_case(claimed_cents=10000)
        payments = list(range(40000, 12000, -250)) + list(range(11000, 9999, -50))
        previous = -1
        for payment_cents in payments:
            score = scorer.score(make_payment(amount_cents=payment_cents), case).amount_match
            assert score >= previous
            previous = score

    def test_ten_to_twenty_percent_band_is_flat(self, scorer):
        """The 10-20% band scores 60 while a 21% gap scores 79."""
        case = make_case(claimed_cents=10000)
        assert scorer.score(make_payment(amount_cents=11500), case).amount_match == 60
        assert scorer.score(make_payment(amount_cents=12000), case).amount_match == 60
        assert scorer.score(make_payment(amount_cents=12100), case).amount_match == 79


class TestDateScore:

    @pytest.mark.parametrize("days,expected", [
        (0, 100),
        (7, 100),
        (8, 80),
        (30, 80),
        (45, 60),
        (60, 60),
        (75, 25),
        (150, 0),
    ])
    def test_date_bands(self, scorer, days, expected):
        """Test date bands by days between filing and payment."""
        filed = PAYMENT_DATE - timedelta(days=days)
        result = scorer.score(make_payment(), make_case(filed_date=filed))
        assert result.date_match == expected

    def test_payment_before_filing_uses_absolute_difference(self, scorer):
        """Test a payment dated before the filing date."""
        filed = PAYMENT_DATE + timedelta(days=3)
        result = scorer.score(make_payment(), make_case(filed_date=filed))
        assert result.date_match == 100
        assert result.match_details.days_diff == pytest.approx(3.0)

    def test_missing_filed_date_scores_zero(self, scorer):
        """Test a case without a filing date."""
        result = scorer.score(make_payment(), make_case(filed_date=None))
        assert result.date_match == 0
        assert result.match_details.days_diff is None

    def test_naive_datetimes_treated_as_utc(self, scorer):
        """Test naive and aware datetimes compare consistently."""
        result = scorer.score(make_payment(), make_case(filed_date=datetime(2024, 1, 5)))
        assert result.match_details.days_diff == pytest.approx(5.0)


class TestCarrierScore:

    def test_same_carrier(self, scorer):
        assert scorer.score(make_payment(), make_case()).carrier_match == 100

    def test_different_carrier(self, scorer):
        assert scorer.score(make_payment(), make_case(carrier=Carrier.UPS)).carrier_match == 0

    @pytest.mark.parametrize("payment_carrier,case_carrier", [
        (None, Carrier.FEDEX),
        (Carrier.FEDEX, None),
        (None, None),
    ])
    def test_unknown_carrier(self, scorer, payment_carrier, case_carrier):
        """Either side unknown scores 50."""
        result = scorer.score(make_payment(carrier=payment_carrier), make_case(carrier=case_carrier))
        assert result.carrier_match == 50


class TestReferenceScore:

    def test_exact_match_is_case_insensitive(self):
        assert reference_similarity("ref123", "REF123") == 1.0

    def test_containment(self):
        assert reference_similarity("REF123", "XREF1234") == 0.8

    def test_character_jaccard(self):
        """{a,b,c} vs {a,b,d}: 2 shared of 4."""
        assert reference_similarity("abc", "abd") == pytest.approx(0.5)

    def test_no_shared_characters(self):
        assert reference_similarity("abc", "xyz") == 0.0

    def test_missing_reference_scores_zero(self, scorer):
        """Test either reference absent."""
        assert scorer.score(make_payment(reference=None), make_case(confirmation="REF1")).reference_match == 0
        assert scorer.score(make_payment(reference="REF1"), make_case(confirmation=None)).reference_match == 0


class TestConfidence:

    def test_threshold_boundary_ninety(self, scorer):
        """40 + 20 + 20 + 0.5 * 20 = 90."""
        result = scorer.score(make_payment(reference="abc"), make_case(confirmation="abd"))
        assert result.confidence == 90

    def test_threshold_boundary_eighty_nine(self, scorer):
        """Reference similarity 3/7 gives 88.57, rounded to 89."""
        result = scorer.score(make_payment(reference="abcde"), make_case(confirmation="abcfg"))
        assert result.reference_match == 43
        assert result.confidence == 89

    def test_unknown_carrier_perfect_otherwise(self, scorer):
        """Test 40 + 20 + 10 + 20 = 90 with the payment carrier unknown."""
        result = scorer.score(
            make_payment(carrier=None, reference="REF123"),
            make_case(confirmation="REF123"),
        )
        assert result.confidence == 90

    @pytest.mark.parametrize("payment_cents,claimed_cents,days,carrier,reference", [
        (15000, 15000, 0, Carrier.FEDEX, "REF123"),
        (1, 99999999, 400, Carrier.UPS, None),
        (-5000, 15000, 10, None, "X"),
        (0, 0, 1000, Carrier.DHL, "abc"),
        (99999999, 1, 0, None, None),
    ])
    def test_confidence_bounds(self, scorer, payment_cents, claimed_cents, days, carrier, reference):
        """Confidence stays within 0..100."""
        result = scorer.score(
            make_payment(amount_cents=payment_cents, carrier=carrier, reference=reference),
            make_case(claimed_cents=claimed_cents, filed_date=PAYMENT_DATE - timedelta(days=days), confirmation="REF123"),
        )
        assert 0 <= result.confidence <= 100
        for sub in (result.amount_match, result.date_match, result.carrier_match, result.reference_match):
            assert 0 <= sub <= 100

    def test_round_half_up(self):
        assert round_half_up(30.5) == 31
        assert round_half_up(30.49) == 30
        assert round_half_up(88.5) == 89


class TestMatchReason:

    def test_all_clauses(self, scorer):
        result = scorer.score(make_payment(reference="REF123"), make_case(confirmation="REF123"))
        assert result.match_reason == (
            "Exact amount match. Recent payment. Carrier matches. Reference number matches."
        )

    def test_close_amount_clause(self, scorer):
        """10% off the claim is a close (not exact) amount match."""
        result = scorer.score(
            make_payment(amount_cents=16500, carrier=None),
            make_case(filed_date=PAYMENT_DATE - timedelta(days=45)),
        )
        assert result.match_reason == "Close amount match."

    def test_fallback_reason(self, scorer):
        """Test the fallback when no clause applies."""
        result = scorer.score(
            make_payment(amount_cents=10000, payment_date=datetime(2024, 6, 1, tzinfo=UTC)),
            make_case(claimed_cents=13000, filed_date=datetime(2024, 1, 1, tzinfo=UTC), carrier=Carrier.UPS),
        )
        assert result.match_reason == "Potential match based on available data"
