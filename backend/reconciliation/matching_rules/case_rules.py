"""
Payment-to-Case Matching Rules

Scores how likely a payment record settles a filed dispute case.

Primary Match Keys (weight out of 100):
- amount (40): percent difference from the claimed amount
- date (20): days between payment and case filing
- carrier (20): same carrier, different carrier, or unknown
- reference (20): carrier reference vs case confirmation number

Confidence Bands:
- >= 90: Auto-confirmed by the sweep
- 50-89: Suggested for review
- < 50: Not presented

Pure computation; no I/O.
"""

import math
from datetime import datetime
from typing import Optional, Tuple

from database.reconciliation_models import Carrier
from reconciliation.models import (
    CaseCandidate,
    MatchDetails,
    PaymentRecord,
    ScoreBreakdown,
)
from reconciliation.normalizers import as_utc

SECONDS_PER_DAY = 86400.0


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def reference_similarity(ref1: str, ref2: str) -> float:
    """
    Crude reference similarity.

    1.0 on case-insensitive equality, 0.8 when one contains the other,
    otherwise the Jaccard index of the two character sets.
    """
    s1 = ref1.lower()
    s2 = ref2.lower()

    if s1 == s2:
        return 1.0

    if s1 in s2 or s2 in s1:
        return 0.8

    chars1 = set(s1)
    chars2 = set(s2)
    union = chars1 | chars2
    if not union:
        return 0.0
    return len(chars1 & chars2) / len(union)


class CaseMatchScorer:
    """
    Weighted multi-factor scorer for payment -> case matches.
    """

    # Scoring weights (sum to 100)
    WEIGHT_AMOUNT = 40
    WEIGHT_DATE = 20
    WEIGHT_CARRIER = 20
    WEIGHT_REFERENCE = 20

    # Reason clause thresholds
    EXACT_AMOUNT_SCORE = 95
    CLOSE_AMOUNT_SCORE = 80
    RECENT_DATE_SCORE = 80
    REFERENCE_MATCH_SCORE = 80

    DEFAULT_REASON = "Potential match based on available data"

    def score(self, payment: PaymentRecord, candidate: CaseCandidate) -> ScoreBreakdown:
        """
        Score a payment against one case candidate.

        Args:
            payment: Payment record being matched
            candidate: Case projection from the case store

        Returns:
            ScoreBreakdown with confidence, sub-scores, reason and details
        """
        amount_score, amount_diff_cents = self._score_amount(
            payment.payment_amount_cents, candidate.claimed_amount_cents
        )
        date_score, days_diff = self._score_date(payment.payment_date, candidate.filed_date)
        carrier_score = self._score_carrier(payment.carrier, candidate.carrier)
        reference_score = self._score_reference(
            payment.carrier_reference, candidate.confirmation_number
        )

        weighted = (
            amount_score * self.WEIGHT_AMOUNT +
            date_score * self.WEIGHT_DATE +
            carrier_score * self.WEIGHT_CARRIER +
            reference_score * self.WEIGHT_REFERENCE
        ) / 100
        confidence = min(100, max(0, round_half_up(weighted)))

        return ScoreBreakdown(
            confidence=confidence,
            match_score=confidence,
            amount_match=round_half_up(amount_score),
            date_match=round_half_up(date_score),
            carrier_match=round_half_up(carrier_score),
            reference_match=round_half_up(reference_score),
            match_reason=self._build_reason(
                amount_score, date_score, carrier_score, reference_score
            ),
            match_details=MatchDetails(
                payment_amount_cents=payment.payment_amount_cents,
                claimed_amount_cents=candidate.claimed_amount_cents,
                amount_diff_cents=amount_diff_cents,
                days_diff=days_diff,
            ),
        )

    def _score_amount(self, payment_cents: int, claimed_cents: int) -> Tuple[float, int]:
        diff = abs(payment_cents - claimed_cents)

        if claimed_cents > 0:
            percent_diff = diff * 100 / claimed_cents
        else:
            percent_diff = 100.0

        if percent_diff <= 5:
            return 100.0, diff
        if percent_diff <= 10:
            return 80.0, diff
        if percent_diff <= 20:
            return 60.0, diff
        return max(0.0, 100.0 - percent_diff), diff

    def _score_date(
        self,
        payment_date: datetime,
        filed_date: Optional[datetime]
    ) -> Tuple[float, Optional[float]]:
        if filed_date is None:
            return 0.0, None

        days_diff = abs((as_utc(payment_date) - as_utc(filed_date)).total_seconds()) / SECONDS_PER_DAY

        if days_diff <= 7:
            return 100.0, days_diff
        if days_diff <= 30:
            return 80.0, days_diff
        if days_diff <= 60:
            return 60.0, days_diff
        return max(0.0, 100.0 - days_diff), days_diff

    def _score_carrier(self, payment_carrier: Optional[Carrier], case_carrier: Optional[Carrier]) -> float:
        if payment_carrier is None or case_carrier is None:
            return 50.0
        return 100.0 if payment_carrier == case_carrier else 0.0

    def _score_reference(self, carrier_reference: Optional[str], confirmation_number: Optional[str]) -> float:
        if not carrier_reference or not confirmation_number:
            return 0.0
        return reference_similarity(carrier_reference, confirmation_number) * 100

    def _build_reason(
        self,
        amount_score: float,
        date_score: float,
        carrier_score: float,
        reference_score: float
    ) -> str:
        clauses = []

        if amount_score >= self.EXACT_AMOUNT_SCORE:
            clauses.append("Exact amount match.")
        elif amount_score >= self.CLOSE_AMOUNT_SCORE:
            clauses.append("Close amount match.")

        if date_score >= self.RECENT_DATE_SCORE:
            clauses.append("Recent payment.")

        if carrier_score == 100:
            clauses.append("Carrier matches.")

        if reference_score >= self.REFERENCE_MATCH_SCORE:
            clauses.append("Reference number matches.")

        return " ".join(clauses) or self.DEFAULT_REASON


# Global instance
case_match_scorer = CaseMatchScorer()
