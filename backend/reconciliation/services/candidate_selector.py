"""
Candidate Selector

Pulls plausible cases for a payment from the case store and ranks them
with the match scorer.
"""

import logging
from datetime import timedelta
from typing import List

from reconciliation.errors import NotFoundError
from reconciliation.matching_rules.case_rules import CaseMatchScorer, case_match_scorer
from reconciliation.models import PaymentRecord, ScoredCandidate
from reconciliation.normalizers import as_utc
from reconciliation.services.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.case_store import CaseStore
from reconciliation.services.stores import ReconciliationStore

logger = logging.getLogger(__name__)


class CandidateSelector:
    """
    Ranks case candidates for a payment record.

    Pool: same carrier when the payment's carrier is known, filed no more
    than CANDIDATE_WINDOW_DAYS before the payment date.
    """

    CANDIDATE_WINDOW_DAYS = 90
    MIN_CONFIDENCE = 50

    def __init__(
        self,
        store: ReconciliationStore,
        case_store: CaseStore,
        scorer: CaseMatchScorer = case_match_scorer
    ):
        self.store = store
        self.case_store = case_store
        self.scorer = scorer

    async def find_matches(self, payment_record_id: str) -> List[ScoredCandidate]:
        """
        Find and rank candidate cases for a payment record.

        Returns:
            Candidates with confidence >= MIN_CONFIDENCE, highest first.
            Empty when nothing clears the floor.

        Raises:
            NotFoundError: payment record does not exist
        """
        row = await self.store.get_payment_record(payment_record_id)
        if row is None:
            raise NotFoundError("Payment record", payment_record_id)

        payment = PaymentRecord.model_validate(row)
        return await self.rank(payment)

    async def rank(self, payment: PaymentRecord) -> List[ScoredCandidate]:
        filed_after = as_utc(payment.payment_date) - timedelta(days=self.CANDIDATE_WINDOW_DAYS)
        pool = await self.case_store.list_candidates(payment.carrier, filed_after)

        candidates = []
        for case in pool:
            breakdown = self.scorer.score(payment, case)
            if breakdown.confidence >= self.MIN_CONFIDENCE:
                candidates.append(ScoredCandidate(case_id=case.case_id, breakdown=breakdown))

        # Stable sort keeps case-store order among ties
        candidates.sort(key=lambda c: c.confidence, reverse=True)

        log_reconciliation_event(
            ReconciliationAuditEvent.CANDIDATES_FOUND,
            {
                "pool_size": len(pool),
                "candidates_count": len(candidates),
                "top_confidence": candidates[0].confidence if candidates else None,
            },
            payment_record_id=payment.id
        )

        return candidates
