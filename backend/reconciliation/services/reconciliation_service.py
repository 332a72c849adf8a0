"""
Reconciliation Service

Core business logic for payment-to-case reconciliation:
- Importing bank transactions
- Creating payment records
- Finding and ranking candidate cases
- Auto-match sweep with a high-confidence auto-confirm
- Confirming matches / rejecting suggestions
- External status overrides (dispute, verification)
- Audit logging

A payment is credited to at most one case. confirm_match claims the
payment with a conditional UPDATE on its status; the loser of a race gets
ConflictError and nothing is written.
"""

import asyncio
import uuid
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from database.reconciliation_models import (
    PaymentRecordDB,
    PaymentMatchSuggestionDB,
    Carrier,
    MatchMethod,
    ReconciliationStatus,
    SuggestionStatus,
    EXTERNAL_TRANSITIONS,
    utc_now,
)
from reconciliation.errors import ConflictError, NotFoundError, ValidationError
from reconciliation.models import (
    BankTransaction,
    MatchSuggestion,
    PaymentRecord,
    PaymentRecordCreate,
    RawTransaction,
    ReconciliationStats,
    ScoredCandidate,
    SweepResult,
)
from reconciliation.normalizers import as_utc
from reconciliation.services.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.candidate_selector import CandidateSelector
from reconciliation.services.case_store import CaseStore
from reconciliation.services.stats_reporter import StatsReporter
from reconciliation.services.stores import ReconciliationStore
from reconciliation.services.transaction_importer import TransactionImporter
from sentry_integration import capture_exception

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class ReconciliationEngine:
    """
    Orchestrates reconciliation over an injected store and case store.

    Both stores are expected to share one database session so that a
    confirm and its case update land in the same transaction.
    """

    AUTO_CONFIRM_THRESHOLD = 90

    def __init__(
        self,
        store: ReconciliationStore,
        case_store: CaseStore,
        selector: Optional[CandidateSelector] = None,
        importer: Optional[TransactionImporter] = None,
        stats_reporter: Optional[StatsReporter] = None
    ):
        self.store = store
        self.case_store = case_store
        self.selector = selector or CandidateSelector(store, case_store)
        self.importer = importer or TransactionImporter(store)
        self.stats_reporter = stats_reporter or StatsReporter(store)

    # ==================== IMPORT ====================

    async def import_transactions(
        self,
        raw_transactions: Iterable[Union[RawTransaction, Dict[str, Any]]],
        batch_id: str
    ) -> int:
        """Import a bank feed batch. Returns the number of rows stored."""
        return await self.importer.import_transactions(raw_transactions, batch_id)

    # ==================== PAYMENT RECORDS ====================

    async def create_payment_record(
        self,
        data: Union[PaymentRecordCreate, Dict[str, Any]],
        actor_id: str = SYSTEM_ACTOR
    ) -> str:
        """
        Create a payment record.

        With a case_id the record starts MATCHED (confidence 100, MANUAL);
        otherwise UNMATCHED with confidence 0. The amount is stored as
        supplied; zero and negative amounts are accepted.

        Returns:
            The new payment record id
        """
        if not isinstance(data, PaymentRecordCreate):
            try:
                data = PaymentRecordCreate.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid payment record: {e}")

        linked = data.case_id is not None
        row = PaymentRecordDB(
            case_id=data.case_id,
            payment_amount_cents=data.payment_amount_cents,
            payment_method=data.payment_method,
            payment_date=as_utc(data.payment_date),
            check_number=data.check_number,
            carrier=data.carrier,
            carrier_reference=data.carrier_reference,
            bank_transaction_id=data.bank_transaction_id,
            reconciliation_status=ReconciliationStatus.MATCHED if linked else ReconciliationStatus.UNMATCHED,
            match_confidence=100 if linked else 0,
            match_method=MatchMethod.MANUAL if linked else None,
            matched_by=actor_id if linked else None,
        )

        try:
            await self.store.add_payment_record(row)
            await self.store.commit()
        except Exception as e:
            logger.error(f"Failed to create payment record: {e}")
            await self.store.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.PAYMENT_CREATED,
            {
                "case_id": data.case_id,
                "payment_amount_cents": data.payment_amount_cents,
                "status": row.reconciliation_status.value,
            },
            payment_record_id=row.id,
            actor=actor_id
        )

        return row.id

    async def get_payment_record(self, payment_record_id: str) -> PaymentRecord:
        row = await self.store.get_payment_record(payment_record_id, refresh=True)
        if row is None:
            raise NotFoundError("Payment record", payment_record_id)
        return PaymentRecord.model_validate(row)

    async def get_payment_records(
        self,
        status: Optional[ReconciliationStatus] = None,
        carrier: Optional[Carrier] = None
    ) -> List[PaymentRecord]:
        """Payment records, newest payment first. Filters combine with AND."""
        rows = await self.store.list_payment_records(status=status, carrier=carrier)
        return [PaymentRecord.model_validate(r) for r in rows]

    async def get_unmatched_payments(self) -> List[PaymentRecord]:
        return await self.get_payment_records(status=ReconciliationStatus.UNMATCHED)

    async def get_bank_transactions(
        self,
        is_reconciled: Optional[bool] = None,
        is_carrier_payment: Optional[bool] = None
    ) -> List[BankTransaction]:
        rows = await self.store.list_bank_transactions(
            is_reconciled=is_reconciled,
            is_carrier_payment=is_carrier_payment
        )
        return [BankTransaction.model_validate(r) for r in rows]

    async def get_match_suggestions(
        self,
        payment_record_id: Optional[str] = None,
        status: Optional[SuggestionStatus] = None
    ) -> List[MatchSuggestion]:
        """Suggestions, highest confidence first."""
        rows = await self.store.list_suggestions(payment_record_id=payment_record_id, status=status)
        return [MatchSuggestion.model_validate(r) for r in rows]

    # ==================== MATCHING ====================

    async def find_matches(self, payment_record_id: str) -> List[ScoredCandidate]:
        """Ranked candidates for one payment. Read-only."""
        return await self.selector.find_matches(payment_record_id)

    async def auto_match_sweep(self, cancel_event: Optional[asyncio.Event] = None) -> SweepResult:
        """
        Suggest (and, at high confidence, confirm) a case for every
        UNMATCHED payment.

        For each record the top candidate is stored as a PENDING
        suggestion; if its confidence is >= AUTO_CONFIRM_THRESHOLD the
        match is confirmed with method AUTO. A failure on one record is
        logged, counted and skipped.

        Args:
            cancel_event: When set, the sweep stops before the next record

        Returns:
            SweepResult with per-run counters
        """
        result = SweepResult(run_id=str(uuid.uuid4()))

        log_reconciliation_event(
            ReconciliationAuditEvent.SWEEP_STARTED,
            {"run_id": result.run_id}
        )

        payment_ids = await self.store.list_unmatched_payment_ids()

        for payment_id in payment_ids:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break

            result.processed += 1
            try:
                await self._sweep_payment(payment_id, result)
            except ConflictError as e:
                # Claimed by a concurrent confirm between suggestion and auto-confirm
                logger.info(f"Auto-confirm skipped for payment record {payment_id}: {e}")
            except asyncio.CancelledError:
                await self.store.rollback()
                log_reconciliation_event(
                    ReconciliationAuditEvent.SWEEP_CANCELLED,
                    {**result.to_dict(), "interrupted_payment_record_id": payment_id}
                )
                raise
            except Exception as e:
                await self.store.rollback()
                result.failed += 1
                result.failed_payment_ids.append(payment_id)
                logger.error(
                    f"Auto-match failed for payment record {payment_id}: {e}",
                    exc_info=True
                )
                capture_exception(e, payment_record_id=payment_id, run_id=result.run_id)

        log_reconciliation_event(
            ReconciliationAuditEvent.SWEEP_CANCELLED if result.cancelled else ReconciliationAuditEvent.SWEEP_COMPLETED,
            result.to_dict()
        )

        return result

    async def _sweep_payment(self, payment_id: str, result: SweepResult):
        row = await self.store.get_payment_record(payment_id, refresh=True)
        if row is None or row.reconciliation_status != ReconciliationStatus.UNMATCHED:
            # Matched or removed since the id list was read
            return

        payment = PaymentRecord.model_validate(row)
        candidates = await self.selector.rank(payment)
        if not candidates:
            return

        best = candidates[0]
        await self._store_suggestion(payment.id, best)
        result.suggested += 1

        if best.confidence >= self.AUTO_CONFIRM_THRESHOLD:
            await self.confirm_match(
                payment.id,
                best.case_id,
                SYSTEM_ACTOR,
                method=MatchMethod.AUTO,
                confidence=best.confidence
            )
            result.matched_count += 1

    async def _store_suggestion(self, payment_record_id: str, candidate: ScoredCandidate) -> str:
        breakdown = candidate.breakdown
        scores = dict(
            confidence=breakdown.confidence,
            match_score=breakdown.match_score,
            amount_match=breakdown.amount_match,
            date_match=breakdown.date_match,
            carrier_match=breakdown.carrier_match,
            reference_match=breakdown.reference_match,
            match_reason=breakdown.match_reason,
            match_details=breakdown.match_details.to_dict(),
        )

        # A pair keeps one open suggestion across sweeps; rescore it in place
        row = await self.store.get_pending_suggestion(payment_record_id, candidate.case_id)
        if row is not None:
            for field, value in scores.items():
                setattr(row, field, value)
            event = ReconciliationAuditEvent.SUGGESTION_REFRESHED
        else:
            row = PaymentMatchSuggestionDB(
                payment_record_id=payment_record_id,
                case_id=candidate.case_id,
                status=SuggestionStatus.PENDING,
                **scores,
            )
            await self.store.add_suggestion(row)
            event = ReconciliationAuditEvent.SUGGESTION_CREATED
        await self.store.commit()

        log_reconciliation_event(
            event,
            {
                "suggestion_id": row.id,
                "case_id": candidate.case_id,
                "confidence": breakdown.confidence,
            },
            payment_record_id=payment_record_id
        )
        return row.id

    # ==================== REVIEW ====================

    async def confirm_match(
        self,
        payment_record_id: str,
        case_id: str,
        actor_id: str,
        method: MatchMethod = MatchMethod.MANUAL,
        confidence: Optional[int] = None
    ) -> PaymentRecord:
        """
        Link an UNMATCHED payment to a case.

        In one transaction: claims the payment (conditional on UNMATCHED),
        marks the case resolved with the payment amount, and accepts the
        pending suggestion for this payment/case pair if there is one.

        Args:
            confidence: Recorded match confidence; defaults to 100 for a
                caller-asserted match

        Raises:
            NotFoundError: payment record or case does not exist
            ConflictError: payment record is not UNMATCHED
        """
        matched_at = utc_now()

        try:
            claimed = await self.store.claim_unmatched_payment(
                payment_record_id,
                case_id,
                actor_id,
                method=MatchMethod(method),
                confidence=100 if confidence is None else confidence,
                matched_at=matched_at
            )

            if not claimed:
                current = await self.store.get_payment_status(payment_record_id)
                if current is None:
                    raise NotFoundError("Payment record", payment_record_id)

                log_reconciliation_event(
                    ReconciliationAuditEvent.MATCH_CONFLICT,
                    {"case_id": case_id, "current_status": current.value},
                    payment_record_id=payment_record_id,
                    actor=actor_id
                )
                raise ConflictError(
                    f"Payment record {payment_record_id} is {current.value}, not UNMATCHED",
                    current_status=current.value
                )

            row = await self.store.get_payment_record(payment_record_id, refresh=True)
            await self.case_store.mark_resolved(case_id, row.payment_amount_cents)
            accepted_id = await self.store.accept_pending_suggestion(
                payment_record_id, case_id, actor_id, matched_at
            )
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_CONFIRMED,
            {
                "case_id": case_id,
                "method": MatchMethod(method).value,
                "accepted_suggestion_id": accepted_id,
                "recovered_amount_cents": row.payment_amount_cents,
            },
            payment_record_id=payment_record_id,
            actor=actor_id
        )

        return PaymentRecord.model_validate(row)

    async def reject_suggestion(
        self,
        suggestion_id: str,
        actor_id: str,
        reason: Optional[str] = None
    ) -> MatchSuggestion:
        """
        Reject a suggestion. The payment record is not touched.

        Raises:
            NotFoundError: suggestion does not exist
            ConflictError: suggestion was already accepted
        """
        try:
            rejected = await self.store.reject_suggestion(suggestion_id, actor_id, reason, utc_now())
            if not rejected:
                existing = await self.store.get_suggestion(suggestion_id, refresh=True)
                if existing is None:
                    raise NotFoundError("Suggestion", suggestion_id)
                raise ConflictError(
                    f"Suggestion {suggestion_id} is already {existing.status.value}",
                    current_status=existing.status.value
                )
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        row = await self.store.get_suggestion(suggestion_id, refresh=True)

        log_reconciliation_event(
            ReconciliationAuditEvent.SUGGESTION_REJECTED,
            {"suggestion_id": suggestion_id, "case_id": row.case_id, "reason": reason},
            payment_record_id=row.payment_record_id,
            actor=actor_id
        )

        return MatchSuggestion.model_validate(row)

    async def record_status_change(
        self,
        payment_record_id: str,
        new_status: Union[ReconciliationStatus, str],
        actor_id: str
    ) -> PaymentRecord:
        """
        Apply an external dispute or verification to a matched payment.

        Allowed: MATCHED -> DISPUTED, MATCHED -> VERIFIED, VERIFIED -> DISPUTED.
        A disputed payment no longer carries a case id.

        Raises:
            ValidationError: unknown status
            NotFoundError: payment record does not exist
            ConflictError: transition not allowed from the current status
        """
        try:
            target = ReconciliationStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown reconciliation status: {new_status}", field="status", value=new_status)

        try:
            current = await self.store.get_payment_status(payment_record_id)
            if current is None:
                raise NotFoundError("Payment record", payment_record_id)

            if target not in EXTERNAL_TRANSITIONS.get(current, set()):
                raise ConflictError(
                    f"Cannot move payment record {payment_record_id} from {current.value} to {target.value}",
                    current_status=current.value
                )

            values: Dict[str, Any] = {"updated_at": utc_now()}
            if target == ReconciliationStatus.DISPUTED:
                values["case_id"] = None

            changed = await self.store.transition_payment_status(payment_record_id, current, target, values)
            if not changed:
                raise ConflictError(
                    f"Payment record {payment_record_id} changed concurrently",
                    current_status=current.value
                )
            await self.store.commit()
        except Exception:
            await self.store.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.STATUS_CHANGED,
            {"from_status": current.value, "to_status": target.value},
            payment_record_id=payment_record_id,
            actor=actor_id
        )

        return await self.get_payment_record(payment_record_id)

    # ==================== STATS ====================

    async def get_stats(self) -> ReconciliationStats:
        return await self.stats_reporter.get_stats()
