"""
Reconciliation Store

Persistence for bank transactions, payment records and match suggestions
over a single AsyncSession. The store never commits on its own; callers
decide the unit of work with commit() / rollback().

Status changes are conditional UPDATEs that report whether a row was
affected, so callers get compare-and-set semantics from the database.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import (
    BankTransactionDB,
    PaymentRecordDB,
    PaymentMatchSuggestionDB,
    Carrier,
    MatchMethod,
    ReconciliationStatus,
    SuggestionStatus,
)
from reconciliation.errors import translate_store_errors

logger = logging.getLogger(__name__)


class ReconciliationStore:
    """
    SQLAlchemy-backed store for the reconciliation engine.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== UNIT OF WORK ====================

    @translate_store_errors
    async def commit(self):
        await self.db.commit()

    @translate_store_errors
    async def rollback(self):
        await self.db.rollback()

    # ==================== BANK TRANSACTIONS ====================

    @translate_store_errors
    async def get_bank_transaction_by_external_id(self, external_id: str) -> Optional[BankTransactionDB]:
        result = await self.db.execute(
            select(BankTransactionDB).where(
                BankTransactionDB.external_transaction_id == external_id
            ).limit(1)
        )
        return result.scalar_one_or_none()

    @translate_store_errors
    async def add_bank_transaction(self, row: BankTransactionDB) -> BankTransactionDB:
        self.db.add(row)
        await self.db.flush()
        return row

    @translate_store_errors
    async def list_bank_transactions(
        self,
        is_reconciled: Optional[bool] = None,
        is_carrier_payment: Optional[bool] = None
    ) -> List[BankTransactionDB]:
        query = select(BankTransactionDB)
        if is_reconciled is not None:
            query = query.where(BankTransactionDB.is_reconciled == is_reconciled)
        if is_carrier_payment is not None:
            query = query.where(BankTransactionDB.is_carrier_payment == is_carrier_payment)
        query = query.order_by(BankTransactionDB.transaction_date.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ==================== PAYMENT RECORDS ====================

    @translate_store_errors
    async def add_payment_record(self, row: PaymentRecordDB) -> PaymentRecordDB:
        self.db.add(row)
        await self.db.flush()
        return row

    @translate_store_errors
    async def get_payment_record(self, payment_record_id: str, refresh: bool = False) -> Optional[PaymentRecordDB]:
        query = select(PaymentRecordDB).where(PaymentRecordDB.id == payment_record_id)
        if refresh:
            # Bulk UPDATEs bypass the identity map
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    @translate_store_errors
    async def get_payment_status(self, payment_record_id: str) -> Optional[ReconciliationStatus]:
        result = await self.db.execute(
            select(PaymentRecordDB.reconciliation_status).where(PaymentRecordDB.id == payment_record_id)
        )
        return result.scalar_one_or_none()

    @translate_store_errors
    async def list_payment_records(
        self,
        status: Optional[ReconciliationStatus] = None,
        carrier: Optional[Carrier] = None
    ) -> List[PaymentRecordDB]:
        query = select(PaymentRecordDB)
        if status is not None:
            query = query.where(PaymentRecordDB.reconciliation_status == status)
        if carrier is not None:
            query = query.where(PaymentRecordDB.carrier == carrier)
        query = query.order_by(PaymentRecordDB.payment_date.desc()).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @translate_store_errors
    async def list_unmatched_payment_ids(self) -> List[str]:
        result = await self.db.execute(
            select(PaymentRecordDB.id)
            .where(PaymentRecordDB.reconciliation_status == ReconciliationStatus.UNMATCHED)
            .order_by(PaymentRecordDB.created_at, PaymentRecordDB.id)
        )
        return list(result.scalars().all())

    @translate_store_errors
    async def claim_unmatched_payment(
        self,
        payment_record_id: str,
        case_id: str,
        actor_id: str,
        method: MatchMethod,
        confidence: int,
        matched_at: datetime
    ) -> bool:
        """
        UNMATCHED -> MATCHED as one conditional UPDATE.

        Returns False when the record is missing or no longer UNMATCHED.
        """
        result = await self.db.execute(
            update(PaymentRecordDB)
            .where(
                PaymentRecordDB.id == payment_record_id,
                PaymentRecordDB.reconciliation_status == ReconciliationStatus.UNMATCHED,
            )
            .values(
                case_id=case_id,
                reconciliation_status=ReconciliationStatus.MATCHED,
                match_confidence=confidence,
                match_method=method,
                matched_at=matched_at,
                matched_by=actor_id,
                updated_at=matched_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @translate_store_errors
    async def transition_payment_status(
        self,
        payment_record_id: str,
        from_status: ReconciliationStatus,
        to_status: ReconciliationStatus,
        values: Dict[str, Any],
    ) -> bool:
        """Conditional status change; False if the record was not in from_status."""
        result = await self.db.execute(
            update(PaymentRecordDB)
            .where(
                PaymentRecordDB.id == payment_record_id,
                PaymentRecordDB.reconciliation_status == from_status,
            )
            .values(reconciliation_status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @translate_store_errors
    async def payment_totals_by_status(self) -> Dict[ReconciliationStatus, Tuple[int, int]]:
        """Map of status -> (record count, summed cents)."""
        result = await self.db.execute(
            select(
                PaymentRecordDB.reconciliation_status,
                func.count(PaymentRecordDB.id),
                func.coalesce(func.sum(PaymentRecordDB.payment_amount_cents), 0),
            ).group_by(PaymentRecordDB.reconciliation_status)
        )
        return {
            ReconciliationStatus(status): (int(count), int(total))
            for status, count, total in result.all()
        }

    @translate_store_errors
    async def list_match_timestamps(self) -> List[Tuple[datetime, datetime]]:
        """(created_at, matched_at) for MATCHED records that carry a match time."""
        result = await self.db.execute(
            select(PaymentRecordDB.created_at, PaymentRecordDB.matched_at).where(
                PaymentRecordDB.reconciliation_status == ReconciliationStatus.MATCHED,
                PaymentRecordDB.matched_at.is_not(None),
            )
        )
        return [(created_at, matched_at) for created_at, matched_at in result.all()]

    # ==================== MATCH SUGGESTIONS ====================

    @translate_store_errors
    async def add_suggestion(self, row: PaymentMatchSuggestionDB) -> PaymentMatchSuggestionDB:
        self.db.add(row)
        await self.db.flush()
        return row

    @translate_store_errors
    async def get_suggestion(self, suggestion_id: str, refresh: bool = False) -> Optional[PaymentMatchSuggestionDB]:
        query = select(PaymentMatchSuggestionDB).where(PaymentMatchSuggestionDB.id == suggestion_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    @translate_store_errors
    async def list_suggestions(
        self,
        payment_record_id: Optional[str] = None,
        status: Optional[SuggestionStatus] = None
    ) -> List[PaymentMatchSuggestionDB]:
        query = select(PaymentMatchSuggestionDB)
        if payment_record_id is not None:
            query = query.where(PaymentMatchSuggestionDB.payment_record_id == payment_record_id)
        if status is not None:
            query = query.where(PaymentMatchSuggestionDB.status == status)
        query = query.order_by(
            PaymentMatchSuggestionDB.confidence.desc(),
            PaymentMatchSuggestionDB.created_at.desc(),
        ).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @translate_store_errors
    async def get_pending_suggestion(
        self,
        payment_record_id: str,
        case_id: str
    ) -> Optional[PaymentMatchSuggestionDB]:
        """Newest PENDING suggestion for a payment/case pair."""
        query = (
            select(PaymentMatchSuggestionDB)
            .where(
                PaymentMatchSuggestionDB.payment_record_id == payment_record_id,
                PaymentMatchSuggestionDB.case_id == case_id,
                PaymentMatchSuggestionDB.status == SuggestionStatus.PENDING,
            )
            .order_by(PaymentMatchSuggestionDB.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    @translate_store_errors
    async def accept_pending_suggestion(
        self,
        payment_record_id: str,
        case_id: str,
        actor_id: str,
        reviewed_at: datetime
    ) -> Optional[str]:
        """
        Accept the newest pending suggestion for the pair and reject every
        other pending suggestion for the payment.

        Only one suggestion per payment may be ACCEPTED, so exactly one row is
        flipped. Returns the accepted suggestion id, or None if there was none.
        """
        pending = await self.get_pending_suggestion(payment_record_id, case_id)
        accepted_id = pending.id if pending is not None else None

        if accepted_id is not None:
            await self.db.execute(
                update(PaymentMatchSuggestionDB)
                .where(
                    PaymentMatchSuggestionDB.id == accepted_id,
                    PaymentMatchSuggestionDB.status == SuggestionStatus.PENDING,
                )
                .values(
                    status=SuggestionStatus.ACCEPTED,
                    reviewed_by=actor_id,
                    reviewed_at=reviewed_at,
                )
                .execution_options(synchronize_session=False)
            )

        await self.db.execute(
            update(PaymentMatchSuggestionDB)
            .where(
                PaymentMatchSuggestionDB.payment_record_id == payment_record_id,
                PaymentMatchSuggestionDB.status == SuggestionStatus.PENDING,
            )
            .values(
                status=SuggestionStatus.REJECTED,
                reviewed_by=actor_id,
                reviewed_at=reviewed_at,
                review_notes=f"Superseded by confirmed match to case {case_id}",
            )
            .execution_options(synchronize_session=False)
        )
        return accepted_id

    @translate_store_errors
    async def reject_suggestion(
        self,
        suggestion_id: str,
        actor_id: str,
        reason: Optional[str],
        reviewed_at: datetime
    ) -> bool:
        """Any non-accepted suggestion can be rejected; False otherwise."""
        result = await self.db.execute(
            update(PaymentMatchSuggestionDB)
            .where(
                PaymentMatchSuggestionDB.id == suggestion_id,
                PaymentMatchSuggestionDB.status != SuggestionStatus.ACCEPTED,
            )
            .values(
                status=SuggestionStatus.REJECTED,
                reviewed_by=actor_id,
                reviewed_at=reviewed_at,
                review_notes=reason,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
