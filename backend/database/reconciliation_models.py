"""
Payment Reconciliation - Database Models

Tables:
- bank_transactions: Raw ledger entries imported from bank feeds
- payment_records: Normalized payment events eligible for matching to a case
- payment_match_suggestions: Engine-generated match proposals (audit trail)
- cases: Read projection of the dispute case store used by the SQL case store

All monetary columns hold integer minor units (cents).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Text, Integer, BigInteger, Boolean, DateTime,
    ForeignKey, Index, CheckConstraint, Enum as SQLEnum, JSON, text
)

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS (FROZEN) ====================

class Carrier(str, PyEnum):
    """Shipping carriers a payment or case can belong to"""
    FEDEX = "FEDEX"
    UPS = "UPS"
    USPS = "USPS"
    DHL = "DHL"
    OTHER = "OTHER"


class PaymentMethod(str, PyEnum):
    CHECK = "CHECK"
    ACH = "ACH"
    CREDIT = "CREDIT"
    WIRE = "WIRE"
    OTHER = "OTHER"


class ReconciliationStatus(str, PyEnum):
    """Lifecycle of a payment record"""
    UNMATCHED = "UNMATCHED"    # Eligible for matching
    MATCHED = "MATCHED"        # Linked to exactly one case
    DISPUTED = "DISPUTED"      # External dispute raised against the match
    VERIFIED = "VERIFIED"      # Externally verified match


class MatchMethod(str, PyEnum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"
    AI_SUGGESTED = "AI_SUGGESTED"


class SuggestionStatus(str, PyEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


# Allowed external transitions (confirm_match owns UNMATCHED -> MATCHED)
EXTERNAL_TRANSITIONS = {
    ReconciliationStatus.MATCHED: {ReconciliationStatus.DISPUTED, ReconciliationStatus.VERIFIED},
    ReconciliationStatus.VERIFIED: {ReconciliationStatus.DISPUTED},
}


def _enum_column(enum_cls, name: str):
    return SQLEnum(enum_cls, name=name, native_enum=False, length=20)


# ==================== DATABASE MODELS ====================

class BankTransactionDB(Base):
    """
    Raw bank ledger entry.

    Immutable after import apart from the is_reconciled linkage flag,
    which is maintained outside this engine.
    """
    __tablename__ = "bank_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    transaction_date = Column(DateTime(timezone=True), nullable=False, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    description = Column(Text, nullable=False, default="")
    transaction_type = Column(String(50), nullable=True)
    bank_account_id = Column(String(100), nullable=True)

    # Dedup key supplied by the bank feed
    external_transaction_id = Column(String(255), nullable=False, unique=True)

    check_number = Column(String(50), nullable=True)
    category = Column(String(100), nullable=True)

    # Classification
    is_carrier_payment = Column(Boolean, nullable=False, default=False, index=True)
    detected_carrier = Column(_enum_column(Carrier, "carrier_enum"), nullable=True)

    import_batch_id = Column(String(100), nullable=False, index=True)
    raw_payload = Column(JSON, nullable=True)

    is_reconciled = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)


class PaymentRecordDB(Base):
    """
    Payment event eligible for matching to exactly one case.
    """
    __tablename__ = "payment_records"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), nullable=True, index=True)

    payment_amount_cents = Column(BigInteger, nullable=False)
    payment_method = Column(_enum_column(PaymentMethod, "payment_method_enum"), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False, index=True)
    check_number = Column(String(50), nullable=True)
    carrier = Column(_enum_column(Carrier, "carrier_enum"), nullable=True, index=True)
    carrier_reference = Column(String(255), nullable=True)
    bank_transaction_id = Column(String(36), ForeignKey("bank_transactions.id"), nullable=True)

    # Reconciliation state
    reconciliation_status = Column(
        _enum_column(ReconciliationStatus, "reconciliation_status_enum"),
        nullable=False,
        default=ReconciliationStatus.UNMATCHED,
        index=True
    )
    match_confidence = Column(Integer, nullable=False, default=0)
    match_method = Column(_enum_column(MatchMethod, "match_method_enum"), nullable=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    matched_by = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        CheckConstraint(
            "(case_id IS NULL AND reconciliation_status IN ('UNMATCHED', 'DISPUTED')) OR "
            "(case_id IS NOT NULL AND reconciliation_status IN ('MATCHED', 'VERIFIED'))",
            name="ck_payment_records_case_link"
        ),
        CheckConstraint(
            "match_confidence >= 0 AND match_confidence <= 100",
            name="ck_payment_records_confidence"
        ),
    )


class PaymentMatchSuggestionDB(Base):
    """
    Proposed payment -> case match produced by the auto-match sweep.
    """
    __tablename__ = "payment_match_suggestions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    payment_record_id = Column(String(36), ForeignKey("payment_records.id"), nullable=False, index=True)
    case_id = Column(String(36), nullable=False, index=True)

    confidence = Column(Integer, nullable=False)
    match_score = Column(Integer, nullable=False)
    amount_match = Column(Integer, nullable=False)
    date_match = Column(Integer, nullable=False)
    carrier_match = Column(Integer, nullable=False)
    reference_match = Column(Integer, nullable=False)
    match_reason = Column(Text, nullable=False)
    match_details = Column(JSON, nullable=False)

    status = Column(
        _enum_column(SuggestionStatus, "suggestion_status_enum"),
        nullable=False,
        default=SuggestionStatus.PENDING,
        index=True
    )
    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        # At most one accepted suggestion per payment
        Index(
            "uq_payment_match_suggestions_accepted",
            "payment_record_id",
            unique=True,
            postgresql_where=text("status = 'ACCEPTED'"),
            sqlite_where=text("status = 'ACCEPTED'"),
        ),
    )


class CaseDB(Base):
    """
    Dispute case projection read by SqlCaseStore.

    Owned by the case-management system; this engine only reads candidates
    and records the recovered amount on confirm.
    """
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_number = Column(String(50), nullable=False, unique=True)
    carrier = Column(_enum_column(Carrier, "carrier_enum"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default="FILED")
    claimed_amount_cents = Column(BigInteger, nullable=False)
    recovered_amount_cents = Column(BigInteger, nullable=False, default=0)
    filed_date = Column(DateTime(timezone=True), nullable=True, index=True)
    confirmation_number = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
