"""
Reconciliation domain models.

Pydantic models are read views of the ORM rows (from_attributes) plus the
inbound shapes accepted by the engine. Dataclasses carry scorer output and
batch results between services.

Amounts are integer cents everywhere in this module.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database.reconciliation_models import (
    Carrier,
    PaymentMethod,
    ReconciliationStatus,
    MatchMethod,
    SuggestionStatus,
)
from reconciliation.normalizers import as_utc, to_major_units


# ==================== SCORER TYPES ====================

@dataclass(frozen=True)
class CaseCandidate:
    """Read-only projection of a dispute case, as returned by the case store."""
    case_id: str
    carrier: Optional[Carrier]
    claimed_amount_cents: int
    filed_date: Optional[datetime]
    confirmation_number: Optional[str] = None


@dataclass(frozen=True)
class MatchDetails:
    """Numeric breakdown stored alongside each suggestion."""
    payment_amount_cents: int
    claimed_amount_cents: int
    amount_diff_cents: int
    days_diff: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchDetails":
        return cls(
            payment_amount_cents=int(data["payment_amount_cents"]),
            claimed_amount_cents=int(data["claimed_amount_cents"]),
            amount_diff_cents=int(data["amount_diff_cents"]),
            days_diff=data.get("days_diff"),
        )


@dataclass(frozen=True)
class ScoreBreakdown:
    """
    Output of the match scorer.

    Sub-scores are rounded to integers for storage; confidence is computed
    from the unrounded values.
    """
    confidence: int
    match_score: int
    amount_match: int
    date_match: int
    carrier_match: int
    reference_match: int
    match_reason: str
    match_details: MatchDetails

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence": self.confidence,
            "match_score": self.match_score,
            "amount_match": self.amount_match,
            "date_match": self.date_match,
            "carrier_match": self.carrier_match,
            "reference_match": self.reference_match,
            "match_reason": self.match_reason,
            "match_details": self.match_details.to_dict(),
        }


@dataclass(frozen=True)
class ScoredCandidate:
    """A case candidate together with its score."""
    case_id: str
    breakdown: ScoreBreakdown

    @property
    def confidence(self) -> int:
        return self.breakdown.confidence

    def to_dict(self) -> Dict[str, Any]:
        return {"case_id": self.case_id, **self.breakdown.to_dict()}


# ==================== BATCH RESULTS ====================

@dataclass
class SweepResult:
    """Result of an auto-match sweep."""
    run_id: str
    processed: int = 0
    suggested: int = 0
    matched_count: int = 0
    failed: int = 0
    cancelled: bool = False
    failed_payment_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationStats:
    """Aggregate view over payment records. Amounts are major units."""
    total_payments: int
    matched_payments: int
    unmatched_payments: int
    total_amount: Decimal
    matched_amount: Decimal
    unmatched_amount: Decimal
    average_match_time_hours: float
    by_status: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_payments": self.total_payments,
            "matched_payments": self.matched_payments,
            "unmatched_payments": self.unmatched_payments,
            "total_amount": str(self.total_amount),
            "matched_amount": str(self.matched_amount),
            "unmatched_amount": str(self.unmatched_amount),
            "average_match_time_hours": self.average_match_time_hours,
            "by_status": dict(self.by_status),
        }


# ==================== INBOUND ====================

class RawTransaction(BaseModel):
    """
    One record from a bank transaction feed.

    `date` and `amount` are kept loose here; the importer normalizes them and
    rejects the single record if either is malformed.
    """
    date: Any = None
    amount: Any = None
    description: str = ""
    type: Optional[str] = None
    account_id: Optional[str] = Field(default=None, alias="accountId")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    check_number: Optional[str] = Field(default=None, alias="checkNumber")
    category: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)


class PaymentRecordCreate(BaseModel):
    """Input for creating a payment record. Amount in cents."""
    payment_amount_cents: int
    payment_method: PaymentMethod
    payment_date: datetime
    case_id: Optional[str] = None
    check_number: Optional[str] = None
    carrier: Optional[Carrier] = None
    carrier_reference: Optional[str] = None
    bank_transaction_id: Optional[str] = None


# ==================== READ VIEWS ====================

class _UtcModel(BaseModel):
    """SQLite hands back naive datetimes; every timestamp leaves as UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _datetimes_as_utc(cls, value):
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class PaymentRecord(_UtcModel):
    id: str
    case_id: Optional[str] = None
    payment_amount_cents: int
    payment_method: PaymentMethod
    payment_date: datetime
    check_number: Optional[str] = None
    carrier: Optional[Carrier] = None
    carrier_reference: Optional[str] = None
    bank_transaction_id: Optional[str] = None
    reconciliation_status: ReconciliationStatus
    match_confidence: int = 0
    match_method: Optional[MatchMethod] = None
    matched_at: Optional[datetime] = None
    matched_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def payment_amount(self) -> Decimal:
        return to_major_units(self.payment_amount_cents)


class BankTransaction(_UtcModel):
    id: str
    transaction_date: datetime
    amount_cents: int
    description: str
    transaction_type: Optional[str] = None
    bank_account_id: Optional[str] = None
    external_transaction_id: str
    check_number: Optional[str] = None
    category: Optional[str] = None
    is_carrier_payment: bool = False
    detected_carrier: Optional[Carrier] = None
    import_batch_id: str
    raw_payload: Optional[Dict[str, Any]] = None
    is_reconciled: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def amount(self) -> Decimal:
        return to_major_units(self.amount_cents)


class MatchSuggestion(_UtcModel):
    id: str
    payment_record_id: str
    case_id: str
    confidence: int
    match_score: int
    amount_match: int
    date_match: int
    carrier_match: int
    reference_match: int
    match_reason: str
    match_details: MatchDetails
    status: SuggestionStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("match_details", mode="before")
    @classmethod
    def _parse_details(cls, value):
        if isinstance(value, dict):
            return MatchDetails.from_dict(value)
        return value
