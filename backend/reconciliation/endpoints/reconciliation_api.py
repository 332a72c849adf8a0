"""
Payment Reconciliation API Endpoints

REST API for the payment-to-case reconciliation engine:
- POST /api/reconciliation/payments/transactions/import - Import bank transactions
- GET /api/reconciliation/payments/transactions - List bank transactions
- POST /api/reconciliation/payments/records - Create a payment record
- GET /api/reconciliation/payments/records - List payment records
- GET /api/reconciliation/payments/records/unmatched - List unmatched payments
- GET /api/reconciliation/payments/records/{id} - Get a payment record
- GET /api/reconciliation/payments/records/{id}/matches - Ranked candidate cases
- POST /api/reconciliation/payments/records/{id}/confirm - Confirm a match
- POST /api/reconciliation/payments/records/{id}/status - Dispute / verify
- GET /api/reconciliation/payments/suggestions - List match suggestions
- POST /api/reconciliation/payments/suggestions/{id}/reject - Reject a suggestion
- POST /api/reconciliation/payments/sweep - Run the auto-match sweep
- GET /api/reconciliation/payments/stats - Reconciliation statistics
- GET /api/reconciliation/payments/carriers - Carrier detection table
- GET /api/reconciliation/payments/status - Module status

Amounts cross this boundary in major units (dollars).
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import get_db
from database.reconciliation_models import (
    Carrier,
    MatchMethod,
    PaymentMethod,
    ReconciliationStatus,
    SuggestionStatus,
)
from reconciliation.carrier_registry import carrier_registry
from reconciliation.errors import (
    ConflictError,
    NotFoundError,
    ReconciliationError,
    StoreUnavailable,
    ValidationError,
)
from reconciliation.models import (
    BankTransaction,
    MatchSuggestion,
    PaymentRecord,
    PaymentRecordCreate,
    RawTransaction,
    ScoredCandidate,
)
from reconciliation.normalizers import normalize_datetime, to_major_units, to_minor_units
from reconciliation.services.candidate_selector import CandidateSelector
from reconciliation.services.case_store import SqlCaseStore
from reconciliation.services.reconciliation_service import ReconciliationEngine
from reconciliation.services.stores import ReconciliationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation/payments", tags=["Payment Reconciliation"])


# ==================== Request/Response Models ====================

class ImportTransactionsRequest(BaseModel):
    """Request to import a bank feed batch."""
    transactions: List[RawTransaction] = Field(..., description="Raw feed records")
    batch_id: str = Field(..., min_length=1, description="Import batch identifier")


class CreatePaymentRecordRequest(BaseModel):
    """Request to create a payment record."""
    payment_amount: Any = Field(..., description="Amount in major units")
    payment_method: PaymentMethod
    payment_date: str = Field(..., description="Payment date (ISO 8601)")
    case_id: Optional[str] = Field(default=None, description="Link to a case at creation time")
    check_number: Optional[str] = None
    carrier: Optional[Carrier] = None
    carrier_reference: Optional[str] = None
    bank_transaction_id: Optional[str] = None


class ConfirmMatchRequest(BaseModel):
    """Request to confirm a match."""
    case_id: str = Field(..., description="Case the payment settles")
    method: MatchMethod = Field(default=MatchMethod.MANUAL, description="How the match was made")


class RejectSuggestionRequest(BaseModel):
    """Request to reject a suggestion."""
    reason: Optional[str] = Field(default=None, description="Rejection reason")


class StatusChangeRequest(BaseModel):
    """External dispute or verification."""
    status: str = Field(..., description="DISPUTED or VERIFIED")


class PaymentRecordResponse(BaseModel):
    """Response for a payment record."""
    id: str
    case_id: Optional[str]
    payment_amount: Decimal
    payment_method: str
    payment_date: datetime
    check_number: Optional[str]
    carrier: Optional[str]
    carrier_reference: Optional[str]
    bank_transaction_id: Optional[str]
    reconciliation_status: str
    match_confidence: int
    match_method: Optional[str]
    matched_at: Optional[datetime]
    matched_by: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentRecordResponse":
        return cls(
            id=record.id,
            case_id=record.case_id,
            payment_amount=record.payment_amount,
            payment_method=record.payment_method.value,
            payment_date=record.payment_date,
            check_number=record.check_number,
            carrier=record.carrier.value if record.carrier else None,
            carrier_reference=record.carrier_reference,
            bank_transaction_id=record.bank_transaction_id,
            reconciliation_status=record.reconciliation_status.value,
            match_confidence=record.match_confidence,
            match_method=record.match_method.value if record.match_method else None,
            matched_at=record.matched_at,
            matched_by=record.matched_by,
            created_at=record.created_at,
        )


class BankTransactionResponse(BaseModel):
    """Response for a bank transaction."""
    id: str
    transaction_date: datetime
    amount: Decimal
    description: str
    transaction_type: Optional[str]
    bank_account_id: Optional[str]
    external_transaction_id: str
    check_number: Optional[str]
    category: Optional[str]
    is_carrier_payment: bool
    detected_carrier: Optional[str]
    import_batch_id: str
    is_reconciled: bool

    @classmethod
    def from_transaction(cls, txn: BankTransaction) -> "BankTransactionResponse":
        return cls(
            id=txn.id,
            transaction_date=txn.transaction_date,
            amount=txn.amount,
            description=txn.description,
            transaction_type=txn.transaction_type,
            bank_account_id=txn.bank_account_id,
            external_transaction_id=txn.external_transaction_id,
            check_number=txn.check_number,
            category=txn.category,
            is_carrier_payment=txn.is_carrier_payment,
            detected_carrier=txn.detected_carrier.value if txn.detected_carrier else None,
            import_batch_id=txn.import_batch_id,
            is_reconciled=txn.is_reconciled,
        )


def _details_to_major_units(details) -> Dict[str, Any]:
    return {
        "payment_amount": str(to_major_units(details.payment_amount_cents)),
        "claimed_amount": str(to_major_units(details.claimed_amount_cents)),
        "amount_diff": str(to_major_units(details.amount_diff_cents)),
        "days_diff": details.days_diff,
    }


def _candidate_to_dict(candidate: ScoredCandidate) -> Dict[str, Any]:
    data = candidate.to_dict()
    data["match_details"] = _details_to_major_units(candidate.breakdown.match_details)
    return data


def _suggestion_to_dict(suggestion: MatchSuggestion) -> Dict[str, Any]:
    data = suggestion.model_dump(mode="json")
    data["match_details"] = _details_to_major_units(suggestion.match_details)
    return data


# ==================== Authentication ====================

def verify_internal_auth(x_internal_api_key: Optional[str] = Header(None, alias="X-Internal-Api-Key")):
    """Verify internal API key authentication."""
    valid_keys = get_settings().internal_api_keys

    if not valid_keys:
        logger.warning("No internal API keys configured")
        raise HTTPException(status_code=503, detail="Internal authentication not configured")

    if not x_internal_api_key:
        raise HTTPException(status_code=401, detail="Missing X-Internal-Api-Key header")

    if x_internal_api_key not in valid_keys:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return True


# ==================== Dependencies ====================

async def get_reconciliation_engine(db: AsyncSession = Depends(get_db)) -> ReconciliationEngine:
    """Engine bound to the request's session; both stores share it."""
    return ReconciliationEngine(ReconciliationStore(db), SqlCaseStore(db))


def _http_error(e: ReconciliationError) -> HTTPException:
    """Map engine errors to HTTP status codes."""
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=400,
            detail={"error": "validation_error", "message": str(e), "field": e.field}
        )
    if isinstance(e, NotFoundError):
        return HTTPException(
            status_code=404,
            detail={"error": "not_found", "message": str(e), "entity": e.entity}
        )
    if isinstance(e, ConflictError):
        return HTTPException(
            status_code=409,
            detail={"error": "conflict", "message": str(e), "current_status": e.current_status}
        )
    if isinstance(e, StoreUnavailable):
        logger.error(f"Reconciliation store unavailable: {e}")
        return HTTPException(
            status_code=503,
            detail={"error": "store_unavailable", "message": "Reconciliation store unavailable"}
        )
    logger.error(f"Unhandled reconciliation error: {e}")
    return HTTPException(status_code=500, detail="Reconciliation request failed")


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    """
    Get payment reconciliation module status.

    Returns policy constants and availability information.
    """
    return {
        "module": "payment_reconciliation",
        "status": "operational",
        "version": "1.0.0",
        "features": {
            "transaction_import": True,
            "carrier_detection": True,
            "auto_matching": True,
            "manual_review": True
        },
        "policy": {
            "auto_confirm_threshold": ReconciliationEngine.AUTO_CONFIRM_THRESHOLD,
            "suggestion_floor": CandidateSelector.MIN_CONFIDENCE,
            "candidate_window_days": CandidateSelector.CANDIDATE_WINDOW_DAYS
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/carriers", summary="Carrier detection table")
async def list_carriers():
    """List the carrier keywords used to classify bank transactions."""
    return carrier_registry.to_dict()


@router.post("/transactions/import", summary="Import bank transactions")
async def import_transactions(
    request: ImportTransactionsRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Import a batch of bank transactions.

    Duplicates (same transactionId) and malformed records are skipped.
    The count reports rows actually stored.

    Requires internal API key authentication.
    """
    try:
        count = await engine.import_transactions(request.transactions, request.batch_id)
        return {"success": True, "imported_count": count, "batch_id": request.batch_id}

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Transaction import failed: {e}")
        raise HTTPException(status_code=500, detail="Transaction import failed")


@router.get("/transactions", summary="List bank transactions")
async def list_bank_transactions(
    is_reconciled: Optional[bool] = Query(default=None),
    is_carrier_payment: Optional[bool] = Query(default=None),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    List bank transactions, newest first.

    Requires internal API key authentication.
    """
    try:
        transactions = await engine.get_bank_transactions(
            is_reconciled=is_reconciled,
            is_carrier_payment=is_carrier_payment
        )
        return {
            "transactions": [BankTransactionResponse.from_transaction(t) for t in transactions],
            "count": len(transactions)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to list bank transactions: {e}")
        raise HTTPException(status_code=500, detail="Failed to list bank transactions")


@router.post("/records", summary="Create payment record")
async def create_payment_record(
    request: CreatePaymentRecordRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Create a payment record.

    Supplying case_id records the payment as already MATCHED.

    Requires internal API key authentication.
    """
    try:
        data = PaymentRecordCreate(
            payment_amount_cents=to_minor_units(request.payment_amount, field="payment_amount"),
            payment_method=request.payment_method,
            payment_date=normalize_datetime(request.payment_date, field="payment_date"),
            case_id=request.case_id,
            check_number=request.check_number,
            carrier=request.carrier,
            carrier_reference=request.carrier_reference,
            bank_transaction_id=request.bank_transaction_id,
        )
        payment_record_id = await engine.create_payment_record(data, actor_id=x_user_id)
        return {"success": True, "payment_record_id": payment_record_id}

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to create payment record: {e}")
        raise HTTPException(status_code=500, detail="Failed to create payment record")


@router.get("/records", summary="List payment records")
async def list_payment_records(
    status: Optional[ReconciliationStatus] = Query(default=None, description="Filter by status"),
    carrier: Optional[Carrier] = Query(default=None, description="Filter by carrier"),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    List payment records, most recent payment first.

    Requires internal API key authentication.
    """
    try:
        records = await engine.get_payment_records(status=status, carrier=carrier)
        return {
            "records": [PaymentRecordResponse.from_record(r) for r in records],
            "count": len(records)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to list payment records: {e}")
        raise HTTPException(status_code=500, detail="Failed to list payment records")


@router.get("/records/unmatched", summary="List unmatched payments")
async def list_unmatched_payments(
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    List payments still waiting for a case.

    Requires internal API key authentication.
    """
    try:
        records = await engine.get_unmatched_payments()
        return {
            "records": [PaymentRecordResponse.from_record(r) for r in records],
            "count": len(records)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to list unmatched payments: {e}")
        raise HTTPException(status_code=500, detail="Failed to list unmatched payments")


@router.get("/records/{payment_record_id}", response_model=PaymentRecordResponse, summary="Get payment record")
async def get_payment_record(
    payment_record_id: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Get a single payment record.

    Requires internal API key authentication.
    """
    try:
        record = await engine.get_payment_record(payment_record_id)
        return PaymentRecordResponse.from_record(record)

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to get payment record: {e}")
        raise HTTPException(status_code=500, detail="Failed to get payment record")


@router.get("/records/{payment_record_id}/matches", summary="Find matching cases")
async def find_matches(
    payment_record_id: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Rank candidate cases for a payment without storing anything.

    Requires internal API key authentication.
    """
    try:
        candidates = await engine.find_matches(payment_record_id)
        return {
            "payment_record_id": payment_record_id,
            "candidates": [_candidate_to_dict(c) for c in candidates],
            "count": len(candidates)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to find matches: {e}")
        raise HTTPException(status_code=500, detail="Failed to find matches")


@router.post("/records/{payment_record_id}/confirm", summary="Confirm match")
async def confirm_match(
    payment_record_id: str,
    request: ConfirmMatchRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Link an unmatched payment to a case.

    Returns 409 if the payment is no longer UNMATCHED.

    Requires internal API key authentication.
    """
    try:
        record = await engine.confirm_match(
            payment_record_id,
            request.case_id,
            x_user_id,
            method=request.method
        )
        return {
            "success": True,
            "message": "Match confirmed",
            "record": PaymentRecordResponse.from_record(record)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to confirm match: {e}")
        raise HTTPException(status_code=500, detail="Failed to confirm match")


@router.post("/records/{payment_record_id}/status", summary="Record dispute or verification")
async def record_status_change(
    payment_record_id: str,
    request: StatusChangeRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Apply an external status change to a matched payment.

    Requires internal API key authentication.
    """
    try:
        record = await engine.record_status_change(payment_record_id, request.status, x_user_id)
        return {"success": True, "record": PaymentRecordResponse.from_record(record)}

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to change payment status: {e}")
        raise HTTPException(status_code=500, detail="Failed to change payment status")


@router.get("/suggestions", summary="List match suggestions")
async def list_suggestions(
    payment_record_id: Optional[str] = Query(default=None),
    status: Optional[SuggestionStatus] = Query(default=None),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    List match suggestions, highest confidence first.

    Requires internal API key authentication.
    """
    try:
        suggestions = await engine.get_match_suggestions(
            payment_record_id=payment_record_id,
            status=status
        )
        return {
            "suggestions": [_suggestion_to_dict(s) for s in suggestions],
            "count": len(suggestions)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to list suggestions: {e}")
        raise HTTPException(status_code=500, detail="Failed to list suggestions")


@router.post("/suggestions/{suggestion_id}/reject", summary="Reject suggestion")
async def reject_suggestion(
    suggestion_id: str,
    request: RejectSuggestionRequest,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Reject a match suggestion. The payment record is left as is.

    Requires internal API key authentication.
    """
    try:
        suggestion = await engine.reject_suggestion(suggestion_id, x_user_id, request.reason)
        return {
            "success": True,
            "message": "Suggestion rejected",
            "suggestion": _suggestion_to_dict(suggestion)
        }

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to reject suggestion: {e}")
        raise HTTPException(status_code=500, detail="Failed to reject suggestion")


@router.post("/sweep", summary="Run auto-match sweep")
async def run_sweep(
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Run the auto-match sweep over all unmatched payments.

    Requires internal API key authentication.
    """
    try:
        result = await engine.auto_match_sweep()
        return {"success": True, **result.to_dict()}

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Auto-match sweep failed: {e}")
        raise HTTPException(status_code=500, detail="Auto-match sweep failed")


@router.get("/stats", summary="Reconciliation statistics")
async def get_stats(
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Get reconciliation statistics.

    Requires internal API key authentication.
    """
    try:
        stats = await engine.get_stats()
        return stats.to_dict()

    except ReconciliationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Failed to get reconciliation stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to get reconciliation stats")
