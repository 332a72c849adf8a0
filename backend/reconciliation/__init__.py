"""
Payment Reconciliation Module

Links incoming carrier payments to previously filed dispute cases:
- Bank transaction import with carrier detection
- Weighted multi-factor match scoring
- Candidate ranking per payment
- Auto-match sweep with high-confidence auto-confirm
- Manual confirm / reject with an exclusive claim on the payment
- Audit trail for all operations
"""

from reconciliation.carrier_registry import (
    CarrierConfig,
    CarrierRegistry,
    carrier_registry
)
from reconciliation.errors import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    ConflictError,
    StoreUnavailable
)
from reconciliation.matching_rules.case_rules import (
    CaseMatchScorer,
    case_match_scorer
)
from reconciliation.services.reconciliation_service import ReconciliationEngine
from reconciliation.endpoints.reconciliation_api import router as payment_reconciliation_router

__all__ = [
    # Carrier Registry
    'CarrierConfig',
    'CarrierRegistry',
    'carrier_registry',
    # Errors
    'ReconciliationError',
    'ValidationError',
    'NotFoundError',
    'ConflictError',
    'StoreUnavailable',
    # Matching Rules
    'CaseMatchScorer',
    'case_match_scorer',
    # Service
    'ReconciliationEngine',
    # Router
    'payment_reconciliation_router'
]
