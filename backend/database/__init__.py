from .connection import get_db, get_engine, get_session_factory, init_db, dispose_engine, Base

# Import reconciliation models to ensure they are registered with Base
from .reconciliation_models import (
    BankTransactionDB, PaymentRecordDB, PaymentMatchSuggestionDB, CaseDB,
    Carrier, PaymentMethod, ReconciliationStatus, MatchMethod, SuggestionStatus,
    EXTERNAL_TRANSITIONS,
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'init_db', 'dispose_engine', 'Base',
    # Reconciliation models
    'BankTransactionDB', 'PaymentRecordDB', 'PaymentMatchSuggestionDB', 'CaseDB',
    'Carrier', 'PaymentMethod', 'ReconciliationStatus', 'MatchMethod', 'SuggestionStatus',
    'EXTERNAL_TRANSITIONS',
]
