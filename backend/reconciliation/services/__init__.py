"""
Reconciliation Services Module
"""

from .audit import ReconciliationAuditEvent, log_reconciliation_event
from .stores import ReconciliationStore
from .case_store import CaseStore, SqlCaseStore
from .transaction_importer import TransactionImporter
from .candidate_selector import CandidateSelector
from .stats_reporter import StatsReporter
from .reconciliation_service import ReconciliationEngine

__all__ = [
    "ReconciliationAuditEvent",
    "log_reconciliation_event",
    "ReconciliationStore",
    "CaseStore",
    "SqlCaseStore",
    "TransactionImporter",
    "CandidateSelector",
    "StatsReporter",
    "ReconciliationEngine",
]
