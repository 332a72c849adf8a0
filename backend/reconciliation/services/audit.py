"""
Reconciliation audit trail.

Every state-changing operation emits one structured log record. The JSON
formatter puts the `extra` payload on the wire for log aggregation.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    TRANSACTIONS_IMPORTED = "reconciliation.transactions_imported"
    PAYMENT_CREATED = "reconciliation.payment_created"
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    SUGGESTION_CREATED = "reconciliation.suggestion_created"
    SUGGESTION_REFRESHED = "reconciliation.suggestion_refreshed"
    MATCH_CONFIRMED = "reconciliation.match_confirmed"
    MATCH_CONFLICT = "reconciliation.match_conflict"
    SUGGESTION_REJECTED = "reconciliation.suggestion_rejected"
    STATUS_CHANGED = "reconciliation.status_changed"
    SWEEP_STARTED = "reconciliation.sweep_started"
    SWEEP_COMPLETED = "reconciliation.sweep_completed"
    SWEEP_CANCELLED = "reconciliation.sweep_cancelled"


def log_reconciliation_event(
    event_type: str,
    details: Dict[str, Any],
    payment_record_id: Optional[str] = None,
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "payment_record_id": payment_record_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)
