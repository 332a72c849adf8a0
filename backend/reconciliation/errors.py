"""
Reconciliation error taxonomy.

Endpoints map these to HTTP status codes:
ValidationError -> 400, NotFoundError -> 404, ConflictError -> 409,
StoreUnavailable -> 503.
"""

import functools
from typing import Optional

from sqlalchemy.exc import InterfaceError, OperationalError


class ReconciliationError(Exception):
    """Base class for reconciliation engine errors."""


class ValidationError(ReconciliationError):
    """Malformed input (bad date, non-numeric amount, missing identifier)."""

    def __init__(self, message: str, field: Optional[str] = None, value=None):
        super().__init__(message)
        self.field = field
        self.value = value


class NotFoundError(ReconciliationError):
    """A referenced payment record, case or suggestion does not exist."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(ReconciliationError):
    """State precondition failed, e.g. confirming a payment that is not UNMATCHED."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class StoreUnavailable(ReconciliationError):
    """Underlying persistence unreachable. Not retried here."""


STORE_FAILURES = (OperationalError, InterfaceError, ConnectionError)


def translate_store_errors(func):
    """Re-raise connectivity failures from the store as StoreUnavailable."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except STORE_FAILURES as e:
            raise StoreUnavailable(f"Store unavailable during {func.__name__}: {e}") from e

    return wrapper
