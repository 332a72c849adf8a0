"""
Reconciliation Endpoints Module
"""

from .reconciliation_api import router as payment_reconciliation_router

__all__ = ["payment_reconciliation_router"]
