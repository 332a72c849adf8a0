"""
Transaction Importer

Turns raw bank feed records into BankTransaction rows:
- Deduplicates on the feed's transaction id (re-import is a no-op)
- Classifies carrier payments and the carrier named in the description
- Stores amounts as integer cents

Each record is its own unit of work. A malformed record is skipped and
logged; the rest of the batch still imports.
"""

import logging
from typing import Any, Dict, Iterable, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from database.reconciliation_models import BankTransactionDB
from reconciliation.carrier_registry import CarrierRegistry, carrier_registry
from reconciliation.errors import ValidationError
from reconciliation.models import RawTransaction
from reconciliation.normalizers import normalize_datetime, to_minor_units
from reconciliation.services.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.services.stores import ReconciliationStore

logger = logging.getLogger(__name__)


class TransactionImporter:
    """
    Idempotent importer for bank transaction batches.
    """

    def __init__(self, store: ReconciliationStore, registry: CarrierRegistry = carrier_registry):
        self.store = store
        self.registry = registry

    async def import_transactions(
        self,
        raw_transactions: Iterable[Union[RawTransaction, Dict[str, Any]]],
        batch_id: str
    ) -> int:
        """
        Import a batch of raw transactions.

        Args:
            raw_transactions: Feed records (RawTransaction or plain dicts)
            batch_id: Import batch identifier stored on every row

        Returns:
            Number of transactions actually stored (duplicates and
            malformed records are not counted)
        """
        imported = 0
        duplicates = 0
        failed = 0

        for index, raw in enumerate(raw_transactions):
            try:
                txn = raw if isinstance(raw, RawTransaction) else RawTransaction.model_validate(raw)
                row = self._build_row(txn, batch_id)
            except (ValidationError, PydanticValidationError) as e:
                failed += 1
                logger.warning(
                    f"Skipping malformed transaction at index {index} in batch {batch_id}: {e}"
                )
                continue

            existing = await self.store.get_bank_transaction_by_external_id(row.external_transaction_id)
            if existing is not None:
                duplicates += 1
                continue

            try:
                await self.store.add_bank_transaction(row)
                await self.store.commit()
            except IntegrityError:
                # Lost a race with a concurrent import of the same id
                await self.store.rollback()
                duplicates += 1
                logger.info(
                    f"Transaction {row.external_transaction_id} imported concurrently; skipped"
                )
                continue

            imported += 1

        log_reconciliation_event(
            ReconciliationAuditEvent.TRANSACTIONS_IMPORTED,
            {
                "batch_id": batch_id,
                "imported": imported,
                "duplicates": duplicates,
                "failed": failed,
            }
        )

        return imported

    def _build_row(self, txn: RawTransaction, batch_id: str) -> BankTransactionDB:
        external_id = (txn.transaction_id or "").strip()
        if not external_id:
            raise ValidationError("transactionId is required", field="transactionId")

        description = txn.description or ""

        return BankTransactionDB(
            transaction_date=normalize_datetime(txn.date, field="date"),
            amount_cents=to_minor_units(txn.amount, field="amount"),
            description=description,
            transaction_type=txn.type,
            bank_account_id=txn.account_id,
            external_transaction_id=external_id,
            check_number=txn.check_number,
            category=txn.category,
            is_carrier_payment=self.registry.is_carrier_payment(description),
            detected_carrier=self.registry.detect_carrier(description),
            import_batch_id=batch_id,
            raw_payload=txn.model_dump(mode="json", by_alias=True, exclude_none=True),
            is_reconciled=False,
        )
