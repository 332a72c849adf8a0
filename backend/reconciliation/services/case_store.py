"""
Case Store collaborator.

The reconciliation engine reads candidate cases and records the recovered
amount on confirm through this interface only. SqlCaseStore implements it
over the `cases` table in the same session as the engine's own writes, so a
confirm and its case update commit or roll back together.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import CaseDB, Carrier, utc_now
from reconciliation.errors import NotFoundError, translate_store_errors
from reconciliation.models import CaseCandidate
from reconciliation.normalizers import as_utc


class CaseStore(ABC):
    """Boundary to the external case-management store."""

    RESOLVED_STATUS = "RESOLVED"

    @abstractmethod
    async def list_candidates(self, carrier: Optional[Carrier], filed_after: datetime) -> List[CaseCandidate]:
        """Cases filed on or after `filed_after`, limited to `carrier` when given."""

    @abstractmethod
    async def mark_resolved(self, case_id: str, recovered_amount_cents: int) -> None:
        """Record the recovered amount and move the case to the resolved status."""


class SqlCaseStore(CaseStore):

    def __init__(self, db: AsyncSession):
        self.db = db

    @translate_store_errors
    async def list_candidates(self, carrier: Optional[Carrier], filed_after: datetime) -> List[CaseCandidate]:
        query = select(CaseDB).where(CaseDB.filed_date >= filed_after)
        if carrier is not None:
            query = query.where(CaseDB.carrier == carrier)

        result = await self.db.execute(query)
        return [
            CaseCandidate(
                case_id=row.id,
                carrier=row.carrier,
                claimed_amount_cents=row.claimed_amount_cents,
                filed_date=as_utc(row.filed_date) if row.filed_date else None,
                confirmation_number=row.confirmation_number,
            )
            for row in result.scalars().all()
        ]

    @translate_store_errors
    async def mark_resolved(self, case_id: str, recovered_amount_cents: int) -> None:
        result = await self.db.execute(
            update(CaseDB)
            .where(CaseDB.id == case_id)
            .values(
                recovered_amount_cents=recovered_amount_cents,
                status=self.RESOLVED_STATUS,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Case", case_id)
