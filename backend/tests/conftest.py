"""
Shared fixtures for payment reconciliation tests.

Store-backed tests run against a temporary SQLite file through aiosqlite.
A file (not :memory:) lets separate sessions hold separate connections, so
conditional updates see real database locking.
"""

import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from database.connection import Base
from database.reconciliation_models import CaseDB, Carrier, PaymentMethod
from reconciliation.models import PaymentRecordCreate
from reconciliation.services.case_store import SqlCaseStore
from reconciliation.services.reconciliation_service import ReconciliationEngine
from reconciliation.services.stores import ReconciliationStore


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "reconciliation.db"


@pytest_asyncio.fixture
async def db_engine(db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def store(session):
    return ReconciliationStore(session)


@pytest.fixture
def recon(session):
    """Engine with both stores on the same session, as the API wires it."""
    return ReconciliationEngine(ReconciliationStore(session), SqlCaseStore(session))


@pytest.fixture
def make_case(session):
    """Insert a case row and return its id."""

    async def _make_case(
        carrier=Carrier.FEDEX,
        claimed_amount_cents=15000,
        filed_date=utc(2024, 1, 5),
        confirmation_number=None,
        status="FILED",
    ) -> str:
        case = CaseDB(
            case_number=f"CASE-{uuid.uuid4().hex[:10]}",
            carrier=carrier,
            status=status,
            claimed_amount_cents=claimed_amount_cents,
            recovered_amount_cents=0,
            filed_date=filed_date,
            confirmation_number=confirmation_number,
        )
        session.add(case)
        await session.commit()
        return case.id

    return _make_case


@pytest.fixture
def make_payment(recon):
    """Create a payment record through the engine and return its id."""

    async def _make_payment(
        payment_amount_cents=15000,
        payment_date=utc(2024, 1, 10),
        carrier=Carrier.FEDEX,
        carrier_reference=None,
        case_id=None,
        payment_method=PaymentMethod.CHECK,
    ) -> str:
        return await recon.create_payment_record(PaymentRecordCreate(
            payment_amount_cents=payment_amount_cents,
            payment_method=payment_method,
            payment_date=payment_date,
            carrier=carrier,
            carrier_reference=carrier_reference,
            case_id=case_id,
        ))

    return _make_payment
