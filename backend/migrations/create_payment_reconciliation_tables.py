"""
Database Migration: Create Payment Reconciliation Tables

Creates the bank transaction, payment record, match suggestion and case
projection tables from the ORM metadata.

Usage: python -m migrations.create_payment_reconciliation_tables [create|drop|check]
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

from database.connection import Base, get_engine
from database import reconciliation_models  # noqa: F401  registers tables on Base

logger = logging.getLogger(__name__)

RECONCILIATION_TABLES = [
    "bank_transactions",
    "payment_records",
    "payment_match_suggestions",
    "cases",
]


async def create_tables(engine: Optional[AsyncEngine] = None) -> List[str]:
    """Create all reconciliation tables (existing tables are left alone)"""
    engine = engine or get_engine()
    logger.info("Creating payment reconciliation tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    tables = await check_tables(engine)
    logger.info(f"Payment reconciliation tables present: {tables}")
    return tables


async def drop_tables(engine: Optional[AsyncEngine] = None):
    """Drop all reconciliation tables (use with caution!)"""
    engine = engine or get_engine()
    logger.info("Dropping payment reconciliation tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("All payment reconciliation tables dropped")


async def check_tables(engine: Optional[AsyncEngine] = None) -> List[str]:
    """Return which reconciliation tables exist"""
    engine = engine or get_engine()

    async with engine.connect() as conn:
        existing = await conn.run_sync(
            lambda sync_conn: set(inspect(sync_conn).get_table_names())
        )
    return [name for name in RECONCILIATION_TABLES if name in existing]


async def main():
    """Main initialization function"""
    logging.basicConfig(level=logging.INFO)
    command = sys.argv[1] if len(sys.argv) > 1 else "create"

    try:
        if command == "drop":
            await drop_tables()
        elif command == "check":
            tables = await check_tables()
            print(f"Existing tables: {tables}")
            missing = sorted(set(RECONCILIATION_TABLES) - set(tables))
            if missing:
                print(f"Missing tables: {missing}")
        elif command == "create":
            tables = await create_tables()
            print(f"Created tables: {tables}")
        else:
            print(f"Unknown command: {command}")
            print("Usage: python -m migrations.create_payment_reconciliation_tables [create|drop|check]")
    finally:
        await get_engine().dispose()


if __name__ == "__main__":
    asyncio.run(main())
