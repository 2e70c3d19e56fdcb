"""
Critical Path Test Fixtures

Shared fixtures for ledger-critical path testing.
These fixtures provide minimal, fast setup for critical tests.
"""

import pytest
import pytest_asyncio
from decimal import Decimal
from datetime import date

from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from database_manager.database_session_manager import DatabaseSessionManager
from database_manager.ledger_store import SqlAlchemyLedgerStore
from fifo_engine import (
    AllocationEngine,
    ConsumptionRecord,
    InMemoryLedgerStore,
    PurchaseLot,
    ReconciliationService,
)


@pytest.fixture
def logger_manager(tmp_path):
    """Real LoggerManager writing into a per-test directory"""
    LoggerManager.reset()
    manager = LoggerManager({'log_level': 'WARNING', 'log_dir': str(tmp_path / 'logs')})
    yield manager
    LoggerManager.reset()


@pytest.fixture
def precision():
    return PrecisionUtils()


@pytest.fixture
def ledger():
    """Empty in-memory ledger"""
    return InMemoryLedgerStore()


@pytest.fixture
def engine(ledger, logger_manager, precision):
    return AllocationEngine(ledger, logger_manager, precision)


@pytest.fixture
def reconciliation(ledger, logger_manager, engine):
    return ReconciliationService(ledger, logger_manager, engine)


@pytest_asyncio.fixture
async def session_manager(logger_manager):
    """Private in-memory SQLite database with the ledger schema"""
    manager = DatabaseSessionManager(
        "sqlite+aiosqlite:///:memory:",
        logger=logger_manager.get_logger('shared_logger'),
    )
    await manager.initialize()
    yield manager
    await manager.disconnect()


@pytest.fixture
def sql_ledger(session_manager):
    return SqlAlchemyLedgerStore(session_manager)


# Test data generators
def make_lot(
    lot_id,
    purchase_date,
    liters,
    value_usd,
    vessel_id=1,
    value=None,
    tons=None,
    remaining=None,
    supplier_id=10,
):
    """Purchase lot with sensible defaults (native value = USD value, density 0.85)"""
    liters = Decimal(str(liters))
    value_usd = Decimal(str(value_usd))
    return PurchaseLot(
        id=lot_id,
        vessel_id=vessel_id,
        supplier_id=supplier_id,
        purchase_date=purchase_date,
        quantity_liters=liters,
        quantity_tons=Decimal(str(tons)) if tons is not None else liters * Decimal('0.00085'),
        total_value=Decimal(str(value)) if value is not None else value_usd,
        total_value_usd=value_usd,
        remaining_quantity=Decimal(str(remaining)) if remaining is not None else liters,
        invoice_reference=f"INV-{lot_id:03d}",
    )


def make_consumption(record_id, consumption_date, liters, vessel_id=1, legs=0):
    return ConsumptionRecord(
        id=record_id,
        vessel_id=vessel_id,
        consumption_date=consumption_date,
        consumption_liters=Decimal(str(liters)),
        legs_completed=legs,
    )


@pytest.fixture
def two_lot_ledger(ledger):
    """
    L1: 3000 L for $3000 ($1.00/L) purchased 2025-01-01
    L2: 2000 L for $2200 ($1.10/L) purchased 2025-01-02
    One consumption of 4000 L on 2025-01-20
    """
    ledger.add_lot(make_lot(1, date(2025, 1, 1), 3000, 3000))
    ledger.add_lot(make_lot(2, date(2025, 1, 2), 2000, 2200))
    ledger.add_consumption(make_consumption(100, date(2025, 1, 20), 4000))
    return ledger


@pytest.fixture
def lot_factory():
    return make_lot


@pytest.fixture
def consumption_factory():
    return make_consumption
