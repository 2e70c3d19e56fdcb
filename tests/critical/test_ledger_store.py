"""
Critical Path Tests: SQLAlchemy Ledger Store

Runs the engine and reconciliation against a real (in-memory SQLite) database
to make sure queries, ordering and transactions behave like the in-memory
ledger.

Priority: 🔴 CRITICAL (persistence)
"""

import pytest
from decimal import Decimal
from datetime import date

from fifo_engine import (
    AllocationEngine,
    ErrorKind,
    FindingKind,
    ReconciliationService,
    RunScope,
)
from database_manager.database_session_manager import normalize_dsn
from database_manager.ledger_store import SqlAlchemyUnitOfWork


@pytest.fixture
def sql_engine(sql_ledger, logger_manager, precision):
    return AllocationEngine(sql_ledger, logger_manager, precision)


@pytest.fixture
def sql_reconciliation(sql_ledger, logger_manager, sql_engine):
    return ReconciliationService(sql_ledger, logger_manager, sql_engine)


async def seed_two_lots(store, lot_factory, consumption_factory):
    await store.add_lot(lot_factory(1, date(2025, 1, 1), 3000, 3000))
    await store.add_lot(lot_factory(2, date(2025, 1, 2), 2000, 2200))
    await store.add_consumption(consumption_factory(100, date(2025, 1, 20), 4000))


async def load_state(store):
    async with store.unit_of_work() as uow:
        lots = {lot.id: lot for lot in await uow.load_all_lots()}
        allocations = await uow.load_all_allocations()
    return lots, allocations


class TestSqlAllocation:

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_fifo_run_persists_allocations_and_balances(
        self, sql_engine, sql_ledger, lot_factory, consumption_factory
    ):
        await seed_two_lots(sql_ledger, lot_factory, consumption_factory)

        result = await sql_engine.run(RunScope.UNALLOCATED)
        lots, allocations = await load_state(sql_ledger)

        assert result.success, result.message
        assert result.allocations_created == 2
        assert lots[1].remaining_quantity == Decimal("0")
        assert lots[2].remaining_quantity == Decimal("1000")
        assert sorted((a.purchase_lot_id, a.allocated_quantity) for a in allocations) == [
            (1, Decimal("3000")),
            (2, Decimal("1000")),
        ]
        assert all(a.id is not None and a.month == "2025-01" for a in allocations)

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_unallocated_scope_skips_allocated_consumption(
        self, sql_engine, sql_ledger, lot_factory, consumption_factory
    ):
        await seed_two_lots(sql_ledger, lot_factory, consumption_factory)
        await sql_engine.run()

        second = await sql_engine.run()

        assert second.allocations_created == 0
        assert second.message == "No unallocated consumption records found."

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_lot_query_is_vessel_scoped_and_fifo_ordered(
        self, sql_ledger, lot_factory
    ):
        await sql_ledger.add_lot(lot_factory(5, date(2025, 1, 9), 100, 100, vessel_id=1))
        await sql_ledger.add_lot(lot_factory(4, date(2025, 1, 3), 100, 100, vessel_id=1))
        await sql_ledger.add_lot(lot_factory(3, date(2025, 1, 3), 100, 100, vessel_id=1))
        await sql_ledger.add_lot(lot_factory(2, date(2025, 1, 1), 100, 100, vessel_id=2))
        await sql_ledger.add_lot(lot_factory(1, date(2025, 1, 1), 100, 100, vessel_id=1, remaining=0))

        async with sql_ledger.unit_of_work() as uow:
            lots = await uow.load_lots_for_vessel(1)

        assert [lot.id for lot in lots] == [3, 4, 5]

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_transaction(
        self, sql_engine, sql_ledger, lot_factory, consumption_factory, monkeypatch
    ):
        await seed_two_lots(sql_ledger, lot_factory, consumption_factory)
        original = SqlAlchemyUnitOfWork.persist_allocation_batch

        async def failing_persist(self, allocations, lot_updates):
            await original(self, allocations, lot_updates)
            raise RuntimeError("constraint violated")

        monkeypatch.setattr(SqlAlchemyUnitOfWork, "persist_allocation_batch", failing_persist)

        result = await sql_engine.run()
        lots, allocations = await load_state(sql_ledger)

        assert result.error_kind == ErrorKind.PERSISTENCE_FAILURE
        assert allocations == []
        assert lots[1].remaining_quantity == Decimal("3000")
        assert lots[2].remaining_quantity == Decimal("2000")

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_month_filter_and_summary(
        self, sql_engine, sql_ledger, lot_factory, consumption_factory
    ):
        await seed_two_lots(sql_ledger, lot_factory, consumption_factory)
        await sql_ledger.add_consumption(consumption_factory(101, date(2025, 2, 2), 500))
        await sql_engine.run()

        february = await sql_engine.allocations_for_month("2025-02")
        summary = await sql_engine.monthly_value_summary()

        assert [a.consumption_id for a in february] == [101]
        assert summary == {"2025-01": Decimal("4100.00"), "2025-02": Decimal("550.00")}

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_inserted_record_reflects_column_scale(self, sql_ledger, consumption_factory):
        returned = await sql_ledger.add_consumption(consumption_factory(100, date(2025, 1, 20), "100.125"))

        async with sql_ledger.unit_of_work() as uow:
            stored = await uow.load_all_consumption()

        assert returned.consumption_liters == Decimal("100.12")
        assert [r.consumption_liters for r in stored] == [returned.consumption_liters]

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_stored_values_round_to_run_total(
        self, sql_engine, sql_ledger, precision, lot_factory, consumption_factory
    ):
        """
        Test: One $1000 lot split over three equal consumptions

        Then: The 6-place stored values round back to the 2-place run total
        """
        await sql_ledger.add_lot(lot_factory(1, date(2025, 1, 1), 3000, 1000))
        for record_id, day in ((100, 10), (101, 11), (102, 12)):
            await sql_ledger.add_consumption(consumption_factory(record_id, date(2025, 1, day), 1000))

        result = await sql_engine.run()
        _, allocations = await load_state(sql_ledger)
        stored_total = sum(a.allocated_value_usd for a in allocations)

        assert result.total_allocated_value == Decimal("1000.00")
        assert stored_total != result.total_allocated_value
        assert precision.round_currency(stored_total) == result.total_allocated_value


class TestSqlReconciliation:

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_orphan_detected_and_cleaned(
        self, sql_engine, sql_reconciliation, sql_ledger, lot_factory, consumption_factory
    ):
        await seed_two_lots(sql_ledger, lot_factory, consumption_factory)
        await sql_engine.run()
        await sql_ledger.remove_lot(2)

        report = await sql_reconciliation.get_inconsistency_report()
        result = await sql_reconciliation.manual_cleanup_inconsistent_data()
        _, allocations = await load_state(sql_ledger)

        assert [finding.kind for finding in report] == [FindingKind.ORPHAN_ALLOCATION]
        assert result.success
        assert result.removed_allocations == 1
        assert [a.purchase_lot_id for a in allocations] == [1]
        assert (await sql_reconciliation.get_inconsistency_report()).is_consistent

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_full_rerun_is_deterministic(
        self, sql_engine, sql_reconciliation, sql_ledger, lot_factory, consumption_factory
    ):
        await seed_two_lots(sql_ledger, lot_factory, consumption_factory)
        await sql_engine.run()
        _, before = await load_state(sql_ledger)

        result = await sql_reconciliation.rerun_full_allocation()
        lots, after = await load_state(sql_ledger)

        assert result.success, result.message
        assert result.removed_allocations == 2
        assert sum(a.allocated_quantity for a in after) == sum(a.allocated_quantity for a in before)
        assert sum(a.allocated_value_usd for a in after) == sum(a.allocated_value_usd for a in before)
        assert lots[2].remaining_quantity == Decimal("1000")


class TestDsn:

    @pytest.mark.critical
    def test_normalize_dsn(self):
        assert normalize_dsn("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert normalize_dsn("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
        assert normalize_dsn("sqlite:///ledger.db") == "sqlite+aiosqlite:///ledger.db"
        assert normalize_dsn("sqlite+aiosqlite:///:memory:") == "sqlite+aiosqlite:///:memory:"
