"""
SQLAlchemy-backed LedgerStore.

One unit of work is one AsyncSession transaction: the block commits when it
exits normally and rolls back when it raises.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List

from sqlalchemy import delete, exists, or_, select, update

from database_manager.database_session_manager import DatabaseSessionManager
from fifo_engine.ledger import LedgerStore, LedgerUnitOfWork
from fifo_engine.models import Allocation, ConsumptionRecord, PurchaseLot, RunScope
from TableModels import AllocationRow, ConsumptionRow, PurchaseLotRow


class SqlAlchemyLedgerStore(LedgerStore):
    """
    Ledger access through DatabaseSessionManager.

    Usage:
        store = SqlAlchemyLedgerStore(database_session_manager)
        async with store.unit_of_work() as uow:
            lots = await uow.load_all_lots()
    """

    def __init__(self, database_session_manager: DatabaseSessionManager):
        self.db = database_session_manager

    @asynccontextmanager
    async def unit_of_work(self):
        async with self.db.async_session() as session:
            async with session.begin():
                yield SqlAlchemyUnitOfWork(session)

    # ---------- upstream entry (lots and consumption are created outside the core) ----------

    async def add_lot(self, lot: PurchaseLot) -> PurchaseLot:
        async with self.db.async_session() as session:
            async with session.begin():
                row = PurchaseLotRow(
                    id=lot.id,
                    vessel_id=lot.vessel_id,
                    supplier_id=lot.supplier_id,
                    purchase_date=lot.purchase_date,
                    invoice_reference=lot.invoice_reference,
                    quantity_liters=lot.quantity_liters,
                    quantity_tons=lot.quantity_tons,
                    total_value=lot.total_value,
                    total_value_usd=lot.total_value_usd,
                    remaining_quantity=lot.remaining_quantity,
                    created_date=lot.created_date or datetime.now(),
                )
                session.add(row)
                await session.flush()
                # Read back what the column scale actually kept
                await session.refresh(row)
                return _lot_from_row(row)

    async def add_consumption(self, record: ConsumptionRecord) -> ConsumptionRecord:
        async with self.db.async_session() as session:
            async with session.begin():
                row = ConsumptionRow(
                    id=record.id,
                    vessel_id=record.vessel_id,
                    consumption_date=record.consumption_date,
                    month=record.month,
                    consumption_liters=record.consumption_liters,
                    legs_completed=record.legs_completed,
                    created_date=record.created_date or datetime.now(),
                )
                session.add(row)
                await session.flush()
                # Read back what the column scale actually kept
                await session.refresh(row)
                return _consumption_from_row(row)

    async def remove_lot(self, lot_id: int) -> None:
        """Delete a lot without touching its allocations (upstream deletion)."""
        async with self.db.async_session() as session:
            async with session.begin():
                await session.execute(delete(PurchaseLotRow).where(PurchaseLotRow.id == lot_id))


class SqlAlchemyUnitOfWork(LedgerUnitOfWork):

    def __init__(self, session):
        self.session = session

    async def _scalars(self, stmt) -> list:
        # Bulk updates skip the identity map, so always refresh loaded rows
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    # ---------- reads ----------

    async def load_consumption(self, scope: RunScope) -> List[ConsumptionRecord]:
        stmt = select(ConsumptionRow)
        if scope == RunScope.UNALLOCATED:
            stmt = stmt.where(
                ~exists().where(AllocationRow.consumption_id == ConsumptionRow.id)
            )
        stmt = stmt.order_by(ConsumptionRow.vessel_id, ConsumptionRow.consumption_date, ConsumptionRow.id)
        return [_consumption_from_row(row) for row in await self._scalars(stmt)]

    async def load_lots_for_vessel(self, vessel_id: int) -> List[PurchaseLot]:
        stmt = (
            select(PurchaseLotRow)
            .where(PurchaseLotRow.vessel_id == vessel_id, PurchaseLotRow.remaining_quantity > 0)
            .order_by(PurchaseLotRow.purchase_date, PurchaseLotRow.id)
        )
        return [_lot_from_row(row) for row in await self._scalars(stmt)]

    async def load_all_lots(self) -> List[PurchaseLot]:
        stmt = select(PurchaseLotRow).order_by(PurchaseLotRow.purchase_date, PurchaseLotRow.id)
        return [_lot_from_row(row) for row in await self._scalars(stmt)]

    async def load_all_consumption(self) -> List[ConsumptionRecord]:
        stmt = select(ConsumptionRow).order_by(
            ConsumptionRow.vessel_id, ConsumptionRow.consumption_date, ConsumptionRow.id
        )
        return [_consumption_from_row(row) for row in await self._scalars(stmt)]

    async def load_all_allocations(self) -> List[Allocation]:
        stmt = select(AllocationRow).order_by(AllocationRow.id)
        return [_allocation_from_row(row) for row in await self._scalars(stmt)]

    async def load_allocations_for_month(self, month: str) -> List[Allocation]:
        stmt = select(AllocationRow).where(AllocationRow.month == month).order_by(AllocationRow.id)
        return [_allocation_from_row(row) for row in await self._scalars(stmt)]

    # ---------- writes ----------

    async def persist_allocation_batch(
        self,
        allocations: List[Allocation],
        lot_updates: Dict[int, Decimal],
    ) -> List[Allocation]:
        rows = [
            AllocationRow(
                purchase_lot_id=a.purchase_lot_id,
                consumption_id=a.consumption_id,
                month=a.month,
                allocated_quantity=a.allocated_quantity,
                allocated_value=a.allocated_value,
                allocated_value_usd=a.allocated_value_usd,
                lot_balance_after=a.lot_balance_after,
                created_date=a.created_date or datetime.now(),
            )
            for a in allocations
        ]
        self.session.add_all(rows)
        await self.session.flush()

        for lot_id, remaining in lot_updates.items():
            result = await self.session.execute(
                update(PurchaseLotRow)
                .where(PurchaseLotRow.id == lot_id)
                .values(remaining_quantity=remaining)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise LookupError(f"Lot {lot_id} does not exist")

        return [_allocation_from_row(row) for row in rows]

    async def delete_all_allocations(self) -> int:
        result = await self.session.execute(
            delete(AllocationRow).execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def reset_all_lot_remaining(self) -> int:
        result = await self.session.execute(
            update(PurchaseLotRow)
            .values(remaining_quantity=PurchaseLotRow.quantity_liters)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_orphan_allocations(self) -> int:
        result = await self.session.execute(
            delete(AllocationRow)
            .where(or_(
                AllocationRow.purchase_lot_id.not_in(select(PurchaseLotRow.id)),
                AllocationRow.consumption_id.not_in(select(ConsumptionRow.id)),
            ))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_allocations(self, allocation_ids: Iterable[int]) -> int:
        ids = list(allocation_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            delete(AllocationRow)
            .where(AllocationRow.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def fix_lot_remaining(self, lot_id: int, value: Decimal) -> None:
        result = await self.session.execute(
            update(PurchaseLotRow)
            .where(PurchaseLotRow.id == lot_id)
            .values(remaining_quantity=value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LookupError(f"Lot {lot_id} does not exist")


# =========================================================================
# ROW CONVERSION
# =========================================================================

def _lot_from_row(row: PurchaseLotRow) -> PurchaseLot:
    return PurchaseLot(
        id=row.id,
        vessel_id=row.vessel_id,
        supplier_id=row.supplier_id,
        purchase_date=row.purchase_date,
        quantity_liters=Decimal(row.quantity_liters),
        quantity_tons=Decimal(row.quantity_tons),
        total_value=Decimal(row.total_value),
        total_value_usd=Decimal(row.total_value_usd),
        remaining_quantity=Decimal(row.remaining_quantity),
        invoice_reference=row.invoice_reference,
        created_date=row.created_date,
    )


def _consumption_from_row(row: ConsumptionRow) -> ConsumptionRecord:
    return ConsumptionRecord(
        id=row.id,
        vessel_id=row.vessel_id,
        consumption_date=row.consumption_date,
        consumption_liters=Decimal(row.consumption_liters),
        legs_completed=row.legs_completed,
        month=row.month,
        created_date=row.created_date,
    )


def _allocation_from_row(row: AllocationRow) -> Allocation:
    return Allocation(
        id=row.id,
        purchase_lot_id=row.purchase_lot_id,
        consumption_id=row.consumption_id,
        month=row.month,
        allocated_quantity=Decimal(row.allocated_quantity),
        allocated_value=Decimal(row.allocated_value),
        allocated_value_usd=Decimal(row.allocated_value_usd),
        lot_balance_after=Decimal(row.lot_balance_after),
        created_date=row.created_date,
    )
