"""
Ledger access for the allocation core.

The engine and the reconciliation service only talk to a LedgerStore. Every
read and write happens inside a unit of work: leaving the ``async with``
block normally commits, leaving it with an exception rolls everything back.

    async with store.unit_of_work() as uow:
        lots = await uow.load_lots_for_vessel(7)
        await uow.persist_allocation_batch(allocations, {lot.id: Decimal('0')})
"""

import copy
import dataclasses
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Dict, Iterable, List

from .models import Allocation, ConsumptionRecord, PurchaseLot, RunScope


class LedgerUnitOfWork(ABC):
    """Operations available inside one atomic unit of work."""

    # ---------- reads ----------

    @abstractmethod
    async def load_consumption(self, scope: RunScope) -> List[ConsumptionRecord]:
        """Consumption in scope ordered by (vessel_id, consumption_date, id)."""

    @abstractmethod
    async def load_lots_for_vessel(self, vessel_id: int) -> List[PurchaseLot]:
        """Lots with remaining_quantity > 0 ordered by (purchase_date, id)."""

    @abstractmethod
    async def load_all_lots(self) -> List[PurchaseLot]:
        ...

    @abstractmethod
    async def load_all_consumption(self) -> List[ConsumptionRecord]:
        ...

    @abstractmethod
    async def load_all_allocations(self) -> List[Allocation]:
        ...

    @abstractmethod
    async def load_allocations_for_month(self, month: str) -> List[Allocation]:
        ...

    # ---------- writes ----------

    @abstractmethod
    async def persist_allocation_batch(
        self,
        allocations: List[Allocation],
        lot_updates: Dict[int, Decimal],
    ) -> List[Allocation]:
        """Insert allocations and set lot remaining quantities; returns rows with ids."""

    @abstractmethod
    async def delete_all_allocations(self) -> int:
        ...

    @abstractmethod
    async def reset_all_lot_remaining(self) -> int:
        """Set remaining_quantity = quantity_liters on every lot."""

    @abstractmethod
    async def delete_orphan_allocations(self) -> int:
        """Delete allocations whose lot or consumption record does not exist."""

    @abstractmethod
    async def delete_allocations(self, allocation_ids: Iterable[int]) -> int:
        ...

    @abstractmethod
    async def fix_lot_remaining(self, lot_id: int, value: Decimal) -> None:
        ...


class LedgerStore(ABC):
    """Factory for units of work against one backing store."""

    @abstractmethod
    def unit_of_work(self):
        """Async context manager yielding a LedgerUnitOfWork."""


# =========================================================================
# IN-MEMORY ADAPTER
# =========================================================================

class InMemoryLedgerStore(LedgerStore):
    """
    Dictionary-backed store.

    Each unit of work snapshots the state on entry and restores it if the
    block raises, which gives the same all-or-nothing contract as a database
    transaction.
    """

    def __init__(self):
        self.lots: Dict[int, PurchaseLot] = {}
        self.consumption: Dict[int, ConsumptionRecord] = {}
        self.allocations: Dict[int, Allocation] = {}
        self._next_allocation_id = 1

    # ---------- upstream entry (lots and consumption are created outside the core) ----------

    def add_lot(self, lot: PurchaseLot) -> PurchaseLot:
        self.lots[lot.id] = lot
        return lot

    def add_consumption(self, record: ConsumptionRecord) -> ConsumptionRecord:
        self.consumption[record.id] = record
        return record

    def remove_lot(self, lot_id: int) -> None:
        """Delete a lot without touching its allocations (upstream deletion)."""
        del self.lots[lot_id]

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator['InMemoryUnitOfWork']:
        snapshot = self._snapshot()
        try:
            yield InMemoryUnitOfWork(self)
        except BaseException:
            self._restore(snapshot)
            raise

    def _snapshot(self):
        return (
            copy.deepcopy(self.lots),
            copy.deepcopy(self.consumption),
            copy.deepcopy(self.allocations),
            self._next_allocation_id,
        )

    def _restore(self, snapshot):
        self.lots, self.consumption, self.allocations, self._next_allocation_id = snapshot

    def _next_id(self) -> int:
        allocation_id = self._next_allocation_id
        self._next_allocation_id += 1
        return allocation_id


class InMemoryUnitOfWork(LedgerUnitOfWork):

    def __init__(self, store: InMemoryLedgerStore):
        self.store = store

    async def load_consumption(self, scope: RunScope) -> List[ConsumptionRecord]:
        records = list(self.store.consumption.values())
        if scope == RunScope.UNALLOCATED:
            allocated_ids = {a.consumption_id for a in self.store.allocations.values()}
            records = [r for r in records if r.id not in allocated_ids]
        records.sort(key=lambda r: (r.vessel_id, r.consumption_date, r.id))
        return [dataclasses.replace(r) for r in records]

    async def load_lots_for_vessel(self, vessel_id: int) -> List[PurchaseLot]:
        lots = [
            lot for lot in self.store.lots.values()
            if lot.vessel_id == vessel_id and lot.remaining_quantity > 0
        ]
        lots.sort(key=lambda lot: (lot.purchase_date, lot.id))
        return [dataclasses.replace(lot) for lot in lots]

    async def load_all_lots(self) -> List[PurchaseLot]:
        lots = sorted(self.store.lots.values(), key=lambda lot: (lot.purchase_date, lot.id))
        return [dataclasses.replace(lot) for lot in lots]

    async def load_all_consumption(self) -> List[ConsumptionRecord]:
        records = sorted(
            self.store.consumption.values(),
            key=lambda r: (r.vessel_id, r.consumption_date, r.id),
        )
        return [dataclasses.replace(r) for r in records]

    async def load_all_allocations(self) -> List[Allocation]:
        return [dataclasses.replace(a) for a in sorted(self.store.allocations.values(), key=lambda a: a.id)]

    async def load_allocations_for_month(self, month: str) -> List[Allocation]:
        return [a for a in await self.load_all_allocations() if a.month == month]

    async def persist_allocation_batch(
        self,
        allocations: List[Allocation],
        lot_updates: Dict[int, Decimal],
    ) -> List[Allocation]:
        for lot_id in lot_updates:
            if lot_id not in self.store.lots:
                raise KeyError(f"Lot {lot_id} does not exist")

        saved = []
        for allocation in allocations:
            row = dataclasses.replace(
                allocation,
                id=self.store._next_id(),
                created_date=allocation.created_date or datetime.now(),
            )
            self.store.allocations[row.id] = row
            saved.append(dataclasses.replace(row))

        for lot_id, remaining in lot_updates.items():
            self.store.lots[lot_id].remaining_quantity = remaining
        return saved

    async def delete_all_allocations(self) -> int:
        count = len(self.store.allocations)
        self.store.allocations.clear()
        return count

    async def reset_all_lot_remaining(self) -> int:
        for lot in self.store.lots.values():
            lot.remaining_quantity = lot.quantity_liters
        return len(self.store.lots)

    async def delete_orphan_allocations(self) -> int:
        orphan_ids = [
            a.id for a in self.store.allocations.values()
            if a.purchase_lot_id not in self.store.lots
            or a.consumption_id not in self.store.consumption
        ]
        return await self.delete_allocations(orphan_ids)

    async def delete_allocations(self, allocation_ids: Iterable[int]) -> int:
        removed = 0
        for allocation_id in allocation_ids:
            if self.store.allocations.pop(allocation_id, None) is not None:
                removed += 1
        return removed

    async def fix_lot_remaining(self, lot_id: int, value: Decimal) -> None:
        self.store.lots[lot_id].remaining_quantity = value
