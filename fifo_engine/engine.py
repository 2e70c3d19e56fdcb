"""
FIFO Allocation Engine

Attributes vessel fuel consumption to purchase lots using First-In-First-Out
matching, producing the allocation ledger used for cost accounting.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from .exceptions import AllocationBusyError, ErrorKind, FifoEngineError, PersistenceError
from .ledger import LedgerStore, LedgerUnitOfWork
from .models import (
    Allocation,
    ConsumptionRecord,
    MonthAllocations,
    MonthlyValueSummary,
    PurchaseLot,
    RunResult,
    RunScope,
    RunState,
)
from .valuation import ValueCalculator


class AllocationEngine:
    """
    FIFO Allocation Engine for fuel cost accounting.

    Core Principles:
    - Lots and consumption records are facts entered upstream
    - Allocations are derived from them, oldest lot first, per vessel
    - Remaining quantities live in a working set during a run and are
      committed together with the allocation rows in one unit of work
    - Only one run (or recovery) may be in flight at a time

    Usage:
        engine = AllocationEngine(ledger_store, logger_manager)
        result = await engine.run(RunScope.UNALLOCATED)
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        logger_manager: LoggerManager,
        precision_utils: PrecisionUtils = None,
        value_calculator: ValueCalculator = None,
        run_guard: Optional[asyncio.Lock] = None,
    ):
        """
        Initialize the allocation engine.

        Args:
            ledger_store: Store holding lots, consumption and allocations
            logger_manager: Logging manager
            precision_utils: Tolerances and rounding (defaults to PrecisionUtils())
            value_calculator: Lot valuation (defaults to one built on precision_utils)
            run_guard: Lock shared with the reconciliation service
        """
        self.store = ledger_store
        self.logger = logger_manager.get_logger('fifo_logger')
        self.precision = precision_utils or PrecisionUtils()
        self.values = value_calculator or ValueCalculator(self.precision)
        self.guard = run_guard or asyncio.Lock()
        self.state = RunState.IDLE

        self.logger.info("✅ AllocationEngine initialized")

    async def run(self, scope: RunScope = RunScope.UNALLOCATED) -> RunResult:
        """
        Allocate consumption in scope against available lots.

        Args:
            scope: RunScope.UNALLOCATED for incremental runs, RunScope.ALL for
                a full pass (normally only after the ledger has been reset)

        Returns:
            RunResult with statistics, the step log and any warnings
        """
        if self.guard.locked():
            return self._busy_result(AllocationBusyError('allocation run'))

        async with self.guard:
            start_time = datetime.now(timezone.utc)
            self.logger.info(f"🚀 Starting FIFO allocation (scope={scope.value})")

            result = RunResult()
            try:
                async with self.store.unit_of_work() as uow:
                    await self.run_in(uow, scope, result)

            except Exception as e:
                result = self._failure_result(result, e)

            result.duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            if result.success:
                self.logger.info(f"🎉 {result.message} ({result.duration_ms:,}ms)")
            return result

    async def run_in(
        self,
        uow: LedgerUnitOfWork,
        scope: RunScope,
        result: Optional[RunResult] = None,
    ) -> RunResult:
        """
        Run the allocation inside an existing unit of work.

        The caller must hold the run guard and owns the commit. Any failure
        is raised so the caller's unit of work rolls back.
        """
        result = result if result is not None else RunResult()
        self.state = RunState.RUNNING
        try:
            await self._allocate(uow, scope, result)
        except Exception:
            self.state = RunState.FAILED
            raise
        self.state = RunState.COMPLETED
        return result

    # =========================================================================
    # FIFO MATCHING ALGORITHM
    # =========================================================================

    async def _allocate(self, uow: LedgerUnitOfWork, scope: RunScope, result: RunResult):
        result.details.append("Starting FIFO Allocation Process...")

        records = await uow.load_consumption(scope)
        label = "unallocated" if scope == RunScope.UNALLOCATED else "total"
        result.details.append(f"Found {len(records)} {label} consumption records")
        self.logger.info(f"📊 Found {len(records)} {label} consumption records")

        if not records:
            result.success = True
            result.message = f"No {label} consumption records found."
            return

        # Working set: lot_id → remaining quantity for this run
        working_set: Dict[int, Decimal] = {}
        touched_lots = set()
        pending: List[Allocation] = []
        total_value = Decimal('0')

        for vessel_id, vessel_records in itertools.groupby(records, key=lambda r: r.vessel_id):
            vessel_records = list(vessel_records)
            lots = await self._load_vessel_inventory(uow, vessel_id, working_set, result)
            result.details.append(
                f"  Vessel {vessel_id}: {len(vessel_records)} consumption records, "
                f"{len(lots)} lots with remaining quantity"
            )

            for record in vessel_records:
                allocations = self._allocate_record_fifo(record, lots, working_set, result)
                for allocation in allocations:
                    touched_lots.add(allocation.purchase_lot_id)
                    total_value += allocation.allocated_value_usd
                    result.total_allocated_quantity += allocation.allocated_quantity
                pending.extend(allocations)
                result.processed_consumptions += 1

        lot_updates = {lot_id: working_set[lot_id] for lot_id in sorted(touched_lots)}
        saved = await self._persist(uow, pending, lot_updates)
        result.details.append(
            f"Saved {len(saved)} allocations and updated {len(lot_updates)} lots"
        )

        result.allocations_created = len(saved)
        result.total_allocated_value = self.values.round_currency(total_value)
        result.success = True
        result.message = (
            f"FIFO allocation completed successfully! Processed {result.processed_consumptions} "
            f"consumption records, created {result.allocations_created} allocations."
        )
        if result.shortfall_count:
            result.message += f" {result.shortfall_count} record(s) short of inventory."

    async def _load_vessel_inventory(
        self,
        uow: LedgerUnitOfWork,
        vessel_id: int,
        working_set: Dict[int, Decimal],
        result: RunResult,
    ) -> List[PurchaseLot]:
        """Load a vessel's lots in FIFO order and seed the working set."""
        lots = []
        for lot in await uow.load_lots_for_vessel(vessel_id):
            if not self.values.is_valuable(lot):
                result.details.append(
                    f"    Skipped lot {lot.invoice_reference or lot.id}: "
                    f"{ErrorKind.DIVISION_BY_ZERO.value} (no liters to value)"
                )
                self.logger.warning(f"⚠️  Lot {lot.id} has zero quantity_liters, not eligible")
                continue
            working_set[lot.id] = self.precision.to_decimal(lot.remaining_quantity)
            lots.append(lot)
        self.logger.debug(f"   Loaded {len(lots)} lots for vessel {vessel_id}")
        return lots

    def _allocate_record_fifo(
        self,
        record: ConsumptionRecord,
        lots: List[PurchaseLot],
        working_set: Dict[int, Decimal],
        result: RunResult,
    ) -> List[Allocation]:
        """
        Allocate one consumption record to lot(s) using FIFO logic.

        Args:
            record: Consumption record to cover
            lots: Vessel lots, oldest first
            working_set: Current remaining quantity per lot (mutated)
            result: Run result receiving the step log and warnings

        Returns:
            List of new (unsaved) allocations
        """
        allocations = []
        outstanding = self.precision.to_decimal(record.consumption_liters)
        created = datetime.now()

        for lot in lots:
            if outstanding <= 0:
                break

            if not lot.available_for(record.month):
                # Lots are date ordered: nothing later can cover this month either
                break

            available = working_set[lot.id]
            if available <= 0:
                continue

            quantity = min(available, outstanding)
            working_set[lot.id] = available - quantity
            outstanding -= quantity

            allocation = Allocation(
                purchase_lot_id=lot.id,
                consumption_id=record.id,
                month=record.month,
                allocated_quantity=quantity,
                allocated_value=self.values.allocated_value_native(lot, quantity),
                allocated_value_usd=self.values.allocated_value(lot, quantity),
                lot_balance_after=working_set[lot.id],
                created_date=created,
            )
            allocations.append(allocation)

            result.details.append(
                f"    Allocated {quantity:,.3f} L from lot {lot.invoice_reference or lot.id} "
                f"({lot.purchase_date:%Y-%m-%d}) to consumption {record.id}"
            )

        if self.precision.is_shortfall(outstanding):
            result.shortfall_count += 1
            result.add_warning(
                f"[{ErrorKind.VALIDATION_SHORTFALL.value}] "
                f"Unallocated consumption remaining: {outstanding:,.3f} L for consumption "
                f"{record.id} (vessel {record.vessel_id}, {record.consumption_date:%Y-%m-%d}) "
                f"- insufficient inventory"
            )
            self.logger.shortfall(
                f"Consumption {record.id} short by {outstanding} L (vessel {record.vessel_id})"
            )

        return allocations

    async def _persist(
        self,
        uow: LedgerUnitOfWork,
        allocations: List[Allocation],
        lot_updates: Dict[int, Decimal],
    ) -> List[Allocation]:
        """Write the whole batch; any failure aborts the unit of work."""
        if not allocations and not lot_updates:
            return []
        try:
            return await uow.persist_allocation_batch(allocations, lot_updates)
        except Exception as e:
            raise PersistenceError("Failed to persist allocation batch", e) from e

    # =========================================================================
    # RESULT HELPERS
    # =========================================================================

    def _busy_result(self, error: AllocationBusyError) -> RunResult:
        self.logger.warning(f"⚠️  {error}")
        return RunResult(
            success=False,
            message=str(error),
            details=[f"ERROR: {error}"],
            error_kind=error.kind,
        )

    def _failure_result(self, partial: RunResult, error: Exception) -> RunResult:
        """Nothing from a failed run is kept, so the statistics are zeroed."""
        self.state = RunState.FAILED
        kind = error.kind if isinstance(error, FifoEngineError) and error.kind else ErrorKind.PERSISTENCE_FAILURE
        self.logger.error(f"❌ FIFO allocation failed: {error}", exc_info=True)

        details = list(partial.details)
        details.append(f"ERROR: {error}")
        details.append("All changes from this run were rolled back")
        return RunResult(
            success=False,
            message=f"Error during FIFO allocation: {error}",
            details=details,
            warnings=list(partial.warnings),
            error_kind=kind,
        )

    # =========================================================================
    # ALLOCATION QUERIES
    # =========================================================================

    async def allocations_for_month(self, month: str) -> MonthAllocations:
        """
        Allocations stamped with a month, ordered by vessel, lot date, consumption date.

        If the ledger cannot be read the list is empty and carries the error.
        """
        try:
            async with self.store.unit_of_work() as uow:
                allocations = await uow.load_allocations_for_month(month)
                lots = {lot.id: lot for lot in await uow.load_all_lots()}
                records = {r.id: r for r in await uow.load_all_consumption()}
        except Exception as e:
            return self._query_failure(MonthAllocations(), f"allocations for {month}", e)

        def sort_key(allocation: Allocation):
            lot = lots.get(allocation.purchase_lot_id)
            record = records.get(allocation.consumption_id)
            return (
                lot.vessel_id if lot else -1,
                lot.purchase_date if lot else datetime.min.date(),
                record.consumption_date if record else datetime.min.date(),
                allocation.id or 0,
            )

        return MonthAllocations(sorted(allocations, key=sort_key))

    async def monthly_value_summary(self) -> MonthlyValueSummary:
        """Allocated USD value per month, rounded at the aggregate."""
        try:
            async with self.store.unit_of_work() as uow:
                allocations = await uow.load_all_allocations()
        except Exception as e:
            return self._query_failure(MonthlyValueSummary(), "monthly value summary", e)

        totals: Dict[str, Decimal] = {}
        for allocation in allocations:
            totals[allocation.month] = totals.get(allocation.month, Decimal('0')) + allocation.allocated_value_usd
        return MonthlyValueSummary(
            (month, self.values.round_currency(totals[month])) for month in sorted(totals)
        )

    def _query_failure(self, empty, query: str, error: Exception):
        self.logger.error(f"❌ Failed to load {query}: {error}", exc_info=True)
        empty.error = f"Error loading {query}: {error}"
        empty.error_kind = ErrorKind.PERSISTENCE_FAILURE
        return empty
