"""
Ledger Reconciliation

Audits the allocation ledger against lot balances and repairs drift, either by
re-deriving every allocation or by targeted cleanup.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from Shared_Utils.logging_manager import LoggerManager
from Shared_Utils.precision import PrecisionUtils
from .engine import AllocationEngine
from .exceptions import AllocationBusyError, ErrorKind, FifoEngineError
from .ledger import LedgerStore, LedgerUnitOfWork
from .models import (
    Allocation,
    BalanceVerification,
    ConsumptionRecord,
    Finding,
    FindingKind,
    InconsistencyReport,
    PurchaseLot,
    RecoveryMode,
    RecoveryResult,
    RecoveryState,
    RunScope,
)


class ReconciliationService:
    """
    Audits and repairs the allocation ledger.

    Checks:
    - Stored remaining quantity equals quantity_liters minus allocations
    - No lot has a negative remaining quantity
    - No lot is allocated beyond its quantity
    - No consumption record is allocated beyond its liters
    - Every allocation references an existing lot and consumption record

    Repairs (each a single unit of work, committed or rolled back as a whole):
    - FULL_RERUN: delete all allocations, reset lots, re-run the engine
    - MANUAL_CLEANUP: delete orphans, trim over-allocated lots, fix drifted
      remaining quantities; consistent allocations keep their ids
    """

    def __init__(
        self,
        ledger_store: LedgerStore,
        logger_manager: LoggerManager,
        engine: AllocationEngine,
        precision_utils: PrecisionUtils = None,
    ):
        """
        Initialize the reconciliation service.

        Args:
            ledger_store: Store holding lots, consumption and allocations
            logger_manager: Logging manager
            engine: Allocation engine used for full reruns; its run guard is shared
            precision_utils: Tolerances (defaults to the engine's)
        """
        self.store = ledger_store
        self.logger = logger_manager.get_logger('fifo_logger')
        self.engine = engine
        self.precision = precision_utils or engine.precision
        self.guard = engine.guard

        self.state = RecoveryState.IDLE
        self.last_outcome: Optional[RecoveryState] = None

        self.logger.info("✅ ReconciliationService initialized")

    # =========================================================================
    # AUDIT
    # =========================================================================

    async def get_inconsistency_report(self) -> InconsistencyReport:
        """
        Audit the whole ledger.

        Returns:
            InconsistencyReport (empty when the ledger is consistent). If the
            ledger cannot be read, the report carries the error and is not
            consistent.
        """
        self.logger.info("🔍 Checking ledger consistency")
        try:
            async with self.store.unit_of_work() as uow:
                lots, records, allocations = await self._load_ledger(uow)
        except Exception as e:
            self.logger.error(f"❌ Consistency check failed: {e}", exc_info=True)
            self.last_outcome = RecoveryState.FAILED
            self.state = RecoveryState.IDLE
            report = InconsistencyReport()
            report.error = f"Error checking data consistency: {e}"
            return report

        report = self._audit(lots, records, allocations)
        self.state = RecoveryState.REPORT_GENERATED
        self.last_outcome = RecoveryState.REPORT_GENERATED

        if report:
            self.logger.warning(f"⚠️  {len(report)} ledger inconsistencies found")
            for finding in report:
                self.logger.debug(f"   {finding}")
        else:
            self.logger.info("✅ Ledger is consistent")
        self.state = RecoveryState.IDLE
        return report

    def _audit(
        self,
        lots: List[PurchaseLot],
        records: List[ConsumptionRecord],
        allocations: List[Allocation],
    ) -> InconsistencyReport:
        report = InconsistencyReport()
        lots_by_id = {lot.id: lot for lot in lots}
        records_by_id = {r.id: r for r in records}

        linked, orphans = self._split_orphans(allocations, lots_by_id, records_by_id)
        for allocation in orphans:
            report.append(self._orphan_finding(allocation, lots_by_id, records_by_id))

        by_lot, by_record = self._allocated_totals(linked)
        tolerance = self.precision.remaining_tolerance

        for lot in lots:
            name = lot.invoice_reference or lot.id
            allocated = by_lot.get(lot.id, Decimal('0'))
            expected = lot.quantity_liters - allocated

            if lot.remaining_quantity < 0:
                report.append(Finding(
                    kind=FindingKind.NEGATIVE_REMAINING,
                    entity_type='lot',
                    entity_id=lot.id,
                    observed=lot.remaining_quantity,
                    expected=Decimal('0'),
                    description=(
                        f"Purchase {name}: Negative remaining quantity "
                        f"({lot.remaining_quantity:,.3f}L)"
                    ),
                ))

            if allocated > lot.quantity_liters + tolerance:
                report.append(Finding(
                    kind=FindingKind.OVER_ALLOCATED_LOT,
                    entity_type='lot',
                    entity_id=lot.id,
                    observed=allocated,
                    expected=lot.quantity_liters,
                    description=(
                        f"Purchase {name}: Over-allocated by {allocated - lot.quantity_liters:,.3f}L "
                        f"({allocated:,.3f}L allocated vs {lot.quantity_liters:,.3f}L available)"
                    ),
                ))

            if not self.precision.within_remaining_tolerance(lot.remaining_quantity, expected):
                report.append(Finding(
                    kind=FindingKind.REMAINING_DRIFT,
                    entity_type='lot',
                    entity_id=lot.id,
                    observed=lot.remaining_quantity,
                    expected=expected,
                    description=(
                        f"Purchase {name}: Inconsistent remaining quantity "
                        f"(stored: {lot.remaining_quantity:,.3f}L, calculated: {expected:,.3f}L)"
                    ),
                ))

        for record in records:
            allocated = by_record.get(record.id, Decimal('0'))
            if allocated > record.consumption_liters + tolerance:
                report.append(Finding(
                    kind=FindingKind.OVER_ALLOCATED_CONSUMPTION,
                    entity_type='consumption',
                    entity_id=record.id,
                    observed=allocated,
                    expected=record.consumption_liters,
                    description=(
                        f"Consumption {record.id} (vessel {record.vessel_id}, "
                        f"{record.consumption_date:%Y-%m-%d}): Over-allocated "
                        f"({allocated:,.3f}L allocated vs {record.consumption_liters:,.3f}L consumed)"
                    ),
                ))

        return report

    # =========================================================================
    # RECOVERY
    # =========================================================================

    async def recover(self, mode: RecoveryMode) -> RecoveryResult:
        """Run the repair strategy selected by mode."""
        if mode == RecoveryMode.FULL_RERUN:
            return await self.rerun_full_allocation()
        if mode == RecoveryMode.MANUAL_CLEANUP:
            return await self.manual_cleanup_inconsistent_data()
        raise ValueError(f"Unknown recovery mode: {mode!r}")

    async def rerun_full_allocation(self) -> RecoveryResult:
        """
        Delete every allocation, reset every lot and re-run the engine over
        all consumption, as one unit of work.
        """
        result = RecoveryResult(mode=RecoveryMode.FULL_RERUN)
        if self.guard.locked():
            return self._busy_result(result, AllocationBusyError('full allocation rerun'))

        async with self.guard:
            self.logger.recovery("Starting complete FIFO re-allocation")
            result.details.append("Starting complete FIFO re-allocation...")
            try:
                async with self.store.unit_of_work() as uow:
                    result.removed_allocations = await uow.delete_all_allocations()
                    result.details.append(f"Removed {result.removed_allocations} existing allocations")

                    result.fixed_lots = await uow.reset_all_lot_remaining()
                    result.details.append(f"Reset remaining quantities for {result.fixed_lots} purchases")

                    run_result = await self.engine.run_in(uow, RunScope.ALL)
                    result.run_result = run_result
                    result.details.extend(run_result.details)

            except Exception as e:
                return self._failure_result(result, e, "data recovery")

            result.success = True
            result.message = (
                f"Data recovery completed successfully! "
                f"Fixed {result.fixed_lots} purchase records, "
                f"removed {result.removed_allocations} old allocations, "
                f"created {run_result.allocations_created} new allocations, "
                f"processed {run_result.processed_consumptions} consumptions."
            )
            if run_result.warnings:
                result.message += f" {len(run_result.warnings)} warning(s)."
            self._committed(RecoveryState.FULL_RERUN_COMMITTED, result)
            return result

    async def manual_cleanup_inconsistent_data(self) -> RecoveryResult:
        """
        Repair only what is broken, as one unit of work:
        orphan allocations are deleted, over-allocated lots lose their newest
        allocations until they fit, and drifted remaining quantities are
        overwritten with the value derived from the allocations left.
        """
        result = RecoveryResult(mode=RecoveryMode.MANUAL_CLEANUP)
        if self.guard.locked():
            return self._busy_result(result, AllocationBusyError('manual cleanup'))

        async with self.guard:
            self.logger.recovery("Starting manual cleanup of inconsistent data")
            result.details.append("Starting manual cleanup of inconsistent data...")
            try:
                async with self.store.unit_of_work() as uow:
                    await self._cleanup(uow, result)
            except Exception as e:
                return self._failure_result(result, e, "manual cleanup")

            result.success = True
            result.message = (
                f"Manual cleanup completed! Fixed {result.fixed_lots} purchases, "
                f"removed {result.removed_allocations} allocations."
            )
            result.details.append("Manual cleanup completed successfully")
            self._committed(RecoveryState.MANUAL_CLEANUP_COMMITTED, result)
            return result

    async def _cleanup(self, uow: LedgerUnitOfWork, result: RecoveryResult):
        lots, records, allocations = await self._load_ledger(uow)
        lots_by_id = {lot.id: lot for lot in lots}
        records_by_id = {r.id: r for r in records}

        linked, orphans = self._split_orphans(allocations, lots_by_id, records_by_id)
        result.details.append(f"Found {len(orphans)} orphan allocations")
        if orphans:
            removed = await uow.delete_orphan_allocations()
            result.removed_allocations += removed
            for allocation in orphans:
                result.details.append(
                    f"  Removed orphan allocation {allocation.id}: {allocation.allocated_quantity:,.3f}L "
                    f"(lot {allocation.purchase_lot_id}, consumption {allocation.consumption_id})"
                )

        linked = await self._trim_over_allocated_lots(uow, lots, linked, result)

        by_lot, _ = self._allocated_totals(linked)
        for lot in lots:
            expected = lot.quantity_liters - by_lot.get(lot.id, Decimal('0'))
            if self.precision.within_remaining_tolerance(lot.remaining_quantity, expected):
                continue
            await uow.fix_lot_remaining(lot.id, expected)
            result.fixed_lots += 1
            result.details.append(
                f"  Fixed: {lot.invoice_reference or lot.id} - Remaining: "
                f"{lot.remaining_quantity:,.3f}L → {expected:,.3f}L"
            )

    async def _trim_over_allocated_lots(
        self,
        uow: LedgerUnitOfWork,
        lots: List[PurchaseLot],
        linked: List[Allocation],
        result: RecoveryResult,
    ) -> List[Allocation]:
        """Remove newest allocations from lots allocated beyond their quantity."""
        by_lot_rows: Dict[int, List[Allocation]] = defaultdict(list)
        for allocation in linked:
            by_lot_rows[allocation.purchase_lot_id].append(allocation)

        removed_ids = set()
        for lot in lots:
            rows = by_lot_rows.get(lot.id, [])
            allocated = sum((a.allocated_quantity for a in rows), Decimal('0'))
            excess = allocated - lot.quantity_liters
            if excess <= self.precision.remaining_tolerance:
                continue

            result.details.append(
                f"Purchase {lot.invoice_reference or lot.id}: {excess:,.3f}L over-allocated"
            )
            newest_first = sorted(rows, key=lambda a: (a.created_date is not None, a.created_date, a.id or 0),
                                  reverse=True)
            removed_quantity = Decimal('0')
            for allocation in newest_first:
                if removed_quantity >= excess:
                    break
                removed_ids.add(allocation.id)
                removed_quantity += allocation.allocated_quantity
                result.details.append(f"  Removed allocation: {allocation.allocated_quantity:,.3f}L")

        if removed_ids:
            result.removed_allocations += await uow.delete_allocations(sorted(removed_ids))
        return [a for a in linked if a.id not in removed_ids]

    # =========================================================================
    # BALANCE VERIFICATION
    # =========================================================================

    async def verify_balances(self) -> BalanceVerification:
        """
        Compare fleet totals of purchases, consumption and allocations.

        If the ledger cannot be read the verification is unbalanced and
        carries the error.
        """
        verification = BalanceVerification()
        try:
            async with self.store.unit_of_work() as uow:
                lots, records, allocations = await self._load_ledger(uow)
        except Exception as e:
            self.logger.error(f"❌ Balance verification failed: {e}", exc_info=True)
            verification.is_balanced = False
            verification.error = f"Error verifying balances: {e}"
            verification.error_kind = ErrorKind.PERSISTENCE_FAILURE
            verification.notes.append(verification.error)
            return verification

        verification.total_purchased = sum((lot.quantity_liters for lot in lots), Decimal('0'))
        verification.total_remaining = sum((lot.remaining_quantity for lot in lots), Decimal('0'))
        verification.total_consumed = sum((r.consumption_liters for r in records), Decimal('0'))
        verification.total_allocated = sum((a.allocated_quantity for a in allocations), Decimal('0'))
        verification.total_allocated_value_usd = self.precision.round_currency(
            sum((a.allocated_value_usd for a in allocations), Decimal('0'))
        )
        verification.unallocated_consumption = verification.total_consumed - verification.total_allocated
        verification.quantity_variance = (
            verification.total_purchased - verification.total_allocated - verification.total_remaining
        )

        tolerance = self.precision.remaining_tolerance * max(len(lots), 1)
        verification.is_balanced = abs(verification.quantity_variance) <= tolerance
        if not verification.is_balanced:
            verification.notes.append(
                f"Purchased minus allocated differs from remaining by "
                f"{verification.quantity_variance:,.3f}L"
            )
        if self.precision.is_shortfall(verification.unallocated_consumption):
            verification.notes.append(
                f"{verification.unallocated_consumption:,.3f}L of consumption is not covered by any lot"
            )

        self.logger.info(f"📒 {verification}")
        return verification

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    async def _load_ledger(uow: LedgerUnitOfWork) -> Tuple[List[PurchaseLot], List[ConsumptionRecord], List[Allocation]]:
        lots = await uow.load_all_lots()
        records = await uow.load_all_consumption()
        allocations = await uow.load_all_allocations()
        return lots, records, allocations

    @staticmethod
    def _split_orphans(allocations, lots_by_id, records_by_id) -> Tuple[List[Allocation], List[Allocation]]:
        linked, orphans = [], []
        for allocation in allocations:
            if allocation.purchase_lot_id in lots_by_id and allocation.consumption_id in records_by_id:
                linked.append(allocation)
            else:
                orphans.append(allocation)
        return linked, orphans

    @staticmethod
    def _allocated_totals(allocations: List[Allocation]) -> Tuple[Dict[int, Decimal], Dict[int, Decimal]]:
        by_lot: Dict[int, Decimal] = defaultdict(Decimal)
        by_record: Dict[int, Decimal] = defaultdict(Decimal)
        for allocation in allocations:
            by_lot[allocation.purchase_lot_id] += allocation.allocated_quantity
            by_record[allocation.consumption_id] += allocation.allocated_quantity
        return by_lot, by_record

    @staticmethod
    def _orphan_finding(allocation: Allocation, lots_by_id, records_by_id) -> Finding:
        missing = []
        if allocation.purchase_lot_id not in lots_by_id:
            missing.append(f"lot {allocation.purchase_lot_id}")
        if allocation.consumption_id not in records_by_id:
            missing.append(f"consumption {allocation.consumption_id}")
        return Finding(
            kind=FindingKind.ORPHAN_ALLOCATION,
            entity_type='allocation',
            entity_id=allocation.id,
            observed=allocation.allocated_quantity,
            expected=None,
            description=(
                f"Allocation {allocation.id}: Orphan ({allocation.allocated_quantity:,.3f}L) "
                f"references missing {' and '.join(missing)}"
            ),
        )

    def _committed(self, outcome: RecoveryState, result: RecoveryResult):
        self.state = outcome
        self.last_outcome = outcome
        self.logger.recovery(result.message)
        self.state = RecoveryState.IDLE

    def _busy_result(self, result: RecoveryResult, error: AllocationBusyError) -> RecoveryResult:
        self.logger.warning(f"⚠️  {error}")
        result.success = False
        result.message = str(error)
        result.details.append(f"ERROR: {error}")
        result.error_kind = error.kind
        return result

    def _failure_result(self, result: RecoveryResult, error: Exception, operation: str) -> RecoveryResult:
        self.logger.error(f"❌ {operation} failed, rolled back: {error}", exc_info=True)
        self.state = RecoveryState.FAILED
        self.last_outcome = RecoveryState.FAILED

        result.success = False
        result.error_kind = (
            error.kind if isinstance(error, FifoEngineError) and error.kind else ErrorKind.PERSISTENCE_FAILURE
        )
        result.message = f"Error during {operation}: {error}"
        result.details.append(f"ERROR: {error}")
        result.details.append("All changes were rolled back")
        # Nothing was committed, so the counters describe no real change
        result.fixed_lots = 0
        result.removed_allocations = 0
        result.run_result = None
        self.state = RecoveryState.IDLE
        return result
