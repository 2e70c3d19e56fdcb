"""
Data models for the FIFO Allocation Engine.

Defines the ledger records (lots, consumption, allocations) and the result
structures returned to callers.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from .exceptions import ErrorKind


def month_key(value: date) -> str:
    """Return the YYYY-MM key for a date."""
    return f"{value.year:04d}-{value.month:02d}"


def month_end(month: str) -> date:
    """Return the last calendar day of a YYYY-MM month key."""
    year, month_num = (int(part) for part in month.split('-'))
    return date(year, month_num, calendar.monthrange(year, month_num)[1])


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


class RunScope(str, Enum):
    """Which consumption records a run considers."""

    UNALLOCATED = 'unallocated'  # incremental: records with no allocation rows
    ALL = 'all'                  # full: every record (reconciliation rerun)


class RunState(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class RecoveryMode(str, Enum):
    FULL_RERUN = 'full_rerun'
    MANUAL_CLEANUP = 'manual_cleanup'


class RecoveryState(str, Enum):
    IDLE = 'idle'
    REPORT_GENERATED = 'report_generated'
    FULL_RERUN_COMMITTED = 'full_rerun_committed'
    MANUAL_CLEANUP_COMMITTED = 'manual_cleanup_committed'
    FAILED = 'failed'


class FindingKind(str, Enum):
    REMAINING_DRIFT = 'remaining_drift'
    NEGATIVE_REMAINING = 'negative_remaining'
    OVER_ALLOCATED_LOT = 'over_allocated_lot'
    OVER_ALLOCATED_CONSUMPTION = 'over_allocated_consumption'
    ORPHAN_ALLOCATION = 'orphan_allocation'


@dataclass
class PurchaseLot:
    """
    A single fuel purchase tracked with its own remaining balance.

    remaining_quantity starts equal to quantity_liters and only ever shrinks
    through allocations.
    """

    id: int
    vessel_id: int
    supplier_id: int
    purchase_date: date
    quantity_liters: Decimal
    quantity_tons: Decimal
    total_value: Decimal       # supplier currency
    total_value_usd: Decimal
    remaining_quantity: Decimal
    invoice_reference: str = ''
    created_date: Optional[datetime] = None

    @property
    def density(self) -> Decimal:
        """Tons per 1000 liters; zero when the lot has no liters."""
        if self.quantity_liters <= 0:
            return Decimal('0')
        return self.quantity_tons / (self.quantity_liters / Decimal('1000'))

    @property
    def is_exhausted(self) -> bool:
        return self.remaining_quantity <= 0

    def available_for(self, month: str) -> bool:
        """Lots purchased after the end of a consumption month cannot cover it."""
        return _as_date(self.purchase_date) <= month_end(month)

    def __str__(self) -> str:
        return (
            f"PurchaseLot({self.invoice_reference or self.id}: vessel {self.vessel_id}, "
            f"{self.remaining_quantity}/{self.quantity_liters} L remaining)"
        )


@dataclass
class ConsumptionRecord:
    """Fuel consumed by a vessel on a given date."""

    id: int
    vessel_id: int
    consumption_date: date
    consumption_liters: Decimal
    legs_completed: int = 0
    month: str = ''
    created_date: Optional[datetime] = None

    def __post_init__(self):
        if not self.month:
            self.month = month_key(self.consumption_date)

    @property
    def consumption_per_leg(self) -> Decimal:
        if not self.legs_completed:
            return Decimal('0')
        return self.consumption_liters / self.legs_completed

    def __str__(self) -> str:
        return (
            f"Consumption({self.id}: vessel {self.vessel_id}, "
            f"{self.consumption_liters} L on {self.consumption_date})"
        )


@dataclass
class Allocation:
    """
    How much of a consumption record was drawn from a purchase lot.

    This is the core ledger row written by the engine. Values are kept at
    full precision; rounding happens only when totals are reported.
    """

    purchase_lot_id: int
    consumption_id: int
    month: str
    allocated_quantity: Decimal
    allocated_value: Decimal      # supplier currency
    allocated_value_usd: Decimal
    lot_balance_after: Decimal
    created_date: Optional[datetime] = None
    id: Optional[int] = None

    def __str__(self) -> str:
        return (
            f"Allocation(lot {self.purchase_lot_id} → consumption {self.consumption_id}: "
            f"{self.allocated_quantity} L, ${self.allocated_value_usd:,.2f})"
        )


@dataclass
class RunResult:
    """
    Result of an allocation run.

    Contains statistics, the per-step log and error information.
    """

    success: bool = False
    message: str = ''
    details: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    # Statistics
    processed_consumptions: int = 0
    allocations_created: int = 0
    total_allocated_quantity: Decimal = Decimal('0')
    total_allocated_value: Decimal = Decimal('0')
    shortfall_count: int = 0

    # Error info (if success=False)
    error_kind: Optional[ErrorKind] = None
    duration_ms: Optional[int] = None

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def add_warning(self, message: str):
        """Record a warning in both the warning list and the step log."""
        self.warnings.append(message)
        self.details.append(f"WARNING: {message}")

    def __str__(self) -> str:
        if self.success:
            return (
                f"RunResult(✅ {self.allocations_created} allocations, "
                f"{self.total_allocated_quantity:,.3f} L, "
                f"${self.total_allocated_value:,.2f}, "
                f"{len(self.warnings)} warnings)"
            )
        return f"RunResult(❌ {self.error_kind.value if self.error_kind else 'failed'}: {self.message})"


@dataclass
class Finding:
    """One invariant violation found while auditing the ledger."""

    kind: FindingKind
    entity_type: str
    entity_id: Optional[int]
    observed: Optional[Decimal]
    expected: Optional[Decimal]
    description: str

    @property
    def error_kind(self) -> ErrorKind:
        return ErrorKind.CONSISTENCY_VIOLATION

    def __str__(self) -> str:
        return self.description


class InconsistencyReport(list):
    """List of findings that renders as human-readable lines."""

    NO_ISSUES = "No data inconsistencies found - all data appears correct!"

    error: Optional[str] = None  # set when the ledger could not be read

    @property
    def is_consistent(self) -> bool:
        return self.error is None and len(self) == 0

    def of_kind(self, kind: FindingKind) -> List[Finding]:
        return [finding for finding in self if finding.kind == kind]

    def lines(self) -> List[str]:
        if self.error:
            return [self.error] + [str(finding) for finding in self]
        if not self:
            return [self.NO_ISSUES]
        return [str(finding) for finding in self]

    def __str__(self) -> str:
        return "\n".join(self.lines())


@dataclass
class RecoveryResult:
    """Result of a reconciliation repair."""

    success: bool = False
    message: str = ''
    details: List[str] = field(default_factory=list)
    mode: Optional[RecoveryMode] = None

    fixed_lots: int = 0
    removed_allocations: int = 0
    run_result: Optional[RunResult] = None

    error_kind: Optional[ErrorKind] = None

    def __str__(self) -> str:
        status = "✅" if self.success else "❌"
        mode = self.mode.value if self.mode else 'unknown'
        return f"RecoveryResult({status} {mode}: {self.message})"


@dataclass
class BalanceVerification:
    """Fleet-wide quantity balance between purchases, consumption and allocations."""

    total_purchased: Decimal = Decimal('0')
    total_remaining: Decimal = Decimal('0')
    total_consumed: Decimal = Decimal('0')
    total_allocated: Decimal = Decimal('0')
    total_allocated_value_usd: Decimal = Decimal('0')
    unallocated_consumption: Decimal = Decimal('0')
    quantity_variance: Decimal = Decimal('0')
    is_balanced: bool = True
    notes: List[str] = field(default_factory=list)
    error: Optional[str] = None  # set when the ledger could not be read
    error_kind: Optional[ErrorKind] = None

    def __str__(self) -> str:
        if self.error:
            return f"BalanceVerification(❌ {self.error})"
        status = "✅ BALANCED" if self.is_balanced else "❌ UNBALANCED"
        return (
            f"BalanceVerification({status}: purchased {self.total_purchased:,.3f} L, "
            f"allocated {self.total_allocated:,.3f} L, "
            f"remaining {self.total_remaining:,.3f} L, "
            f"variance {self.quantity_variance:,.3f} L)"
        )


class MonthAllocations(list):
    """Allocations of one month; carries the error when the ledger could not be read."""

    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class MonthlyValueSummary(dict):
    """month → allocated USD value; carries the error when the ledger could not be read."""

    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
