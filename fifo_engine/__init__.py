"""
FIFO Allocation Engine

This package attributes vessel fuel consumption to purchase lots using
First-In-First-Out matching, and audits/repairs the resulting ledger.

Key Components:
- AllocationEngine: Matches consumption to the oldest lots with balance
- ReconciliationService: Detects ledger drift and repairs it
- ValueCalculator: Per-liter cost and allocation values
- LedgerStore: Unit-of-work access to lots, consumption and allocations

Architecture:
- Lots and consumption records are facts entered upstream
- Allocations are derived from them and can be rebuilt at any time
- Remaining quantities are always re-derivable from the allocations
- Every invocation commits as one unit of work or not at all

Usage:
    from fifo_engine import AllocationEngine, RunScope

    engine = AllocationEngine(ledger_store, logger_manager)
    result = await engine.run(RunScope.UNALLOCATED)
"""

from .engine import AllocationEngine
from .reconciliation import ReconciliationService
from .valuation import ValueCalculator
from .ledger import LedgerStore, LedgerUnitOfWork, InMemoryLedgerStore
from .exceptions import (
    ErrorKind,
    FifoEngineError,
    AllocationBusyError,
    PersistenceError,
    ValueCalculationError,
)
from .models import (
    Allocation,
    BalanceVerification,
    ConsumptionRecord,
    Finding,
    FindingKind,
    InconsistencyReport,
    MonthAllocations,
    MonthlyValueSummary,
    PurchaseLot,
    RecoveryMode,
    RecoveryResult,
    RecoveryState,
    RunResult,
    RunScope,
    RunState,
)

__all__ = [
    'AllocationEngine',
    'ReconciliationService',
    'ValueCalculator',
    'LedgerStore',
    'LedgerUnitOfWork',
    'InMemoryLedgerStore',
    'ErrorKind',
    'FifoEngineError',
    'AllocationBusyError',
    'PersistenceError',
    'ValueCalculationError',
    'Allocation',
    'BalanceVerification',
    'ConsumptionRecord',
    'Finding',
    'FindingKind',
    'InconsistencyReport',
    'MonthAllocations',
    'MonthlyValueSummary',
    'PurchaseLot',
    'RecoveryMode',
    'RecoveryResult',
    'RecoveryState',
    'RunResult',
    'RunScope',
    'RunState',
]

__version__ = '1.0.0'
