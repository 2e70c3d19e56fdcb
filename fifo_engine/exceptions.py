"""
Exceptions raised inside the FIFO allocation core.

Public operations never let these escape to callers; they are caught at the
operation boundary and summarised into a result object carrying an ErrorKind.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification attached to results and findings."""

    VALIDATION_SHORTFALL = 'validation_shortfall'
    CONSISTENCY_VIOLATION = 'consistency_violation'
    CONCURRENCY_CONFLICT = 'concurrency_conflict'
    PERSISTENCE_FAILURE = 'persistence_failure'
    DIVISION_BY_ZERO = 'division_by_zero'


class FifoEngineError(Exception):
    """Base exception for the allocation core."""

    kind: Optional[ErrorKind] = None


class AllocationBusyError(FifoEngineError):
    """Raised when a run or recovery is attempted while another is in flight."""

    kind = ErrorKind.CONCURRENCY_CONFLICT

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Cannot start {operation}: another allocation or recovery is already running"
        )


class PersistenceError(FifoEngineError):
    """Raised when the atomic write phase of an invocation fails."""

    kind = ErrorKind.PERSISTENCE_FAILURE

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ValueCalculationError(FifoEngineError):
    """Raised when a lot cannot yield a unit cost (zero quantity)."""

    kind = ErrorKind.DIVISION_BY_ZERO

    def __init__(self, lot_id, reason: str = "quantity_liters is zero"):
        self.lot_id = lot_id
        super().__init__(f"Cannot compute unit cost for lot {lot_id}: {reason}")
