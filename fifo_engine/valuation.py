"""
Per-unit cost and allocation value shares for purchase lots.
"""

from decimal import Decimal
from typing import Optional

from Config import constants_core
from Shared_Utils.precision import PrecisionUtils
from .exceptions import ValueCalculationError
from .models import PurchaseLot


class ValueCalculator:
    """
    Converts a lot's total value into a per-liter cost and values allocations.

    Allocation values are returned at full Decimal precision. Only
    round_currency() quantizes, and callers use it for totals and summaries,
    never for individual allocations, so rounding error does not compound
    across many small allocations.
    """

    def __init__(self, precision_utils: Optional[PrecisionUtils] = None):
        self.precision = precision_utils or PrecisionUtils()

    def unit_cost(self, lot: PurchaseLot) -> Decimal:
        """USD cost per liter."""
        return self._per_liter(lot, lot.total_value_usd)

    def unit_cost_native(self, lot: PurchaseLot) -> Decimal:
        """Supplier-currency cost per liter."""
        return self._per_liter(lot, lot.total_value)

    def allocated_value(self, lot: PurchaseLot, quantity: Decimal) -> Decimal:
        return self.unit_cost(lot) * quantity

    def allocated_value_native(self, lot: PurchaseLot, quantity: Decimal) -> Decimal:
        return self.unit_cost_native(lot) * quantity

    def is_valuable(self, lot: PurchaseLot) -> bool:
        """Lots without liters cannot be valued and are not eligible for allocation."""
        return self.precision.to_decimal(lot.quantity_liters) > 0

    def to_tons(self, lot: PurchaseLot, liters: Decimal) -> Decimal:
        return liters / constants_core.LITERS_PER_CUBIC_METER * lot.density

    def round_currency(self, value: Decimal) -> Decimal:
        return self.precision.round_currency(value)

    def _per_liter(self, lot: PurchaseLot, total: Decimal) -> Decimal:
        liters = self.precision.to_decimal(lot.quantity_liters)
        if liters == 0:
            raise ValueCalculationError(lot.id)
        return self.precision.to_decimal(total) / liters
