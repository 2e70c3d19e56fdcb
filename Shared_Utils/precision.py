from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation

from Config import constants_core


class PrecisionUtils:
    """
    Decimal handling for ledger quantities and currency amounts.

    Quantities are liters/tons (3 places); currency is reported with 2 places.
    Calculations stay at full precision and are only rounded at reporting
    boundaries through round_with_bankers().
    """

    _instance = None  # Singleton instance

    @classmethod
    def get_instance(cls, logger_manager=None):
        """ Ensures only one instance of PrecisionUtils is created. """
        if cls._instance is None:
            cls._instance = cls(logger_manager)
        return cls._instance

    def __init__(self, logger_manager=None):
        self.logger = logger_manager.get_logger('shared_logger') if logger_manager else None
        self._init_thresholds()

    def _init_thresholds(self):
        """
        Tolerances used by the engine and the reconciliation audit.

        shortfall_tolerance: outstanding consumption below this is rounding
        noise, not an inventory shortfall.
        remaining_tolerance: stored vs derived remaining quantity may differ by
        this much before it counts as drift.
        """
        self.shortfall_tolerance = constants_core.SHORTFALL_TOLERANCE
        self.remaining_tolerance = constants_core.REMAINING_TOLERANCE

    def configure(self, shortfall_tolerance: Decimal = None, remaining_tolerance: Decimal = None):
        if shortfall_tolerance is not None:
            self.shortfall_tolerance = shortfall_tolerance
        if remaining_tolerance is not None:
            self.remaining_tolerance = remaining_tolerance
        return self

    @staticmethod
    def to_decimal(value) -> Decimal:
        """
        Convert a stored or user value to Decimal.

        Floats go through str() so 0.1 stays 0.1. Unparseable values raise
        InvalidOperation rather than silently becoming zero.
        """
        if isinstance(value, Decimal):
            return value
        if value is None:
            raise InvalidOperation("cannot convert None to Decimal")
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)

    @staticmethod
    def quant_from_places(decimal_places: int) -> Decimal:
        """Return a quantizer Decimal like 1e-3 for decimal_places=3."""
        return Decimal('1').scaleb(-decimal_places)

    def round_with_bankers(self, value: Decimal, decimal_places: int) -> Decimal:
        """
        Round using banker's rounding (ROUND_HALF_EVEN).

        Rounding .5 to the nearest even digit avoids a systematic bias when
        many allocation values are summed and reported.
        """
        return self.to_decimal(value).quantize(
            self.quant_from_places(decimal_places), rounding=ROUND_HALF_EVEN
        )

    def round_currency(self, value: Decimal) -> Decimal:
        return self.round_with_bankers(value, constants_core.CURRENCY_PLACES)

    def round_quantity(self, value: Decimal) -> Decimal:
        return self.round_with_bankers(value, constants_core.QUANTITY_PLACES)

    def is_shortfall(self, outstanding: Decimal) -> bool:
        return outstanding > self.shortfall_tolerance

    def within_remaining_tolerance(self, stored: Decimal, expected: Decimal) -> bool:
        return abs(stored - expected) <= self.remaining_tolerance

    def format_quantity(self, value: Decimal) -> str:
        return f"{self.round_quantity(value):,.3f} L"

    def format_currency(self, value: Decimal) -> str:
        return f"${self.round_currency(value):,.2f}"
