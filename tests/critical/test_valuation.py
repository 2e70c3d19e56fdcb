"""
Critical Path Tests: Lot Valuation & Precision

Per-liter costs and rounding rules behind every allocated value.

Priority: 🔴 CRITICAL (cost accuracy)
"""

import pytest
from decimal import Decimal, InvalidOperation
from datetime import date

from fifo_engine import ErrorKind, ValueCalculationError, ValueCalculator


@pytest.fixture
def calculator(precision):
    return ValueCalculator(precision)


class TestValueCalculator:

    @pytest.mark.critical
    def test_unit_cost_usd_and_native(self, calculator, lot_factory):
        lot = lot_factory(1, date(2025, 1, 1), 2000, 2200, value=2000000)

        assert calculator.unit_cost(lot) == Decimal("1.1")
        assert calculator.unit_cost_native(lot) == Decimal("1000")

    @pytest.mark.critical
    def test_allocated_value_keeps_full_precision(self, calculator, lot_factory):
        """
        Test: $1000 for 3000 L is $0.333.../L

        Then: 1 L is worth 0.3333... unrounded
        And: Three such allocations still sum to ~$1.00 after rounding
        """
        lot = lot_factory(1, date(2025, 1, 1), 3000, 1000)

        value = calculator.allocated_value(lot, Decimal("1"))

        assert value != calculator.round_currency(value)
        assert calculator.round_currency(value * 3) == Decimal("1.00")

    @pytest.mark.critical
    def test_zero_liters_raises_division_by_zero(self, calculator, lot_factory):
        lot = lot_factory(9, date(2025, 1, 1), 0, 500)

        with pytest.raises(ValueCalculationError) as exc_info:
            calculator.unit_cost(lot)

        assert exc_info.value.kind == ErrorKind.DIVISION_BY_ZERO
        assert exc_info.value.lot_id == 9
        assert not calculator.is_valuable(lot)

    @pytest.mark.critical
    def test_tons_from_density(self, calculator, lot_factory):
        lot = lot_factory(1, date(2025, 1, 1), 1000, 1000, tons="0.85")

        assert lot.density == Decimal("0.85")
        assert calculator.to_tons(lot, Decimal("500")) == Decimal("0.425")


class TestPrecision:

    @pytest.mark.critical
    @pytest.mark.parametrize("raw,expected", [
        ("2.345", "2.34"),
        ("2.355", "2.36"),
        ("2.3450001", "2.35"),
        ("-1.005", "-1.00"),
    ])
    def test_currency_uses_bankers_rounding(self, precision, raw, expected):
        assert precision.round_currency(Decimal(raw)) == Decimal(expected)

    @pytest.mark.critical
    def test_float_conversion_goes_through_str(self, precision):
        assert precision.to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.critical
    def test_missing_value_raises_instead_of_defaulting(self, precision):
        with pytest.raises(InvalidOperation):
            precision.to_decimal(None)

    @pytest.mark.critical
    def test_tolerances(self, precision):
        assert not precision.is_shortfall(Decimal("0.01"))
        assert precision.is_shortfall(Decimal("0.011"))
        assert precision.within_remaining_tolerance(Decimal("10.001"), Decimal("10"))
        assert not precision.within_remaining_tolerance(Decimal("10.002"), Decimal("10"))

    @pytest.mark.critical
    def test_configure_overrides_tolerances(self, precision):
        precision.configure(shortfall_tolerance=Decimal("5"))

        assert not precision.is_shortfall(Decimal("4.99"))
        assert precision.remaining_tolerance == Decimal("0.001")

    @pytest.mark.critical
    def test_formatting(self, precision):
        assert precision.format_quantity(Decimal("1234.5")) == "1,234.500 L"
        assert precision.format_currency(Decimal("1100.005")) == "$1,100.00"
