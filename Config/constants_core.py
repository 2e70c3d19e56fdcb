"""
Core constants shared across the allocation engine and reconciliation.

These define fundamental ledger behavior and rarely change.
Runtime overrides come from CentralConfig (environment / .env).
"""
from decimal import Decimal

# ============================================================================
# Precision & Tolerances
# ============================================================================

QUANTITY_PLACES = 3
"""Liters and tons are stored with 3 decimal places"""

CURRENCY_PLACES = 2
"""Currency totals are reported with 2 decimal places"""

SHORTFALL_TOLERANCE = Decimal('0.01')
"""Outstanding consumption (L) above this after a run is reported as a shortfall"""

REMAINING_TOLERANCE = Decimal('0.001')
"""Stored vs derived remaining quantity (L) may differ by this much before it is drift"""

LITERS_PER_CUBIC_METER = Decimal('1000')
"""Density is expressed as tons per 1000 liters"""

# ============================================================================
# Defaults
# ============================================================================

DEFAULT_DATABASE_URL = 'sqlite+aiosqlite:///fuel_ledger.db'
DEFAULT_LOG_DIR = 'logs'
DEFAULT_LOG_LEVEL = 'INFO'
