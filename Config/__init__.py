"""
Configuration package for the fuel ledger.

Provides centralized access to constants and environment configuration.

Usage:
    from Config import constants_core as core
    print(core.SHORTFALL_TOLERANCE)

    from Config.config_manager import CentralConfig
    config = CentralConfig()
    print(config.database_url)
"""

from Config import constants_core

__all__ = [
    'constants_core',
]
