import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from Config import constants_core
from Config.exceptions import ConfigMissingError, ConfigRangeError, ConfigTypeError


class CentralConfig:
    """Centralized configuration shared by the engine, reconciliation and CLI."""
    _instance = None  # Singleton instance
    _is_loaded = False

    def __new__(cls, env_file: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super(CentralConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self, env_file: Optional[str] = None):
        if not self._is_loaded:
            self._initialize_default_values()
            self._load_configuration(env_file)
            self._is_loaded = True

    @classmethod
    def reset(cls):
        """Drop the singleton so the next instantiation re-reads the environment."""
        cls._instance = None
        cls._is_loaded = False

    def _initialize_default_values(self):
        """Set default values for all configuration attributes."""
        self._database_url = constants_core.DEFAULT_DATABASE_URL
        self._log_level = constants_core.DEFAULT_LOG_LEVEL
        self._log_dir = constants_core.DEFAULT_LOG_DIR
        self._shortfall_tolerance = constants_core.SHORTFALL_TOLERANCE
        self._remaining_tolerance = constants_core.REMAINING_TOLERANCE
        self._db_pool_size = 5
        self._db_max_overflow = 5

    def _load_configuration(self, env_file: Optional[str]):
        """Load configuration from a .env file, then environment variables."""
        self.load_dotenv_settings(env_file)
        self._load_environment_variables()

    @staticmethod
    def load_dotenv_settings(env_file: Optional[str] = None):
        env_path = Path(env_file) if env_file else Path(__file__).resolve().parent.parent / '.env'
        if env_path.exists():
            # Real environment variables win over the file
            load_dotenv(dotenv_path=env_path, override=False)

    def _load_environment_variables(self):
        url = os.getenv("DATABASE_URL")
        if url is not None:
            if not url.strip():
                raise ConfigMissingError("DATABASE_URL", "environment or .env")
            self._database_url = url.strip()

        self._log_level = os.getenv("LOG_LEVEL", self._log_level).upper()
        self._log_dir = os.getenv("LOG_DIR", self._log_dir)

        self._shortfall_tolerance = self._decimal_setting(
            "SHORTFALL_TOLERANCE", self._shortfall_tolerance, Decimal('0'), Decimal('1'))
        self._remaining_tolerance = self._decimal_setting(
            "REMAINING_TOLERANCE", self._remaining_tolerance, Decimal('0'), Decimal('1'))
        self._db_pool_size = self._int_setting("DB_POOL_SIZE", self._db_pool_size, 1, 100)
        self._db_max_overflow = self._int_setting("DB_MAX_OVERFLOW", self._db_max_overflow, 0, 100)

    @staticmethod
    def _decimal_setting(key: str, default: Decimal, min_val: Decimal, max_val: Decimal) -> Decimal:
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            value = Decimal(raw)
        except InvalidOperation:
            raise ConfigTypeError(key, raw, Decimal)
        if value < min_val or value > max_val:
            raise ConfigRangeError(key, value, min_val, max_val)
        return value

    @staticmethod
    def _int_setting(key: str, default: int, min_val: int, max_val: int) -> int:
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ConfigTypeError(key, raw, int)
        if value < min_val or value > max_val:
            raise ConfigRangeError(key, value, min_val, max_val)
        return value

    @property
    def database_url(self) -> str:
        return self._database_url

    @property
    def log_level(self) -> str:
        return self._log_level

    @property
    def log_dir(self) -> str:
        return self._log_dir

    @property
    def shortfall_tolerance(self) -> Decimal:
        return self._shortfall_tolerance

    @property
    def remaining_tolerance(self) -> Decimal:
        return self._remaining_tolerance

    @property
    def db_pool_size(self) -> int:
        return self._db_pool_size

    @property
    def db_max_overflow(self) -> int:
        return self._db_max_overflow

    def engine_options(self) -> dict:
        """Keyword arguments for DatabaseSessionManager."""
        if self._database_url.startswith("sqlite"):
            return {}
        return dict(pool_size=self._db_pool_size, max_overflow=self._db_max_overflow)
