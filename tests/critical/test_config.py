"""
Critical Path Tests: Configuration

Environment and .env handling for tolerances and the database URL. A bad
tolerance silently changes what counts as a shortfall, so invalid values
must fail loudly.
"""

import pytest
from decimal import Decimal

from Config import constants_core
from Config.config_manager import CentralConfig
from Config.exceptions import ConfigMissingError, ConfigRangeError, ConfigTypeError

SETTINGS = (
    "DATABASE_URL",
    "LOG_LEVEL",
    "LOG_DIR",
    "SHORTFALL_TOLERANCE",
    "REMAINING_TOLERANCE",
    "DB_POOL_SIZE",
    "DB_MAX_OVERFLOW",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Unset every setting (restored afterwards, even if a .env sets it)"""
    for key in SETTINGS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    CentralConfig.reset()
    yield tmp_path / "missing.env"
    CentralConfig.reset()


class TestCentralConfig:

    @pytest.mark.critical
    def test_defaults(self, clean_env):
        config = CentralConfig(env_file=str(clean_env))

        assert config.database_url == constants_core.DEFAULT_DATABASE_URL
        assert config.log_level == "INFO"
        assert config.shortfall_tolerance == Decimal("0.01")
        assert config.remaining_tolerance == Decimal("0.001")
        assert config.engine_options() == {}

    @pytest.mark.critical
    def test_singleton(self, clean_env):
        assert CentralConfig(env_file=str(clean_env)) is CentralConfig()

    @pytest.mark.critical
    def test_environment_overrides(self, clean_env, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://ledger@db/fuel")
        monkeypatch.setenv("SHORTFALL_TOLERANCE", "0.5")
        monkeypatch.setenv("DB_POOL_SIZE", "12")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = CentralConfig(env_file=str(clean_env))

        assert config.database_url == "postgresql://ledger@db/fuel"
        assert config.shortfall_tolerance == Decimal("0.5")
        assert config.log_level == "DEBUG"
        assert config.engine_options() == {"pool_size": 12, "max_overflow": 5}

    @pytest.mark.critical
    def test_env_file_is_read(self, clean_env):
        env_file = clean_env.parent / ".env"
        env_file.write_text("REMAINING_TOLERANCE=0.05\nLOG_DIR=/var/log/fuel\n")

        config = CentralConfig(env_file=str(env_file))

        assert config.remaining_tolerance == Decimal("0.05")
        assert config.log_dir == "/var/log/fuel"

    @pytest.mark.critical
    def test_unparseable_tolerance(self, clean_env, monkeypatch):
        monkeypatch.setenv("SHORTFALL_TOLERANCE", "one cent")

        with pytest.raises(ConfigTypeError) as exc_info:
            CentralConfig(env_file=str(clean_env))

        assert exc_info.value.key == "SHORTFALL_TOLERANCE"

    @pytest.mark.critical
    @pytest.mark.parametrize("key,value", [
        ("SHORTFALL_TOLERANCE", "-0.01"),
        ("REMAINING_TOLERANCE", "2"),
        ("DB_POOL_SIZE", "0"),
    ])
    def test_out_of_range(self, clean_env, monkeypatch, key, value):
        monkeypatch.setenv(key, value)

        with pytest.raises(ConfigRangeError) as exc_info:
            CentralConfig(env_file=str(clean_env))

        assert exc_info.value.suggestion is not None

    @pytest.mark.critical
    def test_blank_database_url(self, clean_env, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "   ")

        with pytest.raises(ConfigMissingError):
            CentralConfig(env_file=str(clean_env))
