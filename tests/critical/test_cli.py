"""
Critical Path Tests: Command Line

End-to-end: seed a SQLite file, then drive allocation, audit, recovery and
reporting through main().
"""

import pytest
import pytest_asyncio
from datetime import date

from Config.config_manager import CentralConfig
from database_manager.database_session_manager import DatabaseSessionManager
from database_manager.ledger_store import SqlAlchemyLedgerStore
from main import build_parser, main


@pytest_asyncio.fixture
async def ledger_dsn(tmp_path, logger_manager, lot_factory, consumption_factory):
    dsn = f"sqlite+aiosqlite:///{tmp_path / 'fuel_ledger.db'}"
    manager = DatabaseSessionManager(dsn)
    store = SqlAlchemyLedgerStore(manager)
    await store.add_lot(lot_factory(1, date(2025, 1, 1), 3000, 3000))
    await store.add_lot(lot_factory(2, date(2025, 1, 2), 2000, 2200))
    await store.add_consumption(consumption_factory(100, date(2025, 1, 20), 4000))
    await manager.disconnect()

    CentralConfig.reset()
    yield dsn
    CentralConfig.reset()


class TestCommandLine:

    @pytest.mark.critical
    def test_recover_requires_mode(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["recover"])

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_allocate_then_report(self, ledger_dsn, capsys):
        assert await main(["--database-url", ledger_dsn, "allocate"]) == 0
        assert "FIFO allocation completed successfully!" in capsys.readouterr().out

        assert await main(["--database-url", ledger_dsn, "report"]) == 0
        assert "No data inconsistencies found" in capsys.readouterr().out

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_recover_verify_and_summary(self, ledger_dsn, capsys):
        await main(["--database-url", ledger_dsn, "allocate"])
        capsys.readouterr()

        assert await main(["--database-url", ledger_dsn, "recover", "--mode", "full"]) == 0
        assert "Data recovery completed successfully!" in capsys.readouterr().out

        assert await main(["--database-url", ledger_dsn, "verify"]) == 0
        assert "BALANCED" in capsys.readouterr().out

        assert await main(["--database-url", ledger_dsn, "summary"]) == 0
        assert "2025-01: $4,100.00" in capsys.readouterr().out

        assert await main(["--database-url", ledger_dsn, "summary", "--month", "2025-01"]) == 0
        assert "2 allocation(s) in 2025-01" in capsys.readouterr().out

    @pytest.mark.critical
    @pytest.mark.asyncio
    async def test_unreachable_database_exits_cleanly(self, ledger_dsn, capsys, monkeypatch):
        disconnected = []

        async def refuse(self):
            raise OSError("connection refused")

        async def record_disconnect(self):
            disconnected.append(True)

        monkeypatch.setattr(DatabaseSessionManager, "initialize", refuse)
        monkeypatch.setattr(DatabaseSessionManager, "disconnect", record_disconnect)

        assert await main(["--database-url", ledger_dsn, "verify"]) == 1
        assert disconnected == [True]
        assert "Cannot connect to the ledger database: connection refused" in capsys.readouterr().out
