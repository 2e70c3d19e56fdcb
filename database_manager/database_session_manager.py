import os
import asyncio
import asyncpg

from sqlalchemy import text
from typing import Optional, Any
from contextlib import asynccontextmanager
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import OperationalError, DBAPIError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from database_manager.bootstrap_schema import ensure_ledger_schema


class _NoopLogger:
    def debug(self,*a,**k): pass
    info = debug; warning = debug; error = debug; exception = debug


def normalize_dsn(dsn: str) -> str:
    """Point postgres DSNs at asyncpg and sqlite DSNs at aiosqlite."""
    if dsn.startswith("postgres://"):
        return dsn.replace("postgres://", "postgresql+asyncpg://", 1)
    if dsn.startswith("postgresql://") and "+asyncpg" not in dsn:
        return dsn.replace("postgresql://", "postgresql+asyncpg://", 1)
    if dsn.startswith("sqlite://") and "+aiosqlite" not in dsn:
        return dsn.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return dsn


class DatabaseSessionManager:
    """Creates the async engine, yields sessions, runs a one-time schema bootstrap."""

    def __init__(self, dsn: str, logger: Optional[Any] = None, **engine_kw):
        # Logger is duck-typed (must have .debug/.info/.warning/.error/.exception)
        self.logger = logger or _NoopLogger()

        dsn = normalize_dsn(dsn)
        self.is_sqlite = dsn.startswith("sqlite")

        # Defaults (caller can override via **engine_kw)
        if self.is_sqlite:
            defaults = dict(echo=False)
            if ":memory:" in dsn or dsn.rstrip("/").endswith("sqlite+aiosqlite:"):
                # One shared connection, otherwise every session sees an empty database
                defaults.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        else:
            defaults = dict(
                echo=False,
                pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
                max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "5")),
                pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "10")),
                pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "300")),  # 5m
                pool_pre_ping=True,
                connect_args={
                    "timeout": float(os.getenv("DB_CONNECT_TIMEOUT", "5")),
                    "command_timeout": float(os.getenv("DB_COMMAND_TIMEOUT", "30")),
                    "server_settings": {
                        "application_name": os.getenv("DB_APP_NAME", "fuel_ledger"),
                        "statement_timeout": os.getenv("DB_STATEMENT_TIMEOUT_MS", "60000"),
                    },
                },
            )
        for k, v in defaults.items():
            engine_kw.setdefault(k, v)

        # Engine + session factory
        self.engine = create_async_engine(dsn, **engine_kw)
        self._async_session_factory = async_sessionmaker(
            bind=self.engine, expire_on_commit=False, class_=AsyncSession
        )

        # One-time bootstrap guards
        self._schema_lock = asyncio.Lock()
        self._schema_ready = False

        # ---------- bootstrap / session ----------

    async def _ensure_schema_once(self):
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            await ensure_ledger_schema(self.engine)
            self.logger.debug("Ledger schema ready")
            self._schema_ready = True

    @asynccontextmanager
    async def async_session(self):
        await self._ensure_schema_once()
        async with self._async_session_factory() as session:
            yield session

        # ---------- retry helper ----------

    @staticmethod
    def is_retryable_db_error(e: Exception) -> bool:
        RETRYABLE_SNIPPETS = (
            "ConnectionDoesNotExistError",
            "connection was closed",
            "server closed the connection",
            "could not receive data from server",
            "terminating connection due to administrator command",
            "Connection reset by peer",
            "transport closed",
            "database is locked",
        )
        s = str(e)
        return isinstance(e, (ConnectionError, OSError, OperationalError, DBAPIError, asyncpg.PostgresError)) \
            and any(sn in s for sn in RETRYABLE_SNIPPETS)

    # ---------- light engine warm-up ----------

    async def initialize(self) -> None:
        """Create the schema, warm the pool and verify connectivity (single retry)."""
        last_exc = None
        for attempt in (1, 2):
            try:
                async with self.async_session() as s:
                    await s.execute(text("SELECT 1"))
                return
            except (OSError, ConnectionError, OperationalError, DBAPIError, asyncpg.PostgresError) as e:
                last_exc = e
                if not self.is_retryable_db_error(e) and attempt == 1:
                    self.logger.warning("⚠️ Database warm-up failed: %s", e)
                await self.engine.dispose()
                if attempt == 1:
                    await asyncio.sleep(float(os.getenv("DB_RETRY_BACKOFF_SEC", "0.75")))
                    continue
                break
        raise last_exc  # surface the original error

    async def disconnect(self):
        """Close the SQLAlchemy database engine (optional for graceful shutdown)."""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("✅ SQLAlchemy engine disposed successfully.")
