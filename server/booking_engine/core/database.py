"""Datastore handle, async session management and error translation."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from .exceptions import UnavailableError

logger = logging.getLogger(__name__)

# Create declarative base for models
Base = declarative_base()

# Driver and pool failures that mean "could not reach the datastore"
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, asyncio.TimeoutError, OSError)


def _engine_options(url: str, timeout_seconds: float, echo: bool) -> dict:
    options: dict = {"echo": echo, "pool_pre_ping": True}

    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": timeout_seconds}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            # One shared connection keeps an in-memory database alive
            options["poolclass"] = StaticPool
    else:
        options["pool_timeout"] = timeout_seconds
        if "asyncpg" in url:
            options["connect_args"] = {
                "timeout": timeout_seconds,
                "command_timeout": timeout_seconds,
            }

    return options


class Database:
    """
    Explicit datastore handle.

    Owns the async engine and session factory. Components receive sessions
    from this handle through dependency injection instead of reaching for a
    module-level client, and the handle can be reopened after the process
    loses its connections.
    """

    def __init__(self, url: str, *, timeout_seconds: float = 5.0, echo: bool = False):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database handle is not open")
        return self._engine

    def open(self) -> None:
        """Create the engine and session factory. Calling it twice is a no-op."""
        if self._engine is not None:
            return

        self._engine = create_async_engine(
            self.url,
            **_engine_options(self.url, self.timeout_seconds, self.echo),
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database handle opened", extra={"dialect": self._engine.dialect.name})

    async def close(self) -> None:
        """Dispose pooled connections and drop the engine."""
        if self._engine is None:
            return

        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database handle closed")

    async def reconnect(self) -> None:
        """Throw away every pooled connection and open a fresh engine."""
        logger.info("Reconnecting database handle")
        await self.close()
        self.open()

    def session(self) -> AsyncSession:
        """Return a new session bound to this handle."""
        if self._session_factory is None:
            raise RuntimeError("Database handle is not open")
        return self._session_factory()

    async def create_all(self) -> None:
        """Create all tables known to the model metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> bool:
        """Return True if a trivial statement round-trips."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except UNAVAILABLE_ERRORS as e:
            logger.warning("Database ping failed", extra={"error": str(e)})
            return False

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that rolls back on error and always closes."""
        async with self.session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise


@asynccontextmanager
async def datastore_guard(operation: str) -> AsyncGenerator[None, None]:
    """
    Translate driver-level connectivity failures into ``UnavailableError``.

    Business exceptions and integrity violations pass through untouched so
    callers can still tell "not allowed" apart from "could not check".
    """
    try:
        yield
    except UNAVAILABLE_ERRORS as e:
        timed_out = isinstance(e, (PoolTimeoutError, asyncio.TimeoutError, TimeoutError))
        logger.error(
            "Datastore unavailable",
            extra={"operation": operation, "timed_out": timed_out, "error": str(e)},
        )
        raise UnavailableError(
            service="datastore",
            operation=operation,
            timed_out=timed_out,
        ) from e
