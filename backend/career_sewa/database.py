"""
Career Sewa API — Database Connection Lifecycle
=================================================

What:  Owns the single logical connection to the backing store: connect with
       bounded retries, track connection state, answer health probes, and
       shut the pool down cleanly.
Why:   Every request path depends on the store; keeping connection handling
       in one object gives the health endpoints one source of truth and keeps
       retry/backoff policy out of route code.
How:   An async SQLAlchemy engine per successful connect. Tenacity drives the
       retry loop. SQLAlchemy pool/engine events feed state changes that
       happen outside our own calls (a dropped socket, a failed pre-ping).
Who:   Constructed once by the application factory and stored on app.state;
       route dependencies and the HealthService receive it from there.

State machine:
    DISCONNECTED --connect()--> CONNECTING --success--> CONNECTED
    CONNECTING --failure, retries left--> CONNECTING (after backoff)
    CONNECTING --retries exhausted--> DISCONNECTED + terminal failure
    CONNECTED --driver reports drop--> DISCONNECTED
    CONNECTED --disconnect()--> DISCONNECTING --> DISCONNECTED

Backoff (defaults):
    attempt 1 fails → wait 5s
    attempt 2 fails → wait 7.5s
    attempt 3 fails → wait 11.25s
    attempt 4 fails → wait 16.875s
    attempt 5 fails → wait 25.3125s
    attempt 6 fails → give up (terminate in production, raise otherwise)
"""

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Tuple

from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from career_sewa.config import Settings
from career_sewa.exceptions import DatabaseConnectionError, DatabaseDisconnectionError

logger = logging.getLogger(__name__)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    setup_indexes() creates every table registered on this metadata.
    """
    pass


# ══════════════════════════════════════════════════════════════════════════
# Connection types
# ══════════════════════════════════════════════════════════════════════════


class ConnectionState(str, Enum):
    """Exactly one of these is current at any instant."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTING = "disconnecting"

    @property
    def ready_state(self) -> int:
        """Numeric code exported by /health/metrics."""
        return _READY_STATES[self]


_READY_STATES = {
    ConnectionState.DISCONNECTED: 0,
    ConnectionState.CONNECTED: 1,
    ConnectionState.CONNECTING: 2,
    ConnectionState.DISCONNECTING: 3,
}


class FailurePolicy(str, Enum):
    """What connect() does once retries are exhausted."""

    TERMINATE = "terminate"  # raise SystemExit(1): no degraded mode without a store
    PROPAGATE = "propagate"  # raise DatabaseConnectionError to the caller


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff for connect().

    `attempt` counts failed attempts of the current connect() run; it is
    reset to 0 by every successful connect.
    """

    max_attempts: int = 5
    base_delay: float = 5.0
    backoff_multiplier: float = 1.5
    attempt: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.db_max_retries,
            base_delay=settings.db_retry_delay,
            backoff_multiplier=settings.db_retry_backoff,
        )

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry number `retry_number` (1-based)."""
        return self.base_delay * self.backoff_multiplier ** (retry_number - 1)

    @property
    def exhausted(self) -> bool:
        return self.attempt > self.max_attempts


@dataclass(frozen=True)
class ConnectionStatus:
    """Read-only snapshot derived from the current ConnectionState."""

    state: ConnectionState
    host: Optional[str]
    port: Optional[int]
    database_name: Optional[str]
    is_connected: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "readyState": self.state.ready_state,
            "host": self.host,
            "port": self.port,
            "databaseName": self.database_name,
            "isConnected": self.is_connected,
        }


# ── Helpers ───────────────────────────────────────────────────────────────

_CREDENTIALS = re.compile(r"//([^:/@]+):([^@]+)@")


def mask_connection_string(url: Optional[str]) -> str:
    """
    Replace the password in a connection URL before it reaches a log line.

    >>> mask_connection_string("postgresql+asyncpg://app:s3cret@db:5432/app")
    'postgresql+asyncpg://app:***@db:5432/app'
    """
    if not url:
        return "undefined"
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return _CREDENTIALS.sub(r"//\1:***@", url)


def _parse_target(url: str) -> Tuple[Optional[str], Optional[int], Optional[str]]:
    try:
        parsed = make_url(url)
    except ArgumentError:
        return None, None, None
    return parsed.host, parsed.port, parsed.database


# ══════════════════════════════════════════════════════════════════════════
# Connection Lifecycle Manager
# ══════════════════════════════════════════════════════════════════════════


class DatabaseConnection:
    """
    Supervises the one connection pool the process talks to.

    Concurrency:
        connect() and disconnect() are serialized by an asyncio.Lock, so two
        callers racing on connect() produce one connection attempt; the second
        caller finds the state CONNECTED and returns. get_status() never
        suspends. is_healthy() only suspends on its own bounded ping.

    Driver events:
        After a successful connect the manager subscribes to the engine:
        pool "connect"        → a new DBAPI connection was opened
        pool "invalidate"     → a pooled connection was found dead
        engine "handle_error" → a statement failed with a disconnect error
        Handlers only ever update the manager's own state.
        With auto_reconnect on, a drop starts a background task that keeps
        running connect rounds, sleeping db_reconnect_cooldown between
        exhausted rounds, until connected or disconnect() cancels it.

    Args:
        settings:        Frozen application settings.
        failure_policy:  TERMINATE or PROPAGATE once retries are exhausted.
        engine_factory:  Builds the engine; create_async_engine by default.
        sleep:           Awaitable sleep used between retries.
        auto_reconnect:  Overrides settings.db_auto_reconnect.
    """

    def __init__(
        self,
        settings: Settings,
        failure_policy: FailurePolicy = FailurePolicy.PROPAGATE,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        auto_reconnect: Optional[bool] = None,
    ):
        self._settings = settings
        self._url = settings.active_database_url
        self._failure_policy = failure_policy
        self._engine_factory = engine_factory
        self._sleep = sleep
        self._auto_reconnect = (
            settings.db_auto_reconnect if auto_reconnect is None else auto_reconnect
        )
        self.retry_policy = RetryPolicy.from_settings(settings)

        self._host, self._port, self._database_name = _parse_target(self._url)
        self._state = ConnectionState.DISCONNECTED
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._listeners: List[Tuple[Any, str, Callable[..., None]]] = []
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # ── Read-only views ───────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def masked_url(self) -> str:
        return mask_connection_string(self._url)

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        """Session factory bound to the live engine; 503 when not connected."""
        if self._session_factory is None or self._state is not ConnectionState.CONNECTED:
            raise DatabaseConnectionError(
                "Database is not connected",
                context={"state": self._state.value},
            )
        return self._session_factory

    def get_status(self) -> ConnectionStatus:
        """Pure read of the last known state. No I/O."""
        return ConnectionStatus(
            state=self._state,
            host=self._host,
            port=self._port,
            database_name=self._database_name,
            is_connected=self._state is ConnectionState.CONNECTED,
        )

    # ── connect ───────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Open the connection, retrying with exponential backoff.

        Idempotent: returns immediately when already CONNECTED.

        Raises:
            DatabaseConnectionError: retries exhausted under PROPAGATE.
            SystemExit: retries exhausted under TERMINATE.
        """
        await self._connect(self._failure_policy)

    async def _connect(self, failure_policy: FailurePolicy) -> None:
        async with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return

            self._loop = asyncio.get_running_loop()
            self.retry_policy.attempt = 0
            self._set_state(ConnectionState.CONNECTING)
            logger.info(
                "Attempting to connect to database...",
                extra={
                    "uri": self.masked_url,
                    "environment": self._settings.environment,
                    "max_retries": self.retry_policy.max_attempts,
                },
            )

            try:
                async for attempt in self._retrying():
                    with attempt:
                        await self._open()
            except Exception as exc:
                self._set_state(ConnectionState.DISCONNECTED)
                self._give_up(exc, failure_policy)
            except BaseException:
                # Cancelled mid-attempt: never leave the state at CONNECTING
                self._set_state(ConnectionState.DISCONNECTED)
                raise

            self.retry_policy.attempt = 0
            self._attach_listeners(self._engine)
            self._set_state(ConnectionState.CONNECTED)
            logger.info(
                "Successfully connected to database",
                extra={"uri": self.masked_url, "environment": self._settings.environment},
            )

    def _retrying(self) -> AsyncRetrying:
        policy = self.retry_policy
        return AsyncRetrying(
            retry=retry_if_exception_type(Exception),
            stop=stop_after_attempt(policy.max_attempts + 1),
            wait=wait_exponential(
                multiplier=policy.base_delay,
                exp_base=policy.backoff_multiplier,
                min=0,
            ),
            after=self._after_failed_attempt,
            before_sleep=self._before_retry_sleep,
            sleep=self._sleep,
            reraise=True,
        )

    def _after_failed_attempt(self, retry_state: RetryCallState) -> None:
        self.retry_policy.attempt = retry_state.attempt_number
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.error(
            "Failed to connect to database: %s",
            exc,
            extra={
                "uri": self.masked_url,
                "attempt": retry_state.attempt_number,
                "error_type": type(exc).__name__,
            },
        )

    def _before_retry_sleep(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Retrying database connection in %.2f seconds... (retry %d/%d)",
            delay,
            self.retry_policy.attempt,
            self.retry_policy.max_attempts,
            extra={"attempt": self.retry_policy.attempt, "delay": delay},
        )

    def _give_up(self, exc: Exception, failure_policy: FailurePolicy) -> None:
        logger.error(
            "Maximum connection retries exceeded. Unable to connect to database",
            extra={
                "uri": self.masked_url,
                "max_retries": self.retry_policy.max_attempts,
                "attempts": self.retry_policy.attempt,
                "error": str(exc),
            },
        )
        if failure_policy is FailurePolicy.TERMINATE:
            raise SystemExit(1) from exc
        raise DatabaseConnectionError(
            context={"uri": self.masked_url, "attempts": self.retry_policy.attempt},
        ) from exc

    async def _open(self) -> None:
        """One connection attempt: fresh engine, bounded round trip."""
        await self._release_engine()
        engine = self._engine_factory(self._url, **self._engine_options())
        try:
            await asyncio.wait_for(
                self._ping(engine), timeout=self._settings.db_connect_timeout
            )
        except BaseException:
            await engine.dispose()
            raise
        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _engine_options(self) -> Dict[str, Any]:
        s = self._settings
        options: Dict[str, Any] = {
            "pool_pre_ping": s.db_pool_pre_ping,
            "echo": s.log_level == "DEBUG",
        }
        try:
            url = make_url(self._url)
        except ArgumentError:
            return options
        # SQLite manages its own pool; sizing arguments are rejected there
        if url.get_backend_name() != "sqlite":
            options.update(
                pool_size=s.db_pool_size,
                max_overflow=s.db_max_overflow,
                pool_timeout=s.db_pool_timeout,
                pool_recycle=s.db_pool_recycle,
            )
        if url.get_driver_name() == "asyncpg":
            options["connect_args"] = {
                "timeout": s.db_connect_timeout,
                "command_timeout": s.db_command_timeout,
            }
        return options

    @staticmethod
    async def _ping(engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    # ── disconnect ────────────────────────────────────────────────────────

    async def disconnect(self) -> None:
        """
        Close the pool. No-op unless CONNECTED.

        Raises:
            DatabaseDisconnectionError: the pool failed to close. The state
            stays CONNECTED because closure was never confirmed.
        """
        await self._cancel_reconnect()
        async with self._lock:
            if self._state is not ConnectionState.CONNECTED:
                # A driver-reported drop can leave a pool behind
                await self._release_engine()
                return

            self._set_state(ConnectionState.DISCONNECTING)
            try:
                await self._engine.dispose()
            except Exception as exc:
                self._set_state(ConnectionState.CONNECTED)
                logger.error(
                    "Error disconnecting from database: %s", exc, exc_info=True
                )
                raise DatabaseDisconnectionError(context={"error": str(exc)}) from exc

            self._detach_listeners()
            self._engine = None
            self._session_factory = None
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from database", extra={"uri": self.masked_url})

    async def _release_engine(self) -> None:
        engine = self._engine
        if engine is None:
            return
        self._detach_listeners()
        self._engine = None
        self._session_factory = None
        await engine.dispose()

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ── health ────────────────────────────────────────────────────────────

    async def is_healthy(self) -> bool:
        """
        True only if CONNECTED and a ping succeeds within the health timeout.

        Never raises; any probe failure is reported as False. When not
        CONNECTED no ping is attempted.
        """
        engine = self._engine
        if self._state is not ConnectionState.CONNECTED or engine is None:
            return False
        try:
            await asyncio.wait_for(
                self._ping(engine), timeout=self._settings.health_check_timeout
            )
        except Exception as exc:
            logger.error(
                "Database health check failed: %s",
                exc or type(exc).__name__,
                extra={"error_type": type(exc).__name__},
            )
            return False
        return True

    # ── schema ────────────────────────────────────────────────────────────

    async def setup_indexes(self) -> None:
        """
        Create declared tables and indexes once after connect.

        Failures propagate: startup must not continue with a half-built schema.
        """
        if self._engine is None or self._state is not ConnectionState.CONNECTED:
            raise DatabaseConnectionError("Cannot set up indexes without a database connection")

        # Registers the ORM tables on Base.metadata
        from career_sewa.models import user  # noqa: F401

        logger.info("Setting up database indexes...")
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as exc:
            logger.error("Error setting up database indexes: %s", exc, exc_info=True)
            raise
        logger.info(
            "Database indexes setup completed",
            extra={"tables": sorted(Base.metadata.tables)},
        )

    # ── driver events ─────────────────────────────────────────────────────

    def _attach_listeners(self, engine: AsyncEngine) -> None:
        sync_engine = engine.sync_engine

        def on_connect(dbapi_connection, connection_record):
            self._on_driver_event("connected")

        def on_invalidate(dbapi_connection, connection_record, exception):
            self._on_driver_event("disconnected", exception)

        def on_handle_error(context):
            if context.is_disconnect:
                self._on_driver_event("error", context.original_exception)

        self._listeners = [
            (sync_engine, "connect", on_connect),
            (sync_engine, "invalidate", on_invalidate),
            (sync_engine, "handle_error", on_handle_error),
        ]
        for target, identifier, fn in self._listeners:
            event.listen(target, identifier, fn)

    def _detach_listeners(self) -> None:
        for target, identifier, fn in self._listeners:
            if event.contains(target, identifier, fn):
                event.remove(target, identifier, fn)
        self._listeners = []

    def _on_driver_event(self, kind: str, error: Optional[BaseException] = None) -> None:
        """
        Apply a driver-reported change. Our own connect/disconnect calls own
        the CONNECTING and DISCONNECTING states, so events are ignored there.
        """
        if kind == "connected":
            if self._state is ConnectionState.DISCONNECTED and self._engine is not None:
                self._set_state(ConnectionState.CONNECTED)
                logger.info("Database driver re-established a connection")
            return

        if self._state is not ConnectionState.CONNECTED:
            return

        self._set_state(ConnectionState.DISCONNECTED)
        if kind == "error":
            logger.error("Database connection error: %s", error)
        else:
            logger.warning("Database connection dropped: %s", error or "invalidated")

        if self._auto_reconnect:
            self._request_reconnect()

    def _request_reconnect(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._start_reconnect_task)

    def _start_reconnect_task(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = self._loop.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        """Reconnect until connected, pausing between exhausted retry rounds."""
        cooldown = self._settings.db_reconnect_cooldown
        while True:
            logger.info("Starting background reconnection", extra={"uri": self.masked_url})
            try:
                # Background runs never terminate the process
                await self._connect(FailurePolicy.PROPAGATE)
                return
            except DatabaseConnectionError:
                logger.error(
                    "Background reconnection failed; trying again in %.2f seconds",
                    cooldown,
                    extra={"uri": self.masked_url, "delay": cooldown},
                )
            await self._sleep(cooldown)

    # ── internals ─────────────────────────────────────────────────────────

    def _set_state(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info(
            "Database connection state: %s -> %s",
            old_state.value,
            new_state.value,
            extra={"uri": self.masked_url},
        )


# ══════════════════════════════════════════════════════════════════════════
# FastAPI dependencies
# ══════════════════════════════════════════════════════════════════════════


def get_database(request: Request) -> DatabaseConnection:
    """Returns the manager built by the application factory."""
    return request.app.state.database


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Commits on success, rolls back on any error, always closes. Raises
    DatabaseConnectionError (503) while the manager is not connected.
    """
    factory = get_database(request).session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
