"""
Career Sewa API — FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
Why:   The composition root: the one place where the DatabaseConnection and
       the HealthService are constructed and wired together.
How:   create_app() returns a configured FastAPI instance; the lifespan
       connects on startup and disconnects on shutdown.
Who:   uvicorn (`uvicorn career_sewa.main:app`), `python -m career_sewa`,
       and the test suite (which passes its own settings and manager).

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐  │
    │  │  Rate Limit  │→│ Req ID   │→│  Logging        │  │
    │  └──────────────┘ └──────────┘ └─────────────────┘  │
    │                                                     │
    │  Routes:                                            │
    │  ┌──────────────┐ ┌───────────────────────────────┐ │
    │  │ /api/users   │ │ /health[/detailed|liveness|   │ │
    │  │              │ │          readiness|metrics]   │ │
    │  └──────────────┘ └───────────────────────────────┘ │
    │                                                     │
    │  app.state.database        DatabaseConnection       │
    │  app.state.health_service  HealthService            │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Validate configuration (abort in production on dev secrets)
    3. Install the event-loop exception handler
    4. Connect to the database (retries with backoff)
    5. Create tables and indexes

    Shutdown (uvicorn turns SIGINT/SIGTERM into lifespan shutdown):
    1. Disconnect from the database; failures are logged, not raised
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from career_sewa import SERVICE_NAME, __version__
from career_sewa.config import Settings, settings as default_settings
from career_sewa.database import DatabaseConnection, FailurePolicy
from career_sewa.error_handlers import register_exception_handlers
from career_sewa.exceptions import DatabaseDisconnectionError
from career_sewa.middleware.logging import RequestLoggingMiddleware
from career_sewa.middleware.rate_limit import RateLimitMiddleware
from career_sewa.middleware.request_id import RequestIDMiddleware, request_id_var
from career_sewa.routes import health, users
from career_sewa.services.health_service import HealthService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

# Attributes every LogRecord has; anything else arrived through `extra=`
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with `extra=` metadata as top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        event: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = request_id_var.get("")
        if rid:
            event["request_id"] = rid
        for key, value in vars(record).items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                event[key] = value
        if record.exc_info:
            event["stack"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


def setup_logging(settings: Settings) -> None:
    """
    Configure the root logger once.

    Text:  %(asctime)s [%(levelname)s] %(name)s: %(message)s
    JSON:  JsonFormatter (LOG_FORMAT=json), for log shippers
    """
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncpg"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    """Unhandled errors in background tasks end up here instead of stderr."""
    exc = context.get("exception")
    logger.error(
        "Unhandled exception in background task: %s",
        context.get("message", "unknown error"),
        exc_info=(type(exc), exc, exc.__traceback__) if exc else None,
        extra={"task": repr(context.get("task") or context.get("future"))},
    )


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    database: DatabaseConnection = app.state.database

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("%s %s starting up (%s)", SERVICE_NAME, __version__, settings.environment)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise

    asyncio.get_running_loop().set_exception_handler(_handle_loop_exception)

    await database.connect()
    await database.setup_indexes()

    logger.info("Server ready at http://%s:%d", settings.host, settings.port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("%s shutting down...", SERVICE_NAME)
    try:
        await database.disconnect()
    except DatabaseDisconnectionError as e:
        logger.error("Error during graceful shutdown: %s", e.message)
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[DatabaseConnection] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings:  Defaults to the process-wide settings from career_sewa.config.
        database:  Defaults to a DatabaseConnection that terminates the
                   process on exhausted retries in production and raises
                   everywhere else.
    """
    settings = settings or default_settings
    if database is None:
        policy = FailurePolicy.TERMINATE if settings.is_production else FailurePolicy.PROPAGATE
        database = DatabaseConnection(settings, failure_policy=policy)

    app = FastAPI(
        title="Career Sewa API",
        description="Career Sewa backend: user accounts and operational health endpoints.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.health_service = HealthService(settings, database)

    # ── Register Middleware ───────────────────────────────────────────────
    # Executes in reverse order of addition: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware, settings=settings)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app, settings)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(users.router)

    return app


# uvicorn expects `career_sewa.main:app` to be importable
app = create_app()
