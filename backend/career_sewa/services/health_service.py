"""
Career Sewa API — Health Service
==================================

What:  Produces point-in-time health verdicts from independent subsystem probes.
Why:   Orchestrators need two different answers: "is the process alive?"
       (liveness, never touches the store) and "should traffic be routed
       here?" (readiness, gated on the database). Operators need the full
       picture (detailed) and machine-readable counters (metrics).
How:   Each probe returns a HealthCheckResult. Probes run concurrently and
       are failure-isolated: an exception inside one probe becomes an
       {"status": "error"} entry for that subsystem only.

Severity model:
    critical  = {application, connection}
    warning   = {memory, cpu, environment}
    other     = {disk, dependencies}   (reported, never affect the verdict)

    any critical not healthy  → unhealthy
    else any warning not healthy → degraded
    else                         → healthy

    A strict precedence fold, not an average: one critical failure outweighs
    any number of healthy warning-level probes. Probe order never matters.

No state is kept between requests; every call probes afresh.
"""

import asyncio
import gc
import logging
import os
import platform
import shutil
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from importlib import metadata
from typing import Any, Awaitable, Callable, Dict, Iterable, Union

from career_sewa import SERVICE_NAME, __version__
from career_sewa.config import Settings
from career_sewa.database import DatabaseConnection

logger = logging.getLogger(__name__)

# Process start, for uptime reporting
_start_time = time.time()

CRITICAL_CHECKS = ("application", "connection")
WARNING_CHECKS = ("memory", "cpu", "environment")

REPORTED_DEPENDENCIES = ("fastapi", "starlette", "pydantic", "sqlalchemy", "tenacity", "uvicorn")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class HealthCheckResult:
    """Outcome of one subsystem probe."""

    name: str
    status: HealthStatus
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, **self.details}


def calculate_overall_health(results: Iterable[HealthCheckResult]) -> HealthStatus:
    """
    Fold probe results into one verdict.

    Only membership in the critical/warning sets matters; a subsystem that
    is missing from `results` counts as not healthy.
    """
    statuses = {result.name: result.status for result in results}

    if any(statuses.get(name) is not HealthStatus.HEALTHY for name in CRITICAL_CHECKS):
        return HealthStatus.UNHEALTHY
    if any(statuses.get(name) is not HealthStatus.HEALTHY for name in WARNING_CHECKS):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def uptime_seconds() -> float:
    return round(time.time() - _start_time, 3)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _max_rss_bytes() -> int:
    # `resource` is Unix-only; on other platforms the ImportError surfaces
    # as an "error" entry through the probe's failure isolation.
    import resource

    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS bytes
    return max_rss if sys.platform == "darwin" else max_rss * 1024


Probe = Callable[[], Union[HealthCheckResult, Awaitable[HealthCheckResult]]]


class HealthService:
    """
    Stateless health classifier.

    Reads from the DatabaseConnection and the running process at call time;
    it never mutates connection state.

    Args:
        settings:  Frozen application settings.
        database:  The process's DatabaseConnection.
    """

    def __init__(self, settings: Settings, database: DatabaseConnection):
        self._settings = settings
        self._database = database

    @property
    def probe_timeout(self) -> float:
        return self._settings.health_check_timeout

    # ── Liveness-style endpoints (no store access) ────────────────────────

    def basic_health(self) -> Dict[str, Any]:
        return {
            "status": "OK",
            "service": SERVICE_NAME,
            "environment": self._settings.environment,
            "uptime": uptime_seconds(),
            "timestamp": _now_iso(),
        }

    def liveness(self) -> Dict[str, Any]:
        return {"alive": True, "uptime": uptime_seconds(), "timestamp": _now_iso()}

    # ── Readiness ─────────────────────────────────────────────────────────

    async def readiness(self) -> Dict[str, Any]:
        """Ready iff the database answers a ping within the probe timeout."""
        try:
            ready = await asyncio.wait_for(
                self._database.is_healthy(), timeout=self.probe_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Readiness probe timed out after %.1fs", self.probe_timeout)
            ready = False
        return {"ready": ready, "timestamp": _now_iso()}

    # ── Detailed ──────────────────────────────────────────────────────────

    def probes(self) -> Dict[str, Probe]:
        return {
            "application": self.check_application,
            "connection": self.check_connection,
            "memory": self.check_memory,
            "cpu": self.check_cpu,
            "disk": self.check_disk,
            "environment": self.check_environment,
            "dependencies": self.check_dependencies,
        }

    async def detailed_health(self) -> Dict[str, Any]:
        """
        Run every probe and aggregate.

        Returns the response payload; `status` holds the overall verdict.
        """
        started = time.perf_counter()
        results = await asyncio.gather(
            *(self._run_probe(name, probe) for name, probe in self.probes().items())
        )
        overall = calculate_overall_health(results)
        response_ms = round((time.perf_counter() - started) * 1000)

        logger.info(
            "Detailed health check completed: %s in %dms",
            overall.value,
            response_ms,
            extra={
                "status": overall.value,
                "response_time_ms": response_ms,
                "checks": {r.name: r.status.value for r in results},
            },
        )

        return {
            "status": overall.value,
            "service": SERVICE_NAME,
            "timestamp": _now_iso(),
            "responseTime": f"{response_ms}ms",
            "checks": {r.name: r.to_dict() for r in results},
        }

    async def _run_probe(self, name: str, probe: Probe) -> HealthCheckResult:
        try:
            result = probe()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                result = await result
            return result
        except Exception as exc:
            logger.warning("Health probe '%s' failed: %s", name, exc, exc_info=True)
            return HealthCheckResult(name, HealthStatus.ERROR, {"error": str(exc)})

    # ── Probes ────────────────────────────────────────────────────────────

    def check_application(self) -> HealthCheckResult:
        return HealthCheckResult(
            "application",
            HealthStatus.HEALTHY,
            {
                "name": SERVICE_NAME,
                "version": __version__,
                "environment": self._settings.environment,
                "pythonVersion": platform.python_version(),
                "uptime": uptime_seconds(),
                "timestamp": _now_iso(),
            },
        )

    async def check_connection(self) -> HealthCheckResult:
        details = self._database.get_status().to_dict()
        started = time.perf_counter()
        try:
            healthy = await asyncio.wait_for(
                self._database.is_healthy(), timeout=self.probe_timeout
            )
        except asyncio.TimeoutError:
            healthy = False
            details["error"] = f"ping timed out after {self.probe_timeout}s"
        if healthy:
            details["responseTime"] = round((time.perf_counter() - started) * 1000, 2)
        return HealthCheckResult(
            "connection",
            HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
            details,
        )

    def check_memory(self) -> HealthCheckResult:
        max_rss = _max_rss_bytes()
        limit = self._settings.health_memory_limit_mb * 1024 * 1024
        return HealthCheckResult(
            "memory",
            HealthStatus.HEALTHY if max_rss <= limit else HealthStatus.DEGRADED,
            {
                "usage": {
                    "maxRss": f"{round(max_rss / 1024 / 1024)}MB",
                    "gcObjects": len(gc.get_objects()),
                },
                "limitMb": self._settings.health_memory_limit_mb,
                "usagePercentage": round(max_rss / limit * 100),
            },
        )

    def check_cpu(self) -> HealthCheckResult:
        times = os.times()
        load = list(os.getloadavg()) if hasattr(os, "getloadavg") else "N/A"
        return HealthCheckResult(
            "cpu",
            HealthStatus.HEALTHY,
            {
                "usage": {"user": times.user, "system": times.system},
                "loadAverage": load,
                "cpuCount": os.cpu_count(),
            },
        )

    async def check_disk(self) -> HealthCheckResult:
        if sys.platform == "win32":
            return HealthCheckResult(
                "disk",
                HealthStatus.SKIPPED,
                {"reason": "Windows platform - disk check not implemented"},
            )
        try:
            usage = await asyncio.wait_for(
                asyncio.to_thread(shutil.disk_usage, "/"), timeout=self.probe_timeout
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.warning("Disk space check failed: %s", exc)
            return HealthCheckResult(
                "disk", HealthStatus.ERROR, {"error": "Unable to check disk space"}
            )
        return HealthCheckResult(
            "disk",
            HealthStatus.HEALTHY,
            {
                "available": f"{usage.free // (1024 ** 3)}G",
                "used": f"{round(usage.used / usage.total * 100)}%",
            },
        )

    def check_environment(self) -> HealthCheckResult:
        required = {
            "ENVIRONMENT": bool(self._settings.environment),
            "PORT": bool(self._settings.port),
            "DATABASE_URL": bool(self._settings.active_database_url),
        }
        return HealthCheckResult(
            "environment",
            HealthStatus.HEALTHY if all(required.values()) else HealthStatus.UNHEALTHY,
            {
                "requiredVariables": required,
                "environment": self._settings.environment,
                "port": self._settings.port,
            },
        )

    def check_dependencies(self) -> HealthCheckResult:
        versions = {"python": platform.python_version()}
        for package in REPORTED_DEPENDENCIES:
            try:
                versions[package] = metadata.version(package)
            except metadata.PackageNotFoundError:
                versions[package] = "unknown"
        return HealthCheckResult("dependencies", HealthStatus.HEALTHY, {"versions": versions})

    # ── Metrics ───────────────────────────────────────────────────────────

    async def metrics(self) -> str:
        """Plain-text exposition of process and database gauges."""
        status = self._database.get_status()
        db_up = await self.readiness()
        try:
            max_rss = _max_rss_bytes()
        except ImportError:
            max_rss = 0

        lines = [
            "# HELP career_sewa_uptime_seconds Application uptime in seconds",
            "# TYPE career_sewa_uptime_seconds counter",
            f"career_sewa_uptime_seconds {uptime_seconds()}",
            "",
            "# HELP career_sewa_memory_usage_bytes Memory usage in bytes",
            "# TYPE career_sewa_memory_usage_bytes gauge",
            f'career_sewa_memory_usage_bytes{{type="max_rss"}} {max_rss}',
            "",
            "# HELP career_sewa_gc_objects Objects tracked by the garbage collector",
            "# TYPE career_sewa_gc_objects gauge",
            f"career_sewa_gc_objects {len(gc.get_objects())}",
            "",
            "# HELP career_sewa_database_status Database connection status (1=connected, 0=disconnected)",
            "# TYPE career_sewa_database_status gauge",
            f"career_sewa_database_status {1 if db_up['ready'] else 0}",
            "",
            "# HELP career_sewa_database_ready_state Database ready state "
            "(0=disconnected, 1=connected, 2=connecting, 3=disconnecting)",
            "# TYPE career_sewa_database_ready_state gauge",
            f"career_sewa_database_ready_state {status.state.ready_state}",
            "",
        ]
        return "\n".join(lines)
