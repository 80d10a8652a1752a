"""
Career Sewa API — Health Check Routes
=======================================

What:  Health endpoints for orchestrators, load balancers and dashboards.
Why:   Liveness and readiness answer different questions. A process whose
       database is down is still alive (restarting it will not help) but
       should not receive traffic.
How:   Thin handlers over HealthService; every JSON body uses the standard
       response envelope.
Who:   Called by container health checks, Kubernetes probes and scrapers.

Status codes:
    GET /health             200 always (process is serving)
    GET /health/detailed    200 healthy, 207 degraded/unhealthy, 500 on failure
    GET /health/liveness    200 always
    GET /health/readiness   200 ready, 503 not ready
    GET /health/metrics     200 text/plain
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from career_sewa.exceptions import InternalServerError
from career_sewa.schemas.response import APIResponse
from career_sewa.services.health_service import HealthService, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

# Multi-Status: the body carries per-subsystem results that need inspection
HTTP_MULTI_STATUS = 207


def get_health_service(request: Request) -> HealthService:
    """Returns the HealthService built by the application factory."""
    return request.app.state.health_service


@router.get("", summary="Basic health check")
async def health_check(
    health: HealthService = Depends(get_health_service),
) -> JSONResponse:
    return APIResponse.ok(health.basic_health(), "Service is healthy").to_response()


@router.get(
    "/detailed",
    summary="Detailed health check",
    description=(
        "Probes every subsystem independently and folds the results into one "
        "verdict. Returns 207 when any subsystem needs attention."
    ),
)
async def detailed_health_check(
    health: HealthService = Depends(get_health_service),
) -> JSONResponse:
    """
    Full diagnostic.

    Individual probe failures are already isolated inside the service; an
    exception reaching this handler means the classifier itself broke.
    """
    try:
        report = await health.detailed_health()
    except Exception as exc:
        logger.error("Health check failed: %s", exc, exc_info=True)
        raise InternalServerError("Health check failed") from exc

    healthy = report["status"] == HealthStatus.HEALTHY.value
    return APIResponse.ok(
        report,
        "Detailed health check completed",
        status_code=200 if healthy else HTTP_MULTI_STATUS,
    ).to_response()


@router.get("/liveness", summary="Liveness probe")
async def liveness_probe(
    health: HealthService = Depends(get_health_service),
) -> JSONResponse:
    return APIResponse.ok(health.liveness(), "Service is alive").to_response()


@router.get("/readiness", summary="Readiness probe")
async def readiness_probe(
    health: HealthService = Depends(get_health_service),
) -> JSONResponse:
    result = await health.readiness()
    if not result["ready"]:
        return APIResponse.service_unavailable("Service is not ready", result).to_response()
    return APIResponse.ok(result, "Service is ready").to_response()


@router.get("/metrics", summary="Plain-text metrics", response_class=PlainTextResponse)
async def metrics(
    health: HealthService = Depends(get_health_service),
) -> PlainTextResponse:
    return PlainTextResponse(await health.metrics())
