"""Operational endpoints: liveness, readiness and service info."""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..core.clock import utcnow
from ..core.config import settings
from ..core.database import Database
from ..core.dependencies import get_database
from ..core.observability import SERVICE_NAME, SERVICE_VERSION
from ..schemas.common import HealthResponse, HealthStatus, ReadinessResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

DATABASE_DEPENDENCY = Depends(get_database)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check if the service is healthy and responsive",
)
async def health_check() -> HealthResponse:
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        timestamp=utcnow(),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness Check",
    description="Check if the service can reach its datastore",
    responses={503: {"model": ReadinessResponse}},
)
async def readiness_check(database: Database = DATABASE_DEPENDENCY) -> JSONResponse:
    """
    Readiness check endpoint that verifies the datastore connection.

    Returns 503 while the datastore cannot be reached.
    """
    database_ok = database.is_open and await database.ping()

    response = ReadinessResponse(
        status=HealthStatus.READY if database_ok else HealthStatus.NOT_READY,
        service=SERVICE_NAME,
        checks={"database": "ok" if database_ok else "unavailable"},
    )
    if not database_ok:
        logger.warning("Readiness check failed", extra={"checks": response.checks})

    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json"),
    )


@router.get(
    "/info",
    tags=["Info"],
    summary="Service Information",
    description="Get detailed information about the service",
    response_model=dict,
)
async def service_info():
    """
    Service information endpoint.

    Returns:
        dict: Detailed service information
    """
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": "Booking eligibility and reservation engine for athlete class scheduling",
        "environment": settings.environment,
        "debug": settings.debug,
        "features": {
            "authentication": True,
            "idempotency": True,
            "tracing": True,
            "problem_details": True,
            "drop_in_payments": True,
        },
        "endpoints": {
            "health": "/health",
            "readiness": "/ready",
            "info": "/info",
            "metrics": "/metrics",
            "docs": "/docs" if settings.debug else None,
        },
    }
