"""Health check endpoints for monitoring and deployment verification."""

import time

from fastapi import APIRouter, Response, status

from src.core.config import get_settings
from src.core.square import get_square_client
from src.core.supabase import check_database_connection
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Basic health check to verify the service is running. Used for liveness probes.",
)
async def health_check() -> HealthResponse:
    """Return basic health status without checking dependencies."""
    return HealthResponse(status=HealthStatus.HEALTHY, service=get_settings().app_name)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Readiness check",
    description="Check that the database and the Square API are reachable. Used for readiness probes.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check readiness of all dependencies.

    Verifies that webhooks can be reconciled by checking:
    - Database connectivity (Supabase)
    - Square API credentials and reachability

    Returns 503 if any dependency is unhealthy.

    Args:
        response: FastAPI response object for setting status code.

    Returns:
        ReadinessResponse: Status of all dependency checks.
    """
    checks: list[CheckResult] = []

    start_time = time.perf_counter()
    db_result = await check_database_connection()
    checks.append(
        CheckResult(
            name="database",
            healthy=db_result["healthy"],
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=db_result.get("error"),
        )
    )

    start_time = time.perf_counter()
    square_result = await get_square_client().check_connection()
    checks.append(
        CheckResult(
            name="square",
            healthy=square_result["healthy"],
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=square_result.get("error"),
        )
    )

    all_healthy = all(check.healthy for check in checks)
    if not all_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status=HealthStatus.HEALTHY if all_healthy else HealthStatus.UNHEALTHY,
        checks=checks,
    )
