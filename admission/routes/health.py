"""Health check endpoints."""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from admission.models.response import ComponentStatus, HealthResponse, ReadinessResponse

router = APIRouter()

# Track start time for uptime calculation
_start_time = time.time()


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health():
    """Basic health check endpoint.

    Returns service health status and uptime.
    Used by load balancers for health checks.
    """
    uptime_seconds = int(time.time() - _start_time)

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        uptime_seconds=uptime_seconds,
    )


@router.get("/healthz", status_code=status.HTTP_200_OK)
async def healthz():
    """Kubernetes liveness probe endpoint."""
    return {"status": "OK"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(request: Request):
    """Kubernetes readiness probe endpoint.

    Reports the counter store and both background sweepers.
    Returns 200 if ready, 503 if not ready.
    """
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        response = ReadinessResponse(
            ready=False,
            components={
                "pipeline": ComponentStatus(
                    name="pipeline", status="degraded", detail="not started"
                )
            },
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    store_ok = await pipeline.rate_limiter.store.ping()
    components = {
        "counter_store": ComponentStatus(
            name=type(pipeline.rate_limiter.store).__name__,
            status="healthy" if store_ok else "degraded",
            detail=None if store_ok else "counter store unreachable",
        ),
        "rate_limit_sweeper": ComponentStatus(
            name="rate_limit_sweeper",
            status="healthy" if pipeline.rate_limiter.cleanup_running else "degraded",
        ),
        "dedup_sweeper": ComponentStatus(
            name="dedup_sweeper",
            status="healthy" if pipeline.deduplicator.sweeping else "degraded",
        ),
    }
    # readiness follows the store; sweeper state is informational
    response = ReadinessResponse(ready=store_ok, components=components)

    if not store_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response
