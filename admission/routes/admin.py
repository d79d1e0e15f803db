"""Admin endpoints for rate limit and deduplication state.

Every endpoint runs through the pipeline on the ``default`` bucket and
requires an authenticated principal.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from starlette.responses import Response

from admission.exceptions import NotFoundError
from admission.pipeline import RouteOptions

router = APIRouter()


class ClientQuery(BaseModel):
    """Identifies the client whose counters are inspected."""

    client: str = Field(min_length=1, max_length=256)


CLIENT_OPTIONS = RouteOptions(bucket="default", query_schema=ClientQuery)
ADMIN_OPTIONS = RouteOptions(bucket="default")


def _known_bucket(pipeline, ctx) -> str:
    name = ctx.path_params["bucket"]
    if name not in pipeline.rate_limiter.buckets:
        raise NotFoundError("Bucket")
    return name


@router.get("/rate-limits/{bucket}")
async def get_rate_limit_status(request: Request) -> Response:
    """Current window for one client in one bucket. Does not count a request."""
    pipeline = request.app.state.pipeline

    async def handler(ctx, query: ClientQuery):
        bucket = _known_bucket(pipeline, ctx)
        status = await pipeline.rate_limiter.get_status(query.client, bucket)
        return status.model_dump(mode="json")

    return await pipeline.handle(request, handler, CLIENT_OPTIONS)


@router.delete("/rate-limits/{bucket}")
async def reset_rate_limit(request: Request) -> Response:
    """Forget one client's counter in one bucket."""
    pipeline = request.app.state.pipeline

    async def handler(ctx, query: ClientQuery):
        bucket = _known_bucket(pipeline, ctx)
        await pipeline.rate_limiter.reset(query.client, bucket)
        return {"reset": True, "bucket": bucket}

    return await pipeline.handle(request, handler, CLIENT_OPTIONS)


@router.get("/suspicious-activity")
async def get_suspicious_activity(request: Request) -> Response:
    """Clients that exhausted a bucket in their current window."""
    pipeline = request.app.state.pipeline

    async def handler(ctx, _):
        activity = await pipeline.rate_limiter.get_suspicious_activity()
        return {"clients": [entry.model_dump(mode="json") for entry in activity]}

    return await pipeline.handle(request, handler, ADMIN_OPTIONS)


@router.get("/dedup/stats")
async def get_dedup_stats(request: Request) -> Response:
    pipeline = request.app.state.pipeline

    async def handler(ctx, _):
        return pipeline.deduplicator.stats()

    return await pipeline.handle(request, handler, ADMIN_OPTIONS)
