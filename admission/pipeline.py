"""Ordered admission stages in front of every API handler.

Stage order is fixed: request context, authentication, rate limiting,
validation, then the handler (optionally behind the deduplicator). The
first failing stage answers with a failure envelope and nothing after it
runs. Whatever the handler does, the transport only ever sees an
enveloped response carrying the request id.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import Response

from admission.clients.identity_client import IdentityServiceClient
from admission.config import Settings
from admission.exceptions import ApiError, AuthContractViolation
from admission.models.request import AuthenticatedRequestContext, RequestContext, new_request_id
from admission.models.response import Envelope, ErrorCode, FailureEnvelope, SuccessEnvelope
from admission.services.auth_context import AuthContextBuilder, Authenticator
from admission.services.counter_store import CounterStore, InMemoryCounterStore, RedisCounterStore
from admission.services.dedup_service import RequestDeduplicator
from admission.services.envelope_service import EnvelopeService
from admission.services.jwt_service import JWTService
from admission.services.rate_limit_service import RateLimitService
from admission.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

Context = Union[RequestContext, AuthenticatedRequestContext]
Handler = Callable[[Any, Any], Awaitable[Any]]


@dataclass(frozen=True)
class DedupPolicy:
    """How a route derives its deduplication key."""

    operation: str
    resource: Optional[Callable[[Any, Any], Optional[str]]] = None
    ttl_ms: Optional[int] = None


@dataclass(frozen=True)
class RouteOptions:
    """Per-route pipeline configuration."""

    auth: bool = True
    bucket: Optional[str] = "api"
    body_schema: Optional[Type[BaseModel]] = None
    query_schema: Optional[Type[BaseModel]] = None
    dedup: Optional[DedupPolicy] = None
    allow_fallback_identity: Optional[bool] = None
    status_code: int = 200
    # cap on one client's in-flight requests; limit_concurrency uses the pipeline default
    limit_concurrency: bool = False
    max_concurrent: Optional[int] = None

    def __post_init__(self):
        if self.body_schema is not None and self.query_schema is not None:
            raise ValueError("a route validates either its body or its query, not both")
        if self.max_concurrent is not None and self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def create_request_context(request: Request) -> RequestContext:
    return RequestContext(
        request_id=new_request_id(request.headers.get("x-request-id")),
        method=request.method,
        url=request.url.path,
        user_agent=request.headers.get("user-agent"),
        client_ip=get_client_ip(request),
        path_params=dict(request.path_params),
    )


class Pipeline:
    """Owns the shared admission state and runs requests through it."""

    def __init__(
        self,
        rate_limiter: RateLimitService,
        deduplicator: RequestDeduplicator,
        auth_builder: AuthContextBuilder,
        authenticator: Authenticator,
        rate_limit_sweep_seconds: float = 300.0,
        dedup_sweep_seconds: float = 60.0,
        expose_error_details: bool = False,
        identity_client: Optional[IdentityServiceClient] = None,
        max_concurrent: int = 2,
    ):
        self.rate_limiter = rate_limiter
        self.deduplicator = deduplicator
        self.auth_builder = auth_builder
        self.authenticator = authenticator
        self.rate_limit_sweep_seconds = rate_limit_sweep_seconds
        self.dedup_sweep_seconds = dedup_sweep_seconds
        self.expose_error_details = expose_error_details
        self.identity_client = identity_client
        self.max_concurrent = max_concurrent
        self._closed = False

    @classmethod
    def from_settings(
        cls, settings: Settings, store: Optional[CounterStore] = None
    ) -> "Pipeline":
        if store is None:
            store = (
                RedisCounterStore.from_url(settings.REDIS_URL)
                if settings.RATE_LIMIT_USE_REDIS
                else InMemoryCounterStore()
            )
        identity_client = None
        if settings.IDENTITY_SERVICE_URL:
            identity_client = IdentityServiceClient(
                settings.IDENTITY_SERVICE_URL, timeout=settings.IDENTITY_SERVICE_TIMEOUT
            )
        return cls(
            rate_limiter=RateLimitService(
                buckets=settings.bucket_configs(),
                store=store,
                enabled=settings.rate_limit_active,
                exempt_private=settings.RATE_LIMIT_EXEMPT_PRIVATE and not settings.is_production,
            ),
            deduplicator=RequestDeduplicator(default_ttl_ms=settings.DEDUP_DEFAULT_TTL_MS),
            auth_builder=AuthContextBuilder(
                identity_resolver=identity_client,
                allow_fallback=settings.ALLOW_FALLBACK_IDENTITY,
            ),
            authenticator=JWTService(settings.JWT_SECRET_KEY, settings.JWT_ALGORITHM),
            rate_limit_sweep_seconds=settings.RATE_LIMIT_SWEEP_INTERVAL_MS / 1000.0,
            dedup_sweep_seconds=settings.DEDUP_SWEEP_INTERVAL_MS / 1000.0,
            expose_error_details=settings.ENVIRONMENT.lower() == "development",
            identity_client=identity_client,
            max_concurrent=settings.CHAT_MAX_CONCURRENCY,
        )

    async def start(self):
        """Start background sweeps for counters and dedup entries."""
        await self.rate_limiter.start_cleanup(self.rate_limit_sweep_seconds)
        await self.deduplicator.start(self.dedup_sweep_seconds)
        logger.info("Admission pipeline started")

    async def stop(self):
        """Stop sweeps and release collaborators. Safe to call more than once."""
        await self.rate_limiter.stop_cleanup()
        await self.deduplicator.stop()
        if self._closed:
            return
        self._closed = True
        await self.rate_limiter.close()
        if self.identity_client is not None:
            await self.identity_client.close()
        logger.info("Admission pipeline stopped")

    async def handle(
        self, request: Request, handler: Handler, options: RouteOptions = RouteOptions()
    ) -> Response:
        """Run one request through every stage and the handler."""
        start_time = time.perf_counter()
        context = create_request_context(request)
        extra_headers: Dict[str, str] = {}

        try:
            response, outcome = await self._run(request, context, handler, options, extra_headers)
        except AuthContractViolation as e:
            logger.error(
                "Authentication contract violation: %s", e, extra=context.log_fields(), exc_info=True
            )
            response, outcome = self._server_error(e, context)
        except Exception as e:
            logger.exception("Unhandled exception in API handler", extra=context.log_fields())
            response, outcome = self._server_error(e, context)

        duration_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-Id"] = context.request_id
        response.headers["Server-Timing"] = f"total;dur={duration_ms:.1f}"
        for name, value in extra_headers.items():
            response.headers[name] = value

        logger.info(
            "API request completed",
            extra={
                **context.log_fields(),
                "status": response.status_code,
                "outcome": outcome,
                "duration_ms": round(duration_ms, 2),
            },
        )
        return response

    async def _run(
        self,
        request: Request,
        context: Context,
        handler: Handler,
        options: RouteOptions,
        extra_headers: Dict[str, str],
    ) -> Tuple[Response, str]:
        rid = context.request_id

        if options.auth:
            auth_result = await self.authenticator.authenticate(request)
            try:
                authenticated = await self.auth_builder.build(
                    auth_result, context, options.allow_fallback_identity
                )
            except ApiError as e:
                return self._api_error(e, context)
            if authenticated is None:
                logger.warning(
                    "Unauthorized request: %s",
                    auth_result.error or "no identity",
                    extra=context.log_fields(),
                )
                return self._render(
                    EnvelopeService.authentication_error(
                        auth_result.error or "Authentication required", rid
                    )
                )
            context = authenticated

        if options.bucket is not None:
            decision = await self.rate_limiter.check_rate_limit(context.client_ip, options.bucket)
            extra_headers["X-RateLimit-Limit"] = str(decision.limit)
            extra_headers["X-RateLimit-Remaining"] = str(decision.remaining)
            extra_headers["X-RateLimit-Reset"] = str(int(decision.reset_at.timestamp()))
            if not decision.allowed:
                extra_headers["Retry-After"] = str(decision.retry_after)
                return self._render(EnvelopeService.rate_limit_error(rid))

        cap = options.max_concurrent or (self.max_concurrent if options.limit_concurrency else None)
        if cap is None:
            return await self._admit(request, context, handler, options)

        if not self.rate_limiter.acquire_slot(context.client_ip, cap):
            extra_headers["Retry-After"] = "1"
            return self._render(
                EnvelopeService.rate_limit_error(rid, details="Too many concurrent requests")
            )
        try:
            return await self._admit(request, context, handler, options)
        finally:
            self.rate_limiter.release_slot(context.client_ip)

    async def _admit(
        self, request: Request, context: Context, handler: Handler, options: RouteOptions
    ) -> Tuple[Response, str]:
        rid = context.request_id
        data = None
        if options.body_schema is not None:
            result = await ValidationService.validate_body(request, options.body_schema)
        elif options.query_schema is not None:
            result = ValidationService.validate_query(request, options.query_schema)
        else:
            result = None
        if result is not None:
            if not result.success:
                logger.info("Request validation failed", extra=context.log_fields())
                if result.code is ErrorCode.INVALID_INPUT:
                    return self._render(EnvelopeService.invalid_input(result.error, rid))
                return self._render(EnvelopeService.validation_error(result.error, rid))
            data = result.data

        async def call():
            return await handler(context, data)

        try:
            if options.dedup is not None:
                key = self.dedup_key(options.dedup, context, data)
                value = await self.deduplicator.deduplicate(key, call, options.dedup.ttl_ms)
            else:
                value = await call()
        except ApiError as e:
            return self._api_error(e, context)

        if isinstance(value, Response):
            return value, "passthrough"
        if isinstance(value, (SuccessEnvelope, FailureEnvelope)):
            return self._render(value)
        envelope = EnvelopeService.success(value, EnvelopeService.meta(rid))
        return EnvelopeService.to_response(envelope, options.status_code), "success"

    @staticmethod
    def dedup_key(policy: DedupPolicy, context: Context, data: Any) -> str:
        if isinstance(context, AuthenticatedRequestContext):
            caller = context.principal.clerk_id
        else:
            caller = RateLimitService.fingerprint(context.client_ip)
        resource = policy.resource(context, data) if policy.resource else None
        return RequestDeduplicator.generate_key(caller, policy.operation, resource)

    @staticmethod
    def _render(envelope: Envelope) -> Tuple[Response, str]:
        outcome = envelope.error.code.value if isinstance(envelope, FailureEnvelope) else "success"
        return EnvelopeService.to_response(envelope), outcome

    def _api_error(self, error: ApiError, context: Context) -> Tuple[Response, str]:
        envelope = EnvelopeService.failure(
            error.message,
            error.status_code,
            EnvelopeService.meta(context.request_id),
            code=error.code,
            details=error.details,
            suggested_action=error.suggested_action,
        )
        return EnvelopeService.to_response(envelope, error.status_code), error.code.value

    def _server_error(self, error: Exception, context: Context) -> Tuple[Response, str]:
        envelope = EnvelopeService.server_error(
            error, context.request_id, expose_details=self.expose_error_details
        )
        return self._render(envelope)


def endpoint(handler: Handler, **options: Any) -> Callable[[Request], Awaitable[Response]]:
    """Wrap ``handler(ctx, data)`` as a FastAPI endpoint.

    The pipeline is looked up on ``request.app.state.pipeline`` per call.
    """
    route_options = RouteOptions(**options)

    async def route(request: Request) -> Response:
        pipeline: Pipeline = request.app.state.pipeline
        return await pipeline.handle(request, handler, route_options)

    route.__name__ = getattr(handler, "__name__", "route")
    route.__doc__ = handler.__doc__
    return route
