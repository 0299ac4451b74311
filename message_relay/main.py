import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

import httpx
import redis
from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse

from message_relay.cache import MessageCacheRepository, create_redis_client
from message_relay.config import Settings, get_settings
from message_relay.errors import (
    ContentTooLongError,
    InvalidLimitError,
    StoreError,
)
from message_relay.logging_utils import RequestLoggingMiddleware, log_request_data, setup_logging
from message_relay.metrics import get_metrics, get_metrics_content_type
from message_relay.scheduler import MessageScheduler
from message_relay.schemas import (
    CreateMessageRequest,
    ErrorResponse,
    ErrorSchema,
    HealthResponse,
    MessageResponse,
    SchedulerStateResponse,
    SuccessResponse,
)
from message_relay.sender import MessageSender
from message_relay.service import MessageService
from message_relay.storage import (
    MessageRepository,
    check_db_health,
    create_db_engine,
    create_session_factory,
    init_db,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 1000


def get_service(request: Request) -> MessageService:
    return request.app.state.service


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorSchema(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def create_app(
    settings: Optional[Settings] = None,
    *,
    redis_client: Optional[redis.Redis] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> FastAPI:
    """
    Build the application and wire its components.

    Args:
        settings: Settings to use (defaults to environment-derived settings)
        redis_client: Redis client to use instead of connecting to REDIS_URL
        transport: httpx transport for the webhook client (tests use MockTransport)
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    engine = create_db_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    repository = MessageRepository(session_factory)
    cache = MessageCacheRepository(
        redis_client if redis_client is not None else create_redis_client(settings.REDIS_URL),
        ttl_seconds=settings.CACHE_TTL_SECONDS,
    )
    sender = MessageSender(
        settings.WEBHOOK_URL,
        settings.WEBHOOK_AUTH_KEY,
        timeout=settings.HTTP_CLIENT_TIMEOUT,
        max_connections=settings.HTTP_CLIENT_MAX_CONNECTIONS,
        transport=transport,
    )
    scheduler = MessageScheduler(
        repository,
        sender,
        cache,
        interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
        batch_size=settings.SCHEDULER_BATCH_SIZE,
    )
    service = MessageService(repository, cache, scheduler)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        - Startup: create tables, optionally start the scheduler
        - Shutdown: stop the scheduler and release connections
        """
        logger.info("Application starting", extra={"environment": settings.ENVIRONMENT.value})
        init_db(engine)
        if settings.SCHEDULER_AUTOSTART:
            scheduler.start()
        yield
        logger.info("Application shutting down")
        scheduler.stop()
        sender.close()
        engine.dispose()

    app = FastAPI(
        title="Message Relay API",
        description="Outbox service that relays messages to a webhook and lists sent messages",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.repository = repository
    app.state.cache = cache
    app.state.scheduler = scheduler
    app.state.service = service

    app.add_middleware(RequestLoggingMiddleware)
    _register_exception_handlers(app)
    _register_routes(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ContentTooLongError)
    @app.exception_handler(InvalidLimitError)
    async def validation_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_failed", str(exc))

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error(f"Store error while handling request: {exc}")
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "unexpected_error",
            "An unexpected error has occurred.",
        )


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # Health Check Routes
    # =========================================================================

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """
        Liveness probe - always returns 200 once the app is running.
        """
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    def health_ready(request: Request, response: Response) -> HealthResponse:
        """
        Readiness probe - returns 200 only if:
        1. WEBHOOK_AUTH_KEY is set (non-empty)
        2. DB is reachable and schema is applied
        3. Redis answers PING

        Otherwise returns 503 (Service Unavailable).
        """
        state = request.app.state
        reason = None
        if not state.settings.WEBHOOK_AUTH_KEY:
            reason = "WEBHOOK_AUTH_KEY not configured"
        elif not check_db_health(state.session_factory):
            reason = "Database not reachable or schema not applied"
        elif not state.cache.ping():
            reason = "Redis not reachable"

        if reason:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(status="not_ready", reason=reason)
        return HealthResponse(status="ready")

    # =========================================================================
    # Message Routes
    # =========================================================================

    @app.post(
        "/messages",
        response_model=SuccessResponse,
        status_code=status.HTTP_201_CREATED,
        responses={422: {"description": "Validation error"}},
    )
    def create_message(
        body: CreateMessageRequest,
        service: MessageService = Depends(get_service),
    ) -> SuccessResponse:
        """
        Enqueue a message for dispatch. It is stored as PENDING and picked up by
        the scheduler on a later tick.
        """
        message = service.create_message(body.to, body.content)
        logger.info("Message enqueued", extra={"message_id": message.id})
        return SuccessResponse(data=MessageResponse.model_validate(message))

    @app.get(
        "/messages/sent",
        response_model=SuccessResponse,
        responses={500: {"model": ErrorResponse}},
    )
    def list_sent_messages(
        request: Request,
        limit: Annotated[
            int,
            Query(ge=1, le=MAX_LIST_LIMIT, description="Maximum number of messages to retrieve"),
        ] = DEFAULT_LIST_LIMIT,
        service: MessageService = Depends(get_service),
    ) -> SuccessResponse:
        """
        List sent messages, newest first. Recently sent messages come from the
        cache; the database fills in the rest.
        """
        messages = service.list_sent_messages(limit)
        log_request_data(request, limit=limit, returned=len(messages))
        return SuccessResponse(data=messages)

    @app.post("/messages/start", response_model=SuccessResponse)
    def start_scheduler(request: Request, service: MessageService = Depends(get_service)) -> SuccessResponse:
        """Start the dispatch scheduler. Idempotent."""
        service.start_scheduler()
        state = service.scheduler_state()
        log_request_data(request, scheduler_state=state)
        return SuccessResponse(data=SchedulerStateResponse(state=state))

    @app.post("/messages/stop", response_model=SuccessResponse)
    def stop_scheduler(request: Request, service: MessageService = Depends(get_service)) -> SuccessResponse:
        """Stop the dispatch scheduler and wait for the current tick to finish. Idempotent."""
        service.stop_scheduler()
        state = service.scheduler_state()
        log_request_data(request, scheduler_state=state)
        return SuccessResponse(data=SchedulerStateResponse(state=state))

    # =========================================================================
    # Metrics Route
    # =========================================================================

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )


app = create_app()
