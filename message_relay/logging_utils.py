"""
Structured JSON logging.

Every record carries `ts`, `level`, `name` and `threadName`. Records logged
while handling a request also carry `request_id`. Records logged by the
scheduler thread are tagged `component=scheduler`, and while a single message
is being dispatched they carry its `message_id`, so sender and cache lines can
be joined to the scheduler line that triggered them.
"""

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from message_relay.metrics import record_http_request


request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
dispatch_message_id_ctx: ContextVar[Optional[int]] = ContextVar("dispatch_message_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"
SCHEDULER_THREAD_NAME = "message-scheduler"


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


@contextmanager
def dispatch_context(message_id: int) -> Iterator[None]:
    """Tag every record logged inside the block with the message being dispatched."""
    token = dispatch_message_id_ctx.set(message_id)
    try:
        yield
    finally:
        dispatch_message_id_ctx.reset(token)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding ISO-8601 `ts`, `level`, and request/dispatch context."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if record.threadName == SCHEDULER_THREAD_NAME:
            log_record.setdefault('component', 'scheduler')

        # explicit extra={"message_id": ...} wins over the dispatch context
        if log_record.get('message_id') is None:
            message_id = dispatch_message_id_ctx.get()
            if message_id is not None:
                log_record['message_id'] = message_id

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Route the root logger and uvicorn's loggers through one JSON handler on stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(CustomJsonFormatter('%(ts)s %(level)s %(name)s %(threadName)s %(message)s'))
    logger.addHandler(json_handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [json_handler]
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware writes the access log
    logging.getLogger("uvicorn.access").disabled = True

    return logger


def log_request_data(request: Request, **fields) -> None:
    """
    Attach route-specific fields to the request log line written by the middleware.

    Used by the scheduler control routes (`scheduler_state`) and the sent
    messages listing (`limit`, `returned`).
    """
    log_data = getattr(request.state, "log_data", None)
    if log_data is None:
        log_data = request.state.log_data = {}
    log_data.update(fields)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one "Request completed" line per HTTP request and record HTTP metrics.

    Log keys: request_id (echoed in the X-Request-ID header, taken from the
    incoming header when present), method, path, status, latency_ms, plus any
    fields a route attached with log_request_data().
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id

            latency_seconds = time.perf_counter() - start_time

            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(latency_seconds * 1000, 2),
            }
            log_data.update(getattr(request.state, "log_data", None) or {})

            logger = logging.getLogger("message_relay.requests")

            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)
