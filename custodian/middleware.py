import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response

from .constants import ACTOR_HEADER, REQUEST_ID_HEADER
from .logging_utils import log_api_request


def _request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    return supplied[:64] if supplied else uuid.uuid4().hex


async def log_requests_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Bind request context for every log line, then log status and latency.

    Archive and restore calls log one line per cascade statement; the bound
    ``request_id`` and ``actor`` tie those lines back to the request.
    """
    request_id = _request_id(request)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        actor=request.headers.get(ACTOR_HEADER),
    )
    started = time.perf_counter()
    try:
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        log_api_request(request, response.status_code, elapsed_ms)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        structlog.contextvars.clear_contextvars()
