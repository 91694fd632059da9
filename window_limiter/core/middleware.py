"""HTTP middleware for request ID propagation and access logging.

Every request/response pair carries a correlation id (incoming header value
or a fresh UUID), stored in contextvars for the duration of the request so
limiter log lines can be tied back to it.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from window_limiter.core.config import settings
from window_limiter.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a request id and duration to the response and the log context.

    Side Effects:
        - Sets request_id in contextvars for the lifetime of the request
        - Adds the request id header and ``X-Request-Duration-ms`` to the response
        - Logs one ``http.request`` line per request (``info`` for 429s)
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.log(
            logging.INFO if response.status_code == 429 else logging.DEBUG,
            "http.request",
            extra={
                "method": request.method,
                "route": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
