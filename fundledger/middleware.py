"""
HTTP middleware for request tracing and latency logging.

- **Request ID**: every request/response carries an ``X-Request-ID``.  The id
  is also published to :data:`fundledger.core.logging.request_id_ctx` so every
  log line written while serving the request (including the ledger services')
  carries it.
- **Request timing**: logs wall-clock duration and sets ``X-Process-Time``.
  Ledger writes hold a per-fund lock, so a slow request here is often a
  request that queued behind another writer on the same fund.
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from fundledger.core.logging import request_id_ctx

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 500


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Honour an upstream ``X-Request-ID`` or generate a UUID4, expose it on
    ``request.state.request_id``, bind it to the logging context and echo it
    back in the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Sets ``X-Process-Time`` and logs requests slower than ``SLOW_REQUEST_MS``."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"

        level = logging.WARNING if elapsed_ms > SLOW_REQUEST_MS else logging.DEBUG
        logger.log(
            level,
            "%s %s -> %d in %.2fms",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "elapsed_ms": round(elapsed_ms, 2),
            },
        )
        return response
