"""Request logging for the review API."""
from __future__ import annotations
import time
from uuid import uuid4
import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request with a request id bound for the duration.

    The id is taken from the ``X-Request-ID`` header when the caller sends
    one and echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        tokens = structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("http_request_failed", method=request.method, path=request.url.path,
                         error=str(e), error_type=type(e).__name__,
                         duration_ms=int((time.monotonic() - start) * 1000))
            response = JSONResponse(status_code=500, content={"detail": "Internal server error"})
        else:
            logger.info("http_request", method=request.method, path=request.url.path,
                        status=response.status_code, duration_ms=int((time.monotonic() - start) * 1000))
        finally:
            structlog.contextvars.reset_contextvars(**tokens)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
