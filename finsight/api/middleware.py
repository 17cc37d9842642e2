"""Request ID propagation and access logging."""

import logging
import secrets
import time
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("finsight.access")

REQUEST_ID_HEADER = "X-Request-ID"

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    return f"req_{secrets.token_hex(8)}"


def get_request_id() -> str | None:
    return _request_id.get()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID (or reuses the caller's) and logs each request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        token = _request_id.set(request_id)
        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "%s %s failed",
                request.method,
                request.url.path,
                extra={"request_id": request_id, "elapsed_ms": round((time.monotonic() - start) * 1000, 2)},
            )
            raise
        finally:
            _request_id.reset(token)

        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "%s %s %s",
            request.method,
            request.url.path,
            response.status_code,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "elapsed_ms": elapsed_ms,
            },
        )
        return response
