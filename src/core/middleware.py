"""Request middleware for context management and logging."""

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from src.core.context import clear_context, set_request_id


logger = structlog.get_logger(__name__)

# Client errors worth a warning: denials, conflicts and bad input
_WARN_STATUS = 400


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request ID for the duration of the request.

    The ID is taken from `X-Request-ID` when the gateway sets one and echoed
    back on the response. Start and finish are logged with timing, except for
    excluded paths such as the health checks.
    """

    REQUEST_ID_HEADER = "X-Request-ID"

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.log_requests = log_requests
        self.exclude_paths = tuple(exclude_paths or ["/health"])

    def _should_log(self, path: str) -> bool:
        return self.log_requests and not path.startswith(self.exclude_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        request_id = set_request_id(request.headers.get(self.REQUEST_ID_HEADER))
        request.state.request_id = request_id
        should_log = self._should_log(request.url.path)

        if should_log:
            logger.info("request_started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error_type=type(e).__name__,
                duration_ms=_elapsed_ms(started),
            )
            raise
        else:
            if should_log:
                log = (
                    logger.warning
                    if response.status_code >= _WARN_STATUS
                    else logger.info
                )
                log(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=_elapsed_ms(started),
                )
            response.headers[self.REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_context()


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
