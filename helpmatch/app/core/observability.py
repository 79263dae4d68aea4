"""
Observability helpers.

Adds correlation IDs and structured logging context to requests, and
configures the service loggers.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("helpmatch.http")


def configure_logging(debug: bool = False) -> None:
    """Attach a stream handler to the ``helpmatch`` logger tree."""
    root = logging.getLogger("helpmatch")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(handler)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Tags every response with ``X-Correlation-ID`` and ``X-Process-Time`` and
    writes one access line per request, including the ``X-Actor-ID`` that
    match transitions are audited under.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        actor_id = request.headers.get("X-Actor-ID")
        started = time.perf_counter()

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        log_data = {
            "correlation_id": correlation_id,
            "actor_id": actor_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code in (409, 503):
            # Lost races and storage outages are expected under load
            level = logging.WARNING
        elif response.status_code >= 400:
            level = logging.INFO
        else:
            level = logging.DEBUG if request.url.path == "/health" else logging.INFO

        logger.log(
            level,
            "%s %s -> %d in %.2fms [%s]",
            request.method, request.url.path, response.status_code, duration_ms, correlation_id,
            extra=log_data
        )
        return response
