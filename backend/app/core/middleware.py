"""
Per-request logging for the alert API.

Each request gets a correlation id (the caller's ``X-Request-ID`` when
sent) and the acting agency from the actor header, both placed in the
log context so every service log line written while handling it carries
them. The response echoes ``X-Request-ID`` and reports ``X-Process-Time``.

One access line is written per request: INFO for 2xx/3xx, WARNING for
rejected calls (missing actor, forbidden, validation), ERROR when the
handler raised. Docs and liveness probes are not logged.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.config import settings
from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        actor_agency = request.headers.get(settings.ACTOR_AGENCY_HEADER)
        path = request.url.path

        set_request_context(
            request_id=request_id,
            actor_agency=actor_agency,
            method=request.method,
            endpoint=path,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "%s %s → 500 (%.1fms) actor=%s",
                request.method, path, _elapsed_ms(start), actor_agency or "-",
                extra={"duration_ms": _elapsed_ms(start), "status_code": 500, "endpoint": path},
            )
            set_request_context()
            raise

        duration_ms = _elapsed_ms(start)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s → %d (%.1fms) actor=%s",
                request.method, path, response.status_code,
                duration_ms, actor_agency or "-",
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )
        set_request_context()
        return response
