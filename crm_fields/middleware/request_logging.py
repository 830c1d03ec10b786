from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crm_fields.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


def _record(request: Request, status_code: int, started: float, *, failed: bool = False) -> None:
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    path = resolve_http_path_label(request)
    observe_http_request(method=request.method, path=path, status=status_code, duration=duration_ms / 1000)
    extra = {"method": request.method, "path": path, "status_code": status_code, "duration_ms": duration_ms}
    if failed:
        logger.error("http.error", exc_info=True, extra=extra)
    else:
        logger.info("http.request", extra=extra)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line and one metrics sample per request, labelled by route template."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _record(request, 500, started, failed=True)
            raise
        _record(request, response.status_code, started)
        return response
