# backend/territory/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("territory.request")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Emits one log line per request with:
      request_id, method, path, status_code, latency_ms, user_email
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.time()
        user_email = request.headers.get(settings.dev_header_user_email)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            request_id: Optional[str] = getattr(request.state, "request_id", None)
            log.info(
                "http_request %s %s -> %s",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "request_id": request_id,
                    "status_code": status_code,
                    "latency_ms": int((time.time() - t0) * 1000),
                    "user_email": user_email,
                },
            )
