# backend/territory/middleware/request_id.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_request_id() -> str | None:
    return _correlation_id.get()


def new_id(prefix: str | None = None) -> str:
    rid = uuid.uuid4().hex
    return f"{prefix}-{rid[:12]}" if prefix else rid


@contextmanager
def correlation_scope(rid: str) -> Iterator[str]:
    """
    Binds `rid` for every log line emitted inside the block. Used by HTTP
    requests and by sweep/resync passes, which have no request of their own.
    """
    token = _correlation_id.set(rid)
    try:
        yield rid
    finally:
        _correlation_id.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Echoes the caller's X-Request-ID (any header casing) or mints one."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_id()
        request.state.request_id = rid
        with correlation_scope(rid):
            resp = await call_next(request)
        resp.headers[REQUEST_ID_HEADER] = rid
        return resp
