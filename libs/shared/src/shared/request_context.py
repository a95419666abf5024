from __future__ import annotations

import time
from typing import Callable
from uuid import uuid4

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REQUEST_ID_HEADER = "x-request-id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate `x-request-id` and bind it to every log line emitted while handling the request."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        with logger.contextualize(request_id=request_id):
            response = await call_next(request)
            logger.debug(
                "{} {} -> {} in {:.1f}ms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response
