from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .request_context import REQUEST_ID_HEADER
from .schemas import ErrorResponse

_REASONS = {
    400: "Bad Request",
    401: "Unauthorized",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
    503: "Service Unavailable",
}


def _serialize_detail(detail: str | dict | None) -> str | None:
    if detail is None:
        return None
    return str(detail)


def error_response(
    status_code: int,
    error: str,
    detail: str | dict | None,
    request_id: str | None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = ErrorResponse(error=error, detail=_serialize_detail(detail), request_id=request_id)
    response_headers = dict(headers or {})
    if request_id:
        response_headers.setdefault(REQUEST_ID_HEADER, request_id)
    return JSONResponse(status_code=status_code, content=payload.model_dump(), headers=response_headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    error = _REASONS.get(exc.status_code, exc.__class__.__name__)
    return error_response(exc.status_code, error=error, detail=exc.detail, request_id=request_id, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    problems = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
    ]
    return error_response(422, error=_REASONS[422], detail="; ".join(problems), request_id=request_id)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled error on {} {} (request_id={})", request.method, request.url.path, request_id)
    return error_response(500, error="Internal Server Error", detail=str(exc), request_id=request_id)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
