from .schemas import ErrorResponse
from .errors import (
    http_exception_handler,
    install_error_handlers,
    unhandled_exception_handler,
    validation_exception_handler,
)
from .request_context import REQUEST_ID_HEADER, RequestIDMiddleware

__all__ = [
    "ErrorResponse",
    "http_exception_handler",
    "install_error_handlers",
    "unhandled_exception_handler",
    "validation_exception_handler",
    "REQUEST_ID_HEADER",
    "RequestIDMiddleware",
]
