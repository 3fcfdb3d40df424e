"""Internal machinery: HTTP transport."""

from .http import (
    Auth,
    HttpClient,
    HttpError,
    Response,
    TokenAuth,
    is_transient,
    request_id_of,
)

__all__ = [
    "Auth",
    "HttpClient",
    "HttpError",
    "Response",
    "TokenAuth",
    "is_transient",
    "request_id_of",
]
