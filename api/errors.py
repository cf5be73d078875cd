"""
api/errors.py -- Map auth-core errors onto the shared HTTP error envelope.

Used by the AuthError exception handler in api/main.py and by routes that
need to attach cookies to an error response (the Google callback clears its
attempt cookie on failure too).

Exposure policy: 4xx errors carry the flow's client-safe message. 5xx errors
(ConfigurationError) are logged with their real message and the client only
sees a generic one.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.errors import AuthError

logger = logging.getLogger("coursework.api.errors")


def auth_error_response(exc: AuthError) -> JSONResponse:
    if exc.expose:
        message = exc.message
    else:
        logger.error("Auth configuration failure: %s", exc.message)
        message = "Authentication is temporarily unavailable."
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response
