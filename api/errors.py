"""
api/errors.py -- Render AuthError exceptions as the standard error envelope.

Shared by the global exception handler in api/main.py and by routes that must
attach headers or clear cookies on the error response itself (refresh).
"""

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.errors import AuthError


def auth_error_response(exc: AuthError) -> JSONResponse:
    """Return {"error": {"code", "message", ...extra}} with the error's status."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(**exc.to_dict())).model_dump(exclude_none=True),
    )
    if exc.status_code in (401, 403):
        response.headers["Cache-Control"] = "no-store"
    return response
