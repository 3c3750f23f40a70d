"""HTTP authentication helpers for the Starlette endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import JSONResponse

from .errors import AuthenticationError

if TYPE_CHECKING:
    from .jwt_verifier import JwtTokenVerifier
    from .models import ClaimsIdentity

ALLOWED_METHODS = ("POST", "GET")


def extract_bearer_token(authorization_header: str) -> str:
    """Return the token part of ``Bearer <token>``."""
    scheme, _, token = authorization_header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("invalid authorization header")
    return token.strip()


def auth_error_response(message: str, status_code: int = 401) -> JSONResponse:
    return JSONResponse({"jwt-auth-error": message}, status_code=status_code)


async def authorize(request: Request, verifier: JwtTokenVerifier) -> ClaimsIdentity | JSONResponse:
    """Authenticate ``request`` or build the error response to return instead.

    Methods other than GET and POST get 405. Authentication failures get 401
    with a ``jwt-auth-error`` message.
    """
    if request.method not in ALLOWED_METHODS:
        return auth_error_response("Method not allowed", status_code=405)
    try:
        return await verifier.authorize_request(request.headers.get("authorization"))
    except AuthenticationError as e:
        return auth_error_response(e.message)
