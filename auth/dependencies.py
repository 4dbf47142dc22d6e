"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two carriers are checked in priority order:
  1. "access_token" cookie -- set by login/register/refresh in cookie mode.
  2. Authorization: Bearer <token> header -- API clients in body mode.

get_current_identity() is the session validator:
  - no token, or an Authorization header without the Bearer scheme -> 401
  - bad signature / expired token                                  -> 403
  - token for a deleted account                                    -> 401
  - banned account (re-read from the store on every request)       -> 403 + reason
  On success the Identity is attached to request.state.identity.

ensure_admin() is the authorization guard. It only inspects an identity that
get_current_identity() already produced; require_admin() chains the two so the
guard can never run first.

Both raise AuthError subclasses; api/main.py renders them.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from auth.errors import AuthenticationError, AuthorizationError, ExpiredTokenError, InvalidTokenError
from auth.models import Identity, Role
from auth.service import AuthService
from auth.tokens import ACCESS_COOKIE

logger = logging.getLogger("labelforge.auth")


def extract_access_token(request: Request) -> str | None:
    """Return the raw access token from the cookie or Bearer header, or None."""
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_current_identity(request: Request) -> Identity:
    """Require a valid session. See module docstring for the failure table.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = extract_access_token(request)
    if token is None:
        raise AuthenticationError()

    auth_service: AuthService = request.app.state.auth_service
    try:
        identity, _ = auth_service.resolve_session(token)
    except ExpiredTokenError:
        logger.info("Expired access token on %s", request.url.path)
        raise
    except InvalidTokenError:
        logger.warning("Invalid access token on %s", request.url.path)
        raise

    request.state.identity = identity
    return identity


def ensure_admin(identity: Identity | None) -> Identity:
    """Pass an admin identity through unchanged; refuse everything else."""
    if identity is None:
        raise AuthenticationError()
    if identity.role != Role.admin:
        raise AuthorizationError()
    return identity


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    """Require admin role. 401/403 from the session validator, then 403 if not admin.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        def route(admin: Identity = Depends(require_admin)): ...
    """
    return ensure_admin(identity)
