"""
api/routes/v1/auth.py -- Registration, login, session and account endpoints.

Routes:
  POST   /api/v1/auth/register             -- create account (enumeration-safe)
  POST   /api/v1/auth/login                -- password login; starts a session
  POST   /api/v1/auth/refresh              -- new access token from refresh token
  POST   /api/v1/auth/logout               -- revoke refresh token, clear cookies
  GET    /api/v1/auth/me                   -- current user (requires auth)
  POST   /api/v1/auth/verify-email         -- confirm address from emailed link
  POST   /api/v1/auth/resend-verification  -- new verification link (enumeration-safe)
  POST   /api/v1/auth/forgot-password      -- emailed reset link (enumeration-safe)
  POST   /api/v1/auth/reset-password       -- set password from reset link
  PUT    /api/v1/auth/password             -- change password (requires auth)
  DELETE /api/v1/auth/account              -- delete own account (requires auth)

Session delivery follows TOKEN_DELIVERY: "cookie" sets the HttpOnly cookie
pair and keeps tokens out of the body; "body" returns them as JSON fields.
Refresh and logout accept the refresh token from its cookie or from the JSON
body in either mode.

Security:
  Login, register and password-reset endpoints carry stricter rate limits.
  Cache-Control: no-store on every response that carries credentials.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import auth_error_response
from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
    UserSummary,
)
from auth.dependencies import get_current_identity
from auth.errors import AuthenticationError, AuthError, InvalidInputError
from auth.models import Identity, TokenPair
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE
from core.config import get_settings

logger = logging.getLogger("labelforge.api")

_settings = get_settings()

# Auth policy:
# - register / login / refresh / logout / verify-email / resend-verification /
#   forgot-password / reset-password: public
# - me / password / account: requires a session (get_current_identity)
router = APIRouter()

_GENERIC_RECOVERY_MESSAGE = "If an account exists for this address, an email has been sent."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _session_response(
    request: Request,
    payload: dict,
    tokens: Optional[TokenPair],
    status_code: int = 200,
) -> JSONResponse:
    """Build a no-store JSON response and deliver ``tokens`` per TOKEN_DELIVERY."""
    auth_service = _service(request)
    if tokens is not None and _settings.token_delivery == "body":
        payload = {
            **payload,
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "token_type": "bearer",  # noqa: S105 # nosec B105 -- OAuth token type, not a password
            "expires_in": tokens.expires_in,
        }
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(**payload).model_dump(mode="json", exclude_none=True),
    )
    if tokens is not None and _settings.token_delivery == "cookie":
        auth_service.issuer.set_session_cookies(resp, tokens.access_token, tokens.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _refresh_token_from(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    token = request.cookies.get(REFRESH_COOKIE)
    if token:
        return token
    return body.refresh_token if body is not None else None


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account.

    New and already-registered addresses get the same 201 pending response
    whenever email verification is on. With verification off, a new account
    is signed in immediately and receives a session.
    """
    result = _service(request).register(body.email, body.password)
    if result.user is None or result.requires_verification:
        summary = UserSummary(email=result.email, email_verified=False)
    else:
        summary = UserSummary.from_user(result.user)
    payload = {
        "user": summary,
        "message": result.message,
        "requires_verification": result.requires_verification,
    }
    return _session_response(request, payload, result.tokens, status_code=201)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and start a session.

    Unknown email and wrong password return the same 401 invalid_credentials.
    Suspended accounts (403 account_suspended + reason) and unverified ones
    (403 email_not_verified + requires_verification + email) are only
    reported once the password has been checked.
    """
    user, tokens = _service(request).login(body.email, body.password)
    return _session_response(request, {"user": UserSummary.from_user(user)}, tokens)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new access token.

    On failure the session cookies are cleared along with the 401.
    """
    auth_service = _service(request)
    try:
        user, tokens = auth_service.refresh_session(_refresh_token_from(request, body))
    except AuthError as exc:
        resp = auth_error_response(exc)
        auth_service.issuer.clear_session_cookies(resp)
        return resp
    return _session_response(request, {"user": UserSummary.from_user(user)}, tokens)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Revoke the presented refresh token and clear cookies. Always 200."""
    auth_service = _service(request)
    auth_service.logout(_refresh_token_from(request, body))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    auth_service.issuer.clear_session_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> MeResponse:
    """Return the currently authenticated user, read fresh from the store."""
    user = _service(request).users.get_by_id(identity.user_id)
    if user is None:
        raise AuthenticationError("User not found.")
    return MeResponse(user=UserSummary.from_user(user))


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: TokenRequest) -> MessageResponse:
    """Confirm an email address. 400 invalid_input for an unknown, used or expired link."""
    _service(request).verify_email(body.token)
    return MessageResponse(message="Email verified. You can now sign in.")


@limiter.limit(_settings.password_reset_rate_limit)
@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    _service(request).resend_verification(body.email)
    return MessageResponse(message=_GENERIC_RECOVERY_MESSAGE)


# ---------------------------------------------------------------------------
# Password recovery and change
# ---------------------------------------------------------------------------


@limiter.limit(_settings.password_reset_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Email a reset link. The response never reveals whether the account exists."""
    _service(request).request_password_reset(body.email)
    return MessageResponse(message=_GENERIC_RECOVERY_MESSAGE)


@limiter.limit(_settings.password_reset_rate_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password from a reset link. Every existing session is revoked."""
    if not _service(request).reset_password(body.token, body.password):
        raise InvalidInputError("Invalid or expired reset link.")
    return MessageResponse(message="Password updated. You can now sign in.")


@router.put("/auth/password", response_model=AuthResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    """Change the password, revoke all sessions, and start a fresh one."""
    tokens = _service(request).change_password(identity.user_id, body.current_password, body.new_password)
    return _session_response(request, {"message": "Password changed."}, tokens)


@router.delete("/auth/account", response_model=MessageResponse)
def delete_account(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Delete the caller's own account and every session it owns."""
    auth_service = _service(request)
    if not auth_service.delete_account(identity.user_id):
        raise AuthenticationError("User not found.")
    resp = JSONResponse(content=MessageResponse(message="Account deleted.").model_dump())
    auth_service.issuer.clear_session_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp
