"""
auth/errors.py -- Exception taxonomy for the auth and admin services.

Every expected failure raised by auth/ and admin/ is an AuthError subclass
carrying the HTTP status, a stable machine-readable code, and a human message.
api/main.py registers one exception handler for AuthError that renders the
standard {"error": {...}} envelope, so services never import FastAPI types.

Extra fields (e.g. the ban reason, or requires_verification + email on an
unverified login) travel in ``extra`` and are merged into the envelope.

Layer rule: stdlib only.
"""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for service-layer failures mapped to HTTP responses."""

    status_code: int = 400
    code: str = "invalid_input"
    default_message: str = "Invalid request."

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.extra}


class InvalidInputError(AuthError):
    """Malformed or unusable input that passed schema validation (400)."""

    status_code = 400
    code = "invalid_input"


class InvalidPasswordError(InvalidInputError):
    """Current password did not match on a password change (400)."""

    code = "invalid_password"
    default_message = "Current password is incorrect."


class AuthenticationError(AuthError):
    """No credential presented, or its owner no longer exists (401)."""

    status_code = 401
    code = "authentication_required"
    default_message = "Authentication required."


class InvalidCredentialsError(AuthenticationError):
    """Unknown email or wrong password -- deliberately indistinguishable (401)."""

    code = "invalid_credentials"
    default_message = "Invalid email or password."


class InvalidRefreshTokenError(AuthenticationError):
    """Refresh token unknown, expired, revoked, or owned by a suspended account (401)."""

    code = "invalid_refresh_token"
    default_message = "Refresh token is invalid or expired."


class InvalidTokenError(AuthError):
    """Access or refresh token failed verification (403)."""

    status_code = 403
    code = "invalid_token"
    default_message = "Invalid or expired token."


class ExpiredTokenError(InvalidTokenError):
    """Token signature is valid but its expiry has passed.

    Same response as InvalidTokenError; the separate class only exists so
    logs can tell a stale session apart from a forged one.
    """


class AccountSuspendedError(AuthError):
    """The account is banned. Carries the stored ban reason (403)."""

    status_code = 403
    code = "account_suspended"
    default_message = "Your account has been suspended."

    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__(reason=reason or "No reason provided.")


class EmailNotVerifiedError(AuthError):
    """Login refused until the address is confirmed (403)."""

    status_code = 403
    code = "email_not_verified"
    default_message = "Please verify your email address before signing in."

    def __init__(self, email: str) -> None:
        super().__init__(requires_verification=True, email=email)


class AuthorizationError(AuthError):
    """Valid identity, insufficient role (403)."""

    status_code = 403
    code = "forbidden"
    default_message = "Admin access required."


class SelfTargetError(AuthError):
    """An admin tried to change the role of, ban, or delete their own account (400)."""

    status_code = 400
    code = "self_target"
    default_message = "You cannot perform this action on your own account."


class NotFoundError(AuthError):
    """Missing entity, or a guarded mutation that affected zero rows (404)."""

    status_code = 404
    code = "not_found"
    default_message = "Not found."

