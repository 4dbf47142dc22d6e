"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in plans/models.py and admin/models.py -- dataclasses own domain shape; stores
and services do the work.

Layer rule: no imports from api/, admin/, or plans/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Decided once at account creation, changed only by an admin."""

    user = "user"
    admin = "admin"


@dataclass
class User:
    """A registered account.

    email is always stored lowercase; the store normalizes on write and lookup.

    The verification and reset token columns hold HMAC-SHA256 digests, never
    the raw value sent by email. Each digest and its expiry are written and
    cleared together, so either both are set or both are None.

    id is None before the record is written to the database.
    """

    email: str
    password_hash: str
    role: Role = Role.user
    id: str | None = None
    email_verified: bool = False
    verification_token_hash: str | None = None
    verification_token_expires: str | None = None  # ISO 8601
    password_reset_token_hash: str | None = None
    password_reset_expires: str | None = None  # ISO 8601
    is_banned: bool = False
    ban_reason: str | None = None
    banned_at: str | None = None  # ISO 8601
    created_at: str = ""
    updated_at: str = ""


@dataclass
class RefreshToken:
    """Persisted half of an opaque refresh token.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw value is handed
    to the client once and never stored.
    """

    user_id: str
    token_hash: str
    expires_at: str  # ISO 8601
    id: int | None = None
    created_at: str = ""


@dataclass(frozen=True)
class Identity:
    """Verified caller attached to request.state by the session validator.

    Built from the live user row, not from the token payload, so a role
    change or email change is visible on the very next request.
    """

    user_id: str
    email: str
    role: Role


@dataclass(frozen=True)
class TokenPair:
    """A freshly issued session: signed access token plus raw refresh token."""

    access_token: str
    refresh_token: str
    expires_in: int
