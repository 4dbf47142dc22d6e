"""
auth/tokens.py -- Password hashing, JWT access tokens, and opaque token utilities.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper) with a configurable
       cost factor, 12 by default. verify_password() never raises: a malformed
       digest is simply a non-match. bcrypt only reads the first 72 bytes of
       its input; longer inputs are truncated explicitly so bcrypt 4.x/5.x do
       not reject them.

  Access tokens: python-jose with HS256. Claims carry sub (user id), email,
       role, type="access", iat and exp. Decoding pins the algorithm list to
       ["HS256"] so "none" and RS/HS confusion tokens are refused. An expired
       token raises ExpiredTokenError, anything else raises InvalidTokenError;
       both become the same 403 at the HTTP layer but log differently.

  Opaque tokens (refresh, email verification, password reset): 256 bits from
       the secrets module. Only HMAC-SHA256(SECRET_KEY, raw) is stored, which
       is deterministic so lookup stays an indexed equality match, and a
       leaked database alone cannot be replayed.

  SECRET_KEY: supplied through the Settings object given to TokenIssuer. The
       issuer refuses to sign or verify without one (fails closed).

Layer rule: no imports from api/, admin/, or plans/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import ExpiredTokenError, InvalidTokenError
from auth.models import Identity, Role

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("labelforge.auth")

_ALGORITHM = "HS256"
_BCRYPT_MAX_BYTES = 72

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
ACCESS_COOKIE_PATH = "/api/"
REFRESH_COOKIE_PATH = "/api/v1/auth/"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt digest. Two calls with the same input differ."""
    return bcrypt.hashpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt digest."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Signs and verifies access tokens; mints and digests opaque tokens.

    Usage:
        issuer = TokenIssuer(get_settings())
        token = issuer.create_access_token(user.id, user.email, user.role)
        identity = issuer.decode_access_token(token)
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def _key(self) -> str:
        if not self._settings.secret_key:
            raise RuntimeError("SECRET_KEY is not configured; refusing to sign or verify tokens.")
        return self._settings.secret_key

    @property
    def access_token_ttl(self) -> int:
        return self._settings.access_token_expire_seconds

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self._settings.refresh_token_expire_days)

    # ------------------------------------------------------------------
    # JWT encode / decode
    # ------------------------------------------------------------------

    def create_access_token(
        self,
        user_id: str,
        email: str,
        role: Role | str,
        expire_seconds: int | None = None,
    ) -> str:
        """Encode a signed JWT carrying the caller's identity.

        Args:
            user_id:        Account UUID, stored as the sub claim.
            email:          Normalized email at issue time.
            role:           "user" or "admin".
            expire_seconds: Override for the configured lifetime. Tests pass
                            a negative value to mint an already-expired token.
        """
        now = datetime.now(timezone.utc)
        duration = self.access_token_ttl if expire_seconds is None else expire_seconds
        payload = {
            "sub": user_id,
            "email": email,
            "role": Role(role).value,
            "type": "access",
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._key, algorithm=_ALGORITHM)

    def decode_access_token(self, token: str) -> Identity:
        """Verify a JWT and return the identity it claims.

        Raises ExpiredTokenError when exp has passed, InvalidTokenError for
        every other defect (signature, structure, wrong type, unknown role).
        """
        try:
            payload = jwt.decode(token, self._key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if payload.get("type") != "access":
            raise InvalidTokenError()
        user_id = payload.get("sub")
        email = payload.get("email")
        if not isinstance(user_id, str) or not isinstance(email, str):
            raise InvalidTokenError()
        try:
            role = Role(payload.get("role"))
        except ValueError as exc:
            raise InvalidTokenError() from exc
        return Identity(user_id=user_id, email=email, role=role)

    # ------------------------------------------------------------------
    # Opaque tokens
    # ------------------------------------------------------------------

    def hash_token(self, raw: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string."""
        return hmac.new(self._key.encode(), raw.encode(), hashlib.sha256).hexdigest()

    def new_refresh_token(self) -> tuple[str, str]:
        """Return (raw, digest) for a new refresh token. 256 bits of entropy."""
        raw = secrets.token_urlsafe(32)
        return raw, self.hash_token(raw)

    def new_single_use_token(self) -> tuple[str, str]:
        """Return (raw, digest) for an email verification or password reset link.

        secrets.token_hex(32) gives 64 hex characters, safe in a URL query.
        """
        raw = secrets.token_hex(32)
        return raw, self.hash_token(raw)

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def set_session_cookies(self, response, access_token: str, refresh_token: str | None = None) -> None:
        """Write the session as HttpOnly, SameSite=strict cookies.

        The access cookie is scoped to /api/ and lives as long as the JWT.
        The refresh cookie is scoped to the auth routes only, so it never
        rides along on ordinary API calls.
        """
        response.set_cookie(
            ACCESS_COOKIE,
            value=access_token,
            httponly=True,
            samesite="strict",
            secure=self._settings.secure_cookies,
            max_age=self.access_token_ttl,
            path=ACCESS_COOKIE_PATH,
        )
        if refresh_token is not None:
            response.set_cookie(
                REFRESH_COOKIE,
                value=refresh_token,
                httponly=True,
                samesite="strict",
                secure=self._settings.secure_cookies,
                max_age=int(self.refresh_token_ttl.total_seconds()),
                path=REFRESH_COOKIE_PATH,
            )

    def clear_session_cookies(self, response) -> None:
        response.delete_cookie(
            ACCESS_COOKIE,
            path=ACCESS_COOKIE_PATH,
            httponly=True,
            samesite="strict",
            secure=self._settings.secure_cookies,
        )
        response.delete_cookie(
            REFRESH_COOKIE,
            path=REFRESH_COOKIE_PATH,
            httponly=True,
            samesite="strict",
            secure=self._settings.secure_cookies,
        )
