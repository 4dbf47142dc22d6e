"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - bcrypt hashing: salted, verifies, malformed digest is a non-match
  - inputs beyond bcrypt's 72-byte window hash without error
  - access token round trip carries sub / email / role
  - expired token -> ExpiredTokenError; wrong secret, alg "none", wrong type,
    unknown role and garbage -> InvalidTokenError
  - opaque tokens: raw value differs from stored digest, digest is deterministic
  - cookie helpers set HttpOnly, SameSite=strict cookies on the right paths
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.responses import JSONResponse
from jose import jwt

from auth.errors import ExpiredTokenError, InvalidTokenError
from auth.models import Role
from auth.tokens import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    TokenIssuer,
    hash_password,
    verify_password,
)
from core.config import Settings


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


class TestPasswordHashing:
    def test_hash_is_salted_and_verifies(self):
        first = hash_password("Str0ng!Pass1", rounds=4)
        second = hash_password("Str0ng!Pass1", rounds=4)
        assert first != second
        assert verify_password("Str0ng!Pass1", first)
        assert verify_password("Str0ng!Pass1", second)

    def test_wrong_password_is_rejected(self):
        digest = hash_password("Str0ng!Pass1", rounds=4)
        assert not verify_password("Str0ng!Pass2", digest)

    def test_malformed_digest_is_a_non_match(self):
        """A corrupt stored hash must not raise out of verify_password."""
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_long_password_is_accepted(self):
        """Passwords past 72 bytes are truncated rather than rejected."""
        long_password = "A1!" + "x" * 120
        digest = hash_password(long_password, rounds=4)
        assert verify_password(long_password, digest)


class TestAccessTokens:
    def test_round_trip(self, issuer: TokenIssuer):
        token = issuer.create_access_token("user-1", "a@b.com", Role.admin)
        identity = issuer.decode_access_token(token)
        assert identity.user_id == "user-1"
        assert identity.email == "a@b.com"
        assert identity.role is Role.admin

    def test_claims_include_type_and_expiry(self, issuer: TokenIssuer, settings: Settings):
        token = issuer.create_access_token("user-1", "a@b.com", "user")
        claims = jwt.get_unverified_claims(token)
        assert claims["type"] == "access"
        assert claims["role"] == "user"
        assert claims["exp"] - claims["iat"] == settings.access_token_expire_seconds

    def test_expired_token_raises_expired(self, issuer: TokenIssuer):
        token = issuer.create_access_token("user-1", "a@b.com", Role.user, expire_seconds=-10)
        with pytest.raises(ExpiredTokenError):
            issuer.decode_access_token(token)

    def test_expired_is_still_an_invalid_token(self, issuer: TokenIssuer):
        """Route handlers only catch InvalidTokenError; expiry must be a subclass."""
        token = issuer.create_access_token("user-1", "a@b.com", Role.user, expire_seconds=-10)
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token(token)

    def test_token_signed_with_other_secret_is_rejected(self, issuer: TokenIssuer):
        other = TokenIssuer(Settings(secret_key="z" * 48, debug=True))
        token = other.create_access_token("user-1", "a@b.com", Role.admin)
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token(token)

    def test_alg_none_is_rejected(self, issuer: TokenIssuer):
        now = int(datetime.now(timezone.utc).timestamp())
        header = _b64({"alg": "none", "typ": "JWT"})
        payload = _b64({"sub": "user-1", "email": "a@b.com", "role": "admin", "type": "access", "exp": now + 600})
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token(f"{header}.{payload}.")

    def test_wrong_token_type_is_rejected(self, issuer: TokenIssuer, settings: Settings):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"sub": "user-1", "email": "a@b.com", "role": "user", "type": "refresh", "exp": exp},
            settings.secret_key,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token(token)

    def test_unknown_role_is_rejected(self, issuer: TokenIssuer, settings: Settings):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"sub": "user-1", "email": "a@b.com", "role": "superuser", "type": "access", "exp": exp},
            settings.secret_key,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token(token)

    def test_missing_subject_is_rejected(self, issuer: TokenIssuer, settings: Settings):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"email": "a@b.com", "role": "user", "type": "access", "exp": exp},
            settings.secret_key,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token(token)

    def test_garbage_is_rejected(self, issuer: TokenIssuer):
        with pytest.raises(InvalidTokenError):
            issuer.decode_access_token("not.a.jwt")

    def test_issuer_refuses_to_sign_without_secret(self, settings: Settings):
        unkeyed = settings.model_copy(update={"secret_key": ""})
        with pytest.raises(RuntimeError):
            TokenIssuer(unkeyed).create_access_token("user-1", "a@b.com", Role.user)


class TestOpaqueTokens:
    def test_refresh_token_digest_differs_from_raw(self, issuer: TokenIssuer):
        raw, digest = issuer.new_refresh_token()
        assert raw != digest
        assert len(digest) == 64
        assert issuer.hash_token(raw) == digest

    def test_single_use_token_is_hex(self, issuer: TokenIssuer):
        raw, digest = issuer.new_single_use_token()
        assert len(raw) == 64
        int(raw, 16)
        assert issuer.hash_token(raw) == digest

    def test_tokens_are_unique(self, issuer: TokenIssuer):
        raws = {issuer.new_refresh_token()[0] for _ in range(20)}
        assert len(raws) == 20

    def test_digest_depends_on_secret(self, issuer: TokenIssuer):
        other = TokenIssuer(Settings(secret_key="q" * 48, debug=True))
        assert issuer.hash_token("same") != other.hash_token("same")


class TestCookies:
    def test_session_cookies_are_http_only_and_scoped(self, issuer: TokenIssuer):
        resp = JSONResponse(content={})
        issuer.set_session_cookies(resp, "access-value", "refresh-value")
        cookies = resp.headers.getlist("set-cookie")
        access = next(c for c in cookies if c.startswith(f"{ACCESS_COOKIE}="))
        refresh = next(c for c in cookies if c.startswith(f"{REFRESH_COOKIE}="))
        assert "HttpOnly" in access and "samesite=strict" in access.lower()
        assert "Path=/api/" in access
        assert "HttpOnly" in refresh and "Path=/api/v1/auth/" in refresh

    def test_access_only_leaves_refresh_cookie_alone(self, issuer: TokenIssuer):
        resp = JSONResponse(content={})
        issuer.set_session_cookies(resp, "access-value")
        cookies = resp.headers.getlist("set-cookie")
        assert len(cookies) == 1
        assert cookies[0].startswith(f"{ACCESS_COOKIE}=")

    def test_clear_expires_both_cookies(self, issuer: TokenIssuer):
        resp = JSONResponse(content={})
        issuer.clear_session_cookies(resp)
        cookies = resp.headers.getlist("set-cookie")
        assert len(cookies) == 2
        assert all("Max-Age=0" in c for c in cookies)
