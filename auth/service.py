"""
auth/service.py -- Registration, login, session and account-recovery flows.

AuthService is built once at startup with its collaborators (UserStore,
PlanStore, Mailer, TokenIssuer, Settings) and holds no per-request state.
Route handlers call one method per request and translate AuthError into the
HTTP error envelope.

Registration:
  Anonymous -> PendingVerification -> Verified  (mailer configured)
  Anonymous -> Verified                         (mailer not configured)

  A duplicate email, whether caught by the pre-check or by the UNIQUE index
  on insert, produces the same pending response as a fresh sign-up. The
  bootstrap admin role is decided here, once, from BOOTSTRAP_ADMIN_EMAIL.

Login pipeline (each step short-circuits):
  1. unknown email     -> InvalidCredentialsError (after a dummy bcrypt run)
  2. wrong password    -> InvalidCredentialsError
  3. banned            -> AccountSuspendedError with the stored reason
  4. unverified        -> EmailNotVerifiedError (only when the mailer is configured)
  5. success           -> access token + refresh token

  The ban check runs after the password check, so the ban reason is only
  disclosed to someone who already holds the password.

Forgot-password and resend-verification never reveal whether the address
exists; internal failures are logged and swallowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountSuspendedError,
    AuthenticationError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidPasswordError,
    InvalidRefreshTokenError,
)
from auth.models import Identity, Role, TokenPair, User
from auth.store import normalize_email, to_iso
from auth.tokens import hash_password, verify_password

if TYPE_CHECKING:
    from auth.mailer import Mailer
    from auth.store import UserStore
    from auth.tokens import TokenIssuer
    from core.config import Settings
    from plans.store import PlanStore

logger = logging.getLogger("labelforge.auth")

PENDING_MESSAGE = "If this address is available, a verification email has been sent. Please check your inbox."
CREATED_MESSAGE = "Account created."
MAIL_FAILED_MESSAGE = "Account created, but the verification email could not be sent. Request a new one from the login page."


@dataclass(frozen=True)
class Registration:
    """Outcome of register().

    user is None for a duplicate email; the route renders the submitted
    address as an unverified summary so both cases look the same.
    tokens is set only on the immediate-verification path.
    """

    email: str
    message: str
    requires_verification: bool
    user: User | None = None
    tokens: TokenPair | None = None


class AuthService:
    """Account lifecycle and session issuance.

    Usage:
        service = AuthService(users, plans, mailer, issuer, settings)
        user, tokens = service.login("a@b.com", "Str0ng!Pass1")
    """

    def __init__(
        self,
        users: UserStore,
        plans: PlanStore,
        mailer: Mailer,
        issuer: TokenIssuer,
        settings: Settings,
    ) -> None:
        self.users = users
        self.plans = plans
        self.mailer = mailer
        self.issuer = issuer
        self._settings = settings
        self._rounds = settings.bcrypt_rounds
        # Computed once so unknown-email logins pay the same bcrypt cost as real ones.
        self._dummy_hash = hash_password("labelforge_timing_dummy", self._rounds)

    @property
    def verification_required(self) -> bool:
        return self.mailer.is_configured

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> Registration:
        """Create an account. Duplicate emails get the same pending response."""
        email = normalize_email(email)
        pending = Registration(email=email, message=PENDING_MESSAGE, requires_verification=True)

        if self.users.get_by_email(email) is not None:
            logger.info("Registration for existing email ignored")
            return pending

        needs_verification = self.verification_required
        role = Role.admin if self._is_bootstrap_admin(email) else Role.user
        raw_token: str | None = None
        user = User(email=email, password_hash=hash_password(password, self._rounds), role=role)
        if needs_verification:
            raw_token, token_hash = self.issuer.new_single_use_token()
            user.verification_token_hash = token_hash
            user.verification_token_expires = self._expiry(hours=self._settings.verification_token_expire_hours)
        else:
            user.email_verified = True

        try:
            user_id = self.users.create_user(user)
        except IntegrityError:
            # Lost the race against a concurrent registration for the same email.
            logger.info("Registration insert hit the unique email index")
            return pending

        self.plans.assign_default_plan(user_id)
        created = self.users.get_by_id(user_id)
        logger.info("User %s registered (role=%s, verified=%s)", user_id, role.value, created.email_verified)
        if role is Role.admin:
            logger.warning("User %s granted admin at creation via bootstrap email", user_id)

        if raw_token is not None:
            sent = self.mailer.send_verification_email(email, raw_token)
            return Registration(
                email=email,
                message=PENDING_MESSAGE if sent else MAIL_FAILED_MESSAGE,
                requires_verification=True,
                user=created,
            )

        return Registration(
            email=email,
            message=CREATED_MESSAGE,
            requires_verification=False,
            user=created,
            tokens=self.issue_session(created),
        )

    def _is_bootstrap_admin(self, email: str) -> bool:
        bootstrap = self._settings.bootstrap_admin_email
        return bool(bootstrap) and email == bootstrap

    # ------------------------------------------------------------------
    # Login / session
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> tuple[User, TokenPair]:
        user = self.users.get_by_email(email)
        if user is None:
            verify_password(password, self._dummy_hash)
            logger.info("Login failed: unknown email")
            raise InvalidCredentialsError()
        if not verify_password(password, user.password_hash):
            logger.info("Login failed: bad password for user %s", user.id)
            raise InvalidCredentialsError()
        if user.is_banned:
            logger.warning("Login refused: user %s is suspended", user.id)
            raise AccountSuspendedError(user.ban_reason)
        if self.verification_required and not user.email_verified:
            logger.info("Login refused: user %s has not verified their email", user.id)
            raise EmailNotVerifiedError(user.email)

        if self._settings.session_policy == "single":
            revoked = self.users.delete_user_refresh_tokens(user.id)
            logger.info("Single-session policy revoked %d refresh token(s) for user %s", revoked, user.id)

        logger.info("User %s logged in", user.id)
        return user, self.issue_session(user)

    def resolve_session(self, access_token: str) -> tuple[Identity, User]:
        """Verify an access token and re-read ban state from the store.

        Raises InvalidTokenError/ExpiredTokenError for a bad token,
        AuthenticationError when the account no longer exists, and
        AccountSuspendedError when it is banned. The returned Identity is
        built from the stored row, so a role change applies immediately.
        """
        claimed = self.issuer.decode_access_token(access_token)
        user = self.users.get_by_id(claimed.user_id)
        if user is None:
            logger.info("Token for missing user %s rejected", claimed.user_id)
            raise AuthenticationError("User not found.")
        if user.is_banned:
            logger.warning("Request from suspended user %s rejected", user.id)
            raise AccountSuspendedError(user.ban_reason)
        return Identity(user_id=user.id, email=user.email, role=user.role), user

    def issue_session(self, user: User) -> TokenPair:
        access = self.issuer.create_access_token(user.id, user.email, user.role)
        refresh = self.issue_refresh_token(user.id)
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.issuer.access_token_ttl)

    def issue_refresh_token(self, user_id: str) -> str:
        """Persist a new refresh token digest and return the raw value."""
        raw, digest = self.issuer.new_refresh_token()
        self.users.create_refresh_token(user_id, digest, self.issuer.refresh_token_ttl)
        return raw

    def verify_refresh_token(self, raw: str) -> User:
        """Return the owner of a live refresh token. Does not rotate."""
        record = self.users.get_refresh_token(self.issuer.hash_token(raw))
        if record is None:
            raise InvalidRefreshTokenError()
        if datetime.fromisoformat(record.expires_at) <= datetime.now(timezone.utc):
            self.users.delete_refresh_token(record.token_hash)
            raise InvalidRefreshTokenError()
        user = self.users.get_by_id(record.user_id)
        if user is None or user.is_banned:
            raise InvalidRefreshTokenError()
        return user

    def refresh_session(self, raw: str | None) -> tuple[User, TokenPair]:
        """Mint a new access token from a refresh token.

        With REFRESH_TOKEN_ROTATION enabled the presented token is revoked and
        replaced; otherwise the same refresh token is handed back.
        """
        if not raw:
            raise AuthenticationError("Refresh token missing.")
        user = self.verify_refresh_token(raw)
        refresh = raw
        if self._settings.refresh_token_rotation:
            # Only the caller whose delete removed the row may rotate.
            if not self.revoke_refresh_token(raw):
                logger.warning("Refresh token for user %s was already rotated", user.id)
                raise InvalidRefreshTokenError()
            refresh = self.issue_refresh_token(user.id)
        access = self.issuer.create_access_token(user.id, user.email, user.role)
        return user, TokenPair(access_token=access, refresh_token=refresh, expires_in=self.issuer.access_token_ttl)

    def revoke_refresh_token(self, raw: str) -> bool:
        return self.users.delete_refresh_token(self.issuer.hash_token(raw))

    def revoke_all_refresh_tokens(self, user_id: str) -> int:
        return self.users.delete_user_refresh_tokens(user_id)

    def logout(self, raw: str | None) -> None:
        """Best-effort revocation. Never raises to the caller."""
        if not raw:
            return
        try:
            self.revoke_refresh_token(raw)
        except Exception:
            logger.exception("Refresh token revocation failed during logout")

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, raw_token: str) -> User:
        user = self.users.consume_verification_token(self.issuer.hash_token(raw_token))
        if user is None:
            raise InvalidInputError("Invalid or expired verification link.")
        logger.info("User %s verified their email", user.id)
        return user

    def resend_verification(self, email: str) -> None:
        """Send a fresh verification link if the account exists and is unverified."""
        try:
            user = self.users.get_by_email(email)
            if user is None or user.email_verified or not self.verification_required:
                return
            raw, digest = self.issuer.new_single_use_token()
            expires = self._expiry(hours=self._settings.verification_token_expire_hours)
            if self.users.set_verification_token(user.id, digest, expires):
                self.mailer.send_verification_email(user.email, raw)
        except Exception:
            logger.exception("Resend verification failed")

    # ------------------------------------------------------------------
    # Password recovery and change
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> None:
        """Email a reset link if the account exists. Always looks successful."""
        try:
            user = self.users.get_by_email(email)
            if user is None:
                return
            raw, digest = self.issuer.new_single_use_token()
            expires = self._expiry(minutes=self._settings.password_reset_expire_minutes)
            self.users.set_password_reset_token(user.id, digest, expires)
            if not self.mailer.send_password_reset_email(user.email, raw):
                logger.warning("Password reset email for user %s was not delivered", user.id)
        except Exception:
            logger.exception("Password reset request failed")

    def reset_password(self, raw_token: str, new_password: str) -> bool:
        """Set a new password from a reset link. False for an unknown, expired or used token.

        Every refresh token of the account is revoked on success.
        """
        user_id = self.users.consume_password_reset_token(
            self.issuer.hash_token(raw_token),
            hash_password(new_password, self._rounds),
        )
        if user_id is None:
            return False
        revoked = self.revoke_all_refresh_tokens(user_id)
        logger.info("User %s reset their password; %d session(s) revoked", user_id, revoked)
        return True

    def change_password(self, user_id: str, current_password: str, new_password: str) -> TokenPair:
        """Replace the password, revoke every session, and start a new one."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise AuthenticationError("User not found.")
        if not verify_password(current_password, user.password_hash):
            raise InvalidPasswordError()
        self.users.update_password(user.id, hash_password(new_password, self._rounds))
        self.revoke_all_refresh_tokens(user.id)
        logger.info("User %s changed their password", user.id)
        return self.issue_session(user)

    # ------------------------------------------------------------------
    # Account deletion
    # ------------------------------------------------------------------

    def delete_account(self, user_id: str) -> bool:
        self.revoke_all_refresh_tokens(user_id)
        deleted = self.users.delete_user(user_id)
        if deleted:
            self.plans.delete_subscription(user_id)
            logger.info("User %s deleted their account", user_id)
        return deleted

    def purge_expired_tokens(self) -> int:
        return self.users.purge_expired_refresh_tokens()

    @staticmethod
    def _expiry(**delta: int) -> str:
        return to_iso(datetime.now(timezone.utc) + timedelta(**delta))
