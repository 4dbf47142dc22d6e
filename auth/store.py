"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and refresh tokens.

Pattern: Repository + Data Mapper (same as plans/store.py and admin/audit.py).
UserStore is the repository; _row_to_user / _row_to_refresh_token are the
mappers. Services and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  users.email carries a UNIQUE index. create_user() lets IntegrityError
  propagate so the caller can treat a lost insert race as the duplicate
  case; a prior get_by_email() check alone has a race window.

  set_role / ban_user / delete_non_admin only touch rows whose role is not
  'admin'. The guard lives in the WHERE clause, so an admin account cannot
  be demoted, banned or deleted through these methods no matter who calls.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, which
keeps lexicographic order equal to chronological order for SQL comparisons.

Layer rule: no imports from api/, admin/, or plans/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import RefreshToken, Role, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.user.value, index=True),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("verification_token_hash", String(64), index=True),
    Column("verification_token_expires", String(32)),
    Column("password_reset_token_hash", String(64), index=True),
    Column("password_reset_expires", String(32)),
    Column("is_banned", Boolean, nullable=False, server_default="0", index=True),
    Column("ban_reason", Text),
    Column("banned_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite connection options every store needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # FastAPI runs sync handlers in a thread pool, so the same pooled
        # connection may be used from several threads.
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Render a datetime as a UTC ISO-8601 string. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and RefreshToken entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(email="a@b.com", password_hash=hash_password("secret")))
        user = store.get_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated UUID.

        The email is normalized here so no caller can bypass it. Raises
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = user.id or str(uuid.uuid4())
        now = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    role=Role(user.role).value,
                    email_verified=user.email_verified,
                    verification_token_hash=user.verification_token_hash,
                    verification_token_expires=user.verification_token_expires,
                    is_banned=False,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_emails(self, user_ids: set[str]) -> dict[str, str]:
        """Return {user_id: email} for the ids that still exist."""
        if not user_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.id, _users.c.email).where(_users.c.id.in_(user_ids))).fetchall()
        return {row.id: row.email for row in rows}

    def update_password(self, user_id: str, password_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Delete a user and every refresh token it owns. True if a user row was removed."""
        with self.engine.connect() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Single-use tokens (email verification, password reset)
    # ------------------------------------------------------------------

    def set_verification_token(self, user_id: str, token_hash: str, expires_at: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.email_verified.is_(False)))
                .values(
                    verification_token_hash=token_hash,
                    verification_token_expires=expires_at,
                    updated_at=now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def consume_verification_token(self, token_hash: str) -> User | None:
        """Mark the owner of an unexpired verification token as verified.

        The update clears the digest and its expiry together, and its WHERE
        clause re-checks the digest, so two concurrent requests with the same
        link cannot both succeed. Returns the verified user, or None.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.verification_token_hash == token_hash) & (_users.c.verification_token_expires > now)
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _users.update()
                .where((_users.c.id == row.id) & (_users.c.verification_token_hash == token_hash))
                .values(
                    email_verified=True,
                    verification_token_hash=None,
                    verification_token_expires=None,
                    updated_at=now,
                )
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(row.id)

    def set_password_reset_token(self, user_id: str, token_hash: str, expires_at: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password_reset_token_hash=token_hash,
                    password_reset_expires=expires_at,
                    updated_at=now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def consume_password_reset_token(self, token_hash: str, password_hash: str) -> str | None:
        """Replace the password of the owner of an unexpired reset token.

        Clears the reset digest and expiry in the same UPDATE, so the token
        works once. Returns the user id on success, None otherwise.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id).where(
                    (_users.c.password_reset_token_hash == token_hash) & (_users.c.password_reset_expires > now)
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(
                _users.update()
                .where((_users.c.id == row.id) & (_users.c.password_reset_token_hash == token_hash))
                .values(
                    password_hash=password_hash,
                    password_reset_token_hash=None,
                    password_reset_expires=None,
                    updated_at=now,
                )
            )
            conn.commit()
        return row.id if result.rowcount > 0 else None

    # ------------------------------------------------------------------
    # Guarded admin mutations (never touch admin rows)
    # ------------------------------------------------------------------

    def set_role(self, user_id: str, role: Role) -> bool:
        """Change the role of a non-admin user. False when missing or admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.role != Role.admin.value))
                .values(role=Role(role).value, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def ban_user(self, user_id: str, reason: str) -> bool:
        """Ban a non-admin user. False when missing or admin."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.role != Role.admin.value))
                .values(is_banned=True, ban_reason=reason, banned_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    def unban_user(self, user_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_banned=False, ban_reason=None, banned_at=None, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_non_admin(self, user_id: str) -> bool:
        """Delete a non-admin user and its refresh tokens. False when missing or admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.delete().where((_users.c.id == user_id) & (_users.c.role != Role.admin.value))
            )
            if result.rowcount > 0:
                conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Admin listing and stats
    # ------------------------------------------------------------------

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: Role | None = None,
        is_banned: bool | None = None,
        user_ids: set[str] | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count.

        user_ids restricts the result to a precomputed id set (the plan filter
        resolves subscribers first and passes them in).
        """
        conditions = []
        if search:
            conditions.append(_users.c.email.contains(search.strip().lower(), autoescape=True))
        if role is not None:
            conditions.append(_users.c.role == Role(role).value)
        if is_banned is not None:
            conditions.append(_users.c.is_banned.is_(is_banned))
        if user_ids is not None:
            if not user_ids:
                return [], 0
            conditions.append(_users.c.id.in_(user_ids))

        query = _users.select()
        count_query = select(func.count()).select_from(_users)
        for condition in conditions:
            query = query.where(condition)
            count_query = count_query.where(condition)
        query = query.order_by(_users.c.created_at.desc()).limit(limit).offset((page - 1) * limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def count_users(self) -> dict[str, int]:
        """Return {"total", "active", "banned"} account counts."""
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
            banned = (
                conn.execute(select(func.count()).select_from(_users).where(_users.c.is_banned.is_(True))).scalar()
                or 0
            )
        return {"total": total, "active": total - banned, "banned": banned}

    def signups_since(self, since: datetime) -> dict[str, int]:
        """Return {YYYY-MM-DD: count} for accounts created on or after ``since``."""
        day = func.substr(_users.c.created_at, 1, 10)
        stmt = (
            select(day.label("day"), func.count().label("count"))
            .where(_users.c.created_at >= to_iso(since))
            .group_by(day)
            .order_by(day)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return {row.day: row.count for row in rows}

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, user_id: str, token_hash: str, ttl: timedelta) -> RefreshToken:
        now = datetime.now(timezone.utc)
        token = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=to_iso(now + ttl),
            created_at=to_iso(now),
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=token.expires_at,
                    created_at=token.created_at,
                )
            )
            conn.commit()
        token.id = result.inserted_primary_key[0]
        return token

    def get_refresh_token(self, token_hash: str) -> RefreshToken | None:
        """Look up a refresh token by digest, expired or not."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    def delete_user_refresh_tokens(self, user_id: str) -> int:
        """Delete every refresh token of a user. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_refresh_tokens(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.user_id == user_id)
                ).scalar()
                or 0
            )

    def purge_expired_refresh_tokens(self) -> int:
        """Delete refresh tokens past their expiry. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= now_iso()))
            conn.commit()
        return result.rowcount

    def ping(self) -> bool:
        """Round-trip a trivial query. Used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        email_verified=bool(row.email_verified),
        verification_token_hash=row.verification_token_hash,
        verification_token_expires=row.verification_token_expires,
        password_reset_token_hash=row.password_reset_token_hash,
        password_reset_expires=row.password_reset_expires,
        is_banned=bool(row.is_banned),
        ban_reason=row.ban_reason,
        banned_at=row.banned_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
