"""
tests/conftest.py -- Shared test fixtures for LabelForge unit and integration tests.

This module provides:
  - db_url: a unique named shared-memory SQLite URI per test
  - make_account: factory that inserts a user straight into a UserStore
  - mailer_factory: factory for a recording stand-in Mailer
  - stores / auth_service / admin_service: service-level fixtures on a fresh DB
  - verifying_auth_service: AuthService whose mailer reports "configured"
  - api / api_client: TestClient on the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool, and because the
three stores open separate engines that must see one database. The URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment variables must be set before any project import: get_settings()
is cached on first call, and route modules read rate limits at import time.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from types import SimpleNamespace
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PASSWORD_RESET_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DEFAULT_RATE_LIMIT", "10000/minute")
os.environ.setdefault("BOOTSTRAP_ADMIN_EMAIL", "founder@labelforge.example.com")
for _var in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "TOKEN_DELIVERY", "SESSION_POLICY"):
    os.environ.pop(_var, None)

import pytest
from fastapi.testclient import TestClient

from admin.audit import AuditLog
from admin.service import AdminService
from api.main import app, build_services, close_services
from auth.mailer import Mailer
from auth.models import Role, User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer, hash_password
from core.config import get_settings
from plans.store import PlanStore

PASSWORD = "Str0ng!Pass1"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(name: str) -> str:
    """Return a named shared-memory SQLite URI unique to this call.

    The random suffix keeps modules and tests from seeing each other's rows.
    """
    return f"sqlite:///file:test_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def create_account(
    store: UserStore,
    email: str,
    password: str = PASSWORD,
    role: Role = Role.user,
    verified: bool = True,
) -> str:
    """Insert a user directly, bypassing registration. Returns the new id."""
    return store.create_user(
        User(
            email=email,
            password_hash=hash_password(password, get_settings().bcrypt_rounds),
            role=role,
            email_verified=verified,
        )
    )


def fake_mailer(configured: bool = True, delivers: bool = True) -> MagicMock:
    """A Mailer stand-in that records calls instead of talking SMTP."""
    mailer = MagicMock(spec=Mailer)
    mailer.is_configured = configured
    mailer.send_verification_email.return_value = delivers
    mailer.send_password_reset_email.return_value = delivers
    return mailer


# ---------------------------------------------------------------------------
# Service-level fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db_url() -> str:
    return memory_db_url("unit")


@pytest.fixture
def make_account():
    """Factory fixture: make_account(store, email, password=..., role=..., verified=...) -> id."""
    return create_account


@pytest.fixture
def mailer_factory():
    """Factory fixture: mailer_factory(configured=True, delivers=True) -> MagicMock Mailer."""
    return fake_mailer


@pytest.fixture
def issuer(settings) -> TokenIssuer:
    return TokenIssuer(settings)


@pytest.fixture
def stores(db_url) -> Generator[SimpleNamespace, None, None]:
    """UserStore, PlanStore and AuditLog sharing one in-memory database."""
    ns = SimpleNamespace(users=UserStore(db_url), plans=PlanStore(db_url), audit=AuditLog(db_url))
    yield ns
    ns.users.close()
    ns.plans.close()
    ns.audit.close()


@pytest.fixture
def auth_service(stores, issuer, settings) -> AuthService:
    """AuthService with no mail capability: accounts are verified on creation."""
    return AuthService(stores.users, stores.plans, fake_mailer(configured=False), issuer, settings)


@pytest.fixture
def verifying_auth_service(stores, issuer, settings) -> AuthService:
    """AuthService whose mailer is configured: accounts start unverified."""
    return AuthService(stores.users, stores.plans, fake_mailer(configured=True), issuer, settings)


@pytest.fixture
def admin_service(stores, auth_service) -> AdminService:
    return AdminService(stores.users, stores.plans, stores.audit, auth_service)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_url: str):
    """Return an async context manager that replaces the real lifespan.

    Builds the real stores and services on an isolated in-memory database.
    The purge_task is a long-sleeping coroutine so shutdown can cancel it
    exactly like the real one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, db_url)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        close_services(app)

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    admin_id: str
    admin_token: str
    user_id: str
    user_token: str

    @property
    def users(self) -> UserStore:
        return self.client.app.state.user_store

    @property
    def issuer(self) -> TokenIssuer:
        return self.client.app.state.auth_service.issuer

    def bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def token_for(self, user_id: str) -> str:
        user = self.users.get_by_id(user_id)
        return self.issuer.create_access_token(user.id, user.email, user.role)


@pytest.fixture(scope="module")
def api() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with one admin and one regular user already created.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers against an isolated in-memory database.
    """
    app.router.lifespan_context = _patch_lifespan(memory_db_url("api"))

    with TestClient(app, raise_server_exceptions=True) as client:
        users: UserStore = app.state.user_store
        plans: PlanStore = app.state.plan_store
        admin_id = create_account(users, "admin@labelforge.example.com", role=Role.admin)
        user_id = create_account(users, "member@labelforge.example.com")
        plans.assign_default_plan(admin_id)
        plans.assign_default_plan(user_id)
        issuer: TokenIssuer = app.state.auth_service.issuer
        yield ApiContext(
            client=client,
            admin_id=admin_id,
            admin_token=issuer.create_access_token(admin_id, "admin@labelforge.example.com", Role.admin),
            user_id=user_id,
            user_token=issuer.create_access_token(user_id, "member@labelforge.example.com", Role.user),
        )


@pytest.fixture
def api_client(api) -> ApiContext:
    """The module's ApiContext with an empty cookie jar.

    Login responses set cookies on the shared client; clearing them keeps
    one test's session from authenticating the next test's requests.
    """
    api.client.cookies.clear()
    return api
