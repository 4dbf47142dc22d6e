"""
API request and response models for LabelForge REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
plans/models.py and admin/models.py, which own the internal domain
representation. Route handlers map between the two.

Input normalization (trimmed, lowercased email) and the password composition
policy live here, so the services receive already-validated values.
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from admin.models import AuditLogEntry
from auth.models import User
from plans.models import Plan, Subscription

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128

_UPPER = re.compile(r"[A-Z]")
_DIGIT = re.compile(r"\d")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")


def _normalize_email(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def _check_password_policy(value: str) -> str:
    missing = [
        label
        for label, pattern in (("an uppercase letter", _UPPER), ("a digit", _DIGIT), ("a symbol", _SYMBOL))
        if not pattern.search(value)
    ]
    if missing:
        raise ValueError(f"Password must contain {', '.join(missing)}.")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No composition check here: an old password that predates the policy must
    still be able to log in.
    """

    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _normalize_email(value)


class EmailRequest(BaseModel):
    """Request body for resend-verification and forgot-password."""

    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _normalize_email(value)


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email."""

    token: str = Field(min_length=1, max_length=256)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)


class ChangePasswordRequest(BaseModel):
    """Request body for PUT /api/v1/auth/password."""

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)


class RefreshRequest(BaseModel):
    """Optional body for refresh and logout when tokens are delivered in JSON."""

    refresh_token: Optional[str] = Field(default=None, max_length=256)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public view of an account. Never includes hashes or tokens."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    email: str
    email_verified: bool
    role: Optional[RoleEnum] = None

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, email=user.email, email_verified=user.email_verified, role=user.role.value)


class AuthResponse(BaseModel):
    """Response for register, login, refresh and password change.

    access_token / refresh_token are only populated when TOKEN_DELIVERY=body;
    in cookie mode they travel as HttpOnly cookies instead.
    """

    model_config = ConfigDict(frozen=True)

    user: Optional[UserSummary] = None
    message: Optional[str] = None
    requires_verification: Optional[bool] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user: UserSummary


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Admin -- request models
# ---------------------------------------------------------------------------


class RoleChangeRequest(BaseModel):
    """Request body for PUT /api/v1/admin/users/{id}/role."""

    role: RoleEnum


class BanRequest(BaseModel):
    """Request body for POST /api/v1/admin/users/{id}/ban."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: Optional[str] = Field(default=None, max_length=500)


class PlanChangeRequest(BaseModel):
    """Request body for PUT /api/v1/admin/users/{id}/plan."""

    model_config = ConfigDict(str_strip_whitespace=True)

    plan: str = Field(min_length=1, max_length=50, description="Plan slug, e.g. 'pro'.")


# ---------------------------------------------------------------------------
# Admin -- response models
# ---------------------------------------------------------------------------


class PlanResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    description: str
    price_monthly: float
    max_projects: int
    max_exports_per_month: int
    features: list[str]
    is_active: bool

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            slug=plan.slug,
            description=plan.description,
            price_monthly=plan.price_monthly,
            max_projects=plan.max_projects,
            max_exports_per_month=plan.max_exports_per_month,
            features=plan.features,
            is_active=plan.is_active,
        )


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: str
    plan_name: str
    status: str
    current_period_start: str
    current_period_end: Optional[str] = None

    @classmethod
    def from_subscription(cls, sub: Optional[Subscription]) -> Optional["SubscriptionResponse"]:
        if sub is None:
            return None
        return cls(
            plan=sub.plan_slug,
            plan_name=sub.plan_name,
            status=sub.status,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
        )


class AdminUserResponse(BaseModel):
    """One account as seen by an admin."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: RoleEnum
    email_verified: bool
    is_banned: bool
    ban_reason: Optional[str] = None
    banned_at: Optional[str] = None
    created_at: str
    updated_at: str
    subscription: Optional[SubscriptionResponse] = None

    @classmethod
    def from_user(cls, user: User, sub: Optional[Subscription] = None) -> "AdminUserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role.value,
            email_verified=user.email_verified,
            is_banned=user.is_banned,
            ban_reason=user.ban_reason,
            banned_at=user.banned_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
            subscription=SubscriptionResponse.from_subscription(sub),
        )


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[AdminUserResponse]
    total: int
    pages: int


class AuditLogRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    admin_id: str
    admin_email: Optional[str] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    details: dict[str, Any]
    ip_address: str
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogRow":
        return cls(
            id=entry.id,
            admin_id=entry.admin_id,
            admin_email=entry.admin_email,
            action=entry.action.value,
            target_type=entry.target_type,
            target_id=entry.target_id,
            details=entry.details,
            ip_address=entry.ip_address,
            created_at=entry.created_at,
        )


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[AuditLogRow]
    total: int
    pages: int


class StatsResponse(BaseModel):
    """Response for GET /api/v1/admin/stats."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    active_users: int
    banned_users: int
    users_by_plan: dict[str, int]
    recent_signups: dict[str, int]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    reason is set for suspended accounts; requires_verification and email
    for logins blocked on email verification; errors for field validation.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    reason: Optional[str] = None
    requires_verification: Optional[bool] = None
    email: Optional[str] = None
    errors: Optional[list[dict[str, Any]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
