"""
api/routes/v1/admin.py -- Admin-only user management, plans and audit log.

Routes (all require_admin):
  GET    /api/v1/admin/stats               -- account and plan counters
  GET    /api/v1/admin/users               -- paginated, filterable user list
  GET    /api/v1/admin/users/{id}          -- one user with subscription
  PUT    /api/v1/admin/users/{id}/role     -- change role      (audited)
  POST   /api/v1/admin/users/{id}/ban      -- ban              (audited)
  DELETE /api/v1/admin/users/{id}/ban      -- unban            (audited)
  DELETE /api/v1/admin/users/{id}          -- delete           (audited)
  PUT    /api/v1/admin/users/{id}/plan     -- change plan      (audited)
  GET    /api/v1/admin/plans               -- plan catalogue
  GET    /api/v1/admin/audit-log           -- paginated audit trail

Path ids are typed uuid.UUID, so FastAPI answers 422 for a malformed id
before the handler or any store call runs.

Role change, ban and delete refuse the caller's own id (400 self_target) and
never affect an admin target (404 not_found, same as a missing id).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from admin.models import AuditAction
from admin.service import MAX_PAGE_SIZE, AdminService
from api.models import (
    AdminUserResponse,
    AuditLogResponse,
    AuditLogRow,
    BanRequest,
    PlanChangeRequest,
    PlanResponse,
    RoleChangeRequest,
    RoleEnum,
    StatsResponse,
    SubscriptionResponse,
    UserListResponse,
)
from auth.dependencies import require_admin
from auth.models import Identity, Role

router = APIRouter(prefix="/admin")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AdminService:
    return request.app.state.admin_service


def client_ip(request: Request) -> str:
    """Best-effort source address: first X-Forwarded-For hop, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first[:45]
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=StatsResponse)
def stats(request: Request, admin: Identity = Depends(require_admin)) -> StatsResponse:
    return StatsResponse(**_service(request).stats())


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    search: Optional[str] = Query(default=None, max_length=255),
    role: Optional[RoleEnum] = None,
    is_banned: Optional[bool] = None,
    plan: Optional[str] = Query(default=None, max_length=50),
    admin: Identity = Depends(require_admin),
) -> UserListResponse:
    """List users newest first. Filters combine with AND."""
    rows, total, pages = _service(request).list_users(
        page=page,
        limit=limit,
        search=search,
        role=Role(role.value) if role is not None else None,
        is_banned=is_banned,
        plan=plan,
    )
    return UserListResponse(
        items=[AdminUserResponse.from_user(user, sub) for user, sub in rows],
        total=total,
        pages=pages,
    )


@router.get("/users/{user_id}", response_model=AdminUserResponse)
def user_detail(request: Request, user_id: uuid.UUID, admin: Identity = Depends(require_admin)) -> AdminUserResponse:
    user, sub = _service(request).user_detail(str(user_id))
    return AdminUserResponse.from_user(user, sub)


@router.get("/plans", response_model=list[PlanResponse])
def list_plans(request: Request, admin: Identity = Depends(require_admin)) -> list[PlanResponse]:
    return [PlanResponse.from_plan(p) for p in _service(request).list_plans()]


@router.get("/audit-log", response_model=AuditLogResponse)
def audit_log(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    admin_id: Optional[uuid.UUID] = None,
    action: Optional[AuditAction] = None,
    target_type: Optional[str] = Query(default=None, max_length=50),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    admin: Identity = Depends(require_admin),
) -> AuditLogResponse:
    """Audit trail newest first, each row carrying the acting admin's email."""
    entries, total, pages = _service(request).audit_log(
        page=page,
        limit=limit,
        admin_id=str(admin_id) if admin_id is not None else None,
        action=action,
        target_type=target_type,
        start=start_date,
        end=end_date,
    )
    return AuditLogResponse(items=[AuditLogRow.from_entry(e) for e in entries], total=total, pages=pages)


# ---------------------------------------------------------------------------
# Guarded mutations
# ---------------------------------------------------------------------------


@router.put("/users/{user_id}/role", response_model=AdminUserResponse)
def change_role(
    request: Request,
    user_id: uuid.UUID,
    body: RoleChangeRequest,
    admin: Identity = Depends(require_admin),
) -> AdminUserResponse:
    user = _service(request).change_role(admin.user_id, str(user_id), Role(body.role.value), ip=client_ip(request))
    return AdminUserResponse.from_user(user)


@router.post("/users/{user_id}/ban", response_model=AdminUserResponse)
def ban_user(
    request: Request,
    user_id: uuid.UUID,
    body: Optional[BanRequest] = None,
    admin: Identity = Depends(require_admin),
) -> AdminUserResponse:
    reason = body.reason if body is not None else None
    user = _service(request).ban_user(admin.user_id, str(user_id), reason, ip=client_ip(request))
    return AdminUserResponse.from_user(user)


@router.delete("/users/{user_id}/ban", response_model=AdminUserResponse)
def unban_user(request: Request, user_id: uuid.UUID, admin: Identity = Depends(require_admin)) -> AdminUserResponse:
    user = _service(request).unban_user(admin.user_id, str(user_id), ip=client_ip(request))
    return AdminUserResponse.from_user(user)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: uuid.UUID, admin: Identity = Depends(require_admin)) -> Response:
    _service(request).delete_user(admin.user_id, str(user_id), ip=client_ip(request))
    return Response(status_code=204)


@router.put("/users/{user_id}/plan", response_model=SubscriptionResponse)
def change_plan(
    request: Request,
    user_id: uuid.UUID,
    body: PlanChangeRequest,
    admin: Identity = Depends(require_admin),
) -> SubscriptionResponse:
    sub = _service(request).change_plan(admin.user_id, str(user_id), body.plan, ip=client_ip(request))
    return SubscriptionResponse.from_subscription(sub)
