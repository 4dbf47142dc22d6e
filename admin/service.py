"""
admin/service.py -- Privileged user mutations, admin read views, and auditing.

Mutation guard order for change_role / ban_user / delete_user:
  1. actor == target         -> SelfTargetError, before any store call
  2. conditional store write -> only non-admin rows are affected; zero rows
                                (missing id or an admin target) -> NotFoundError
  3. one AuditLogEntry appended per successful mutation

unban_user and change_plan skip the self-target check.

Audit writes are best-effort: a failed append is logged and the mutation
still stands. The mutation has already been committed by then and the
caller is told it succeeded.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from admin.models import AuditAction, AuditLogEntry
from auth.errors import InvalidInputError, NotFoundError, SelfTargetError
from auth.models import Role, User

if TYPE_CHECKING:
    from admin.audit import AuditLog
    from auth.service import AuthService
    from auth.store import UserStore
    from plans.models import Plan, Subscription
    from plans.store import PlanStore

logger = logging.getLogger("labelforge.admin")

DEFAULT_BAN_REASON = "No reason provided."
MAX_PAGE_SIZE = 100


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


class AdminService:
    """Admin-only operations. Callers must already have passed require_admin.

    Usage:
        admin = AdminService(users, plans, audit, auth_service)
        admin.ban_user(actor_id, target_id, "spam", ip="203.0.113.7")
    """

    def __init__(self, users: UserStore, plans: PlanStore, audit: AuditLog, auth_service: AuthService) -> None:
        self.users = users
        self.plans = plans
        self.audit = audit
        self.auth_service = auth_service

    # ------------------------------------------------------------------
    # Guarded mutations
    # ------------------------------------------------------------------

    def change_role(self, actor_id: str, target_id: str, role: Role, ip: str = "unknown") -> User:
        role = Role(role)
        self._reject_self(actor_id, target_id, "change the role of")
        before = self.users.get_by_id(target_id)
        if before is None or not self.users.set_role(target_id, role):
            raise NotFoundError("User not found or cannot be modified.")
        self._record(
            actor_id,
            AuditAction.change_role,
            target_id,
            {"email": before.email, "old_role": before.role.value, "new_role": role.value},
            ip,
        )
        logger.info("Admin %s changed role of %s from %s to %s", actor_id, target_id, before.role.value, role.value)
        return self._reload(target_id)

    def ban_user(self, actor_id: str, target_id: str, reason: str | None = None, ip: str = "unknown") -> User:
        self._reject_self(actor_id, target_id, "ban")
        reason = (reason or "").strip() or DEFAULT_BAN_REASON
        if not self.users.ban_user(target_id, reason):
            raise NotFoundError("User not found or cannot be banned.")
        target = self._reload(target_id)
        # Sessions do not survive a ban, even once it is lifted.
        self.auth_service.revoke_all_refresh_tokens(target_id)
        self._record(actor_id, AuditAction.ban_user, target_id, {"email": target.email, "reason": reason}, ip)
        logger.warning("Admin %s banned user %s", actor_id, target_id)
        return target

    def unban_user(self, actor_id: str, target_id: str, ip: str = "unknown") -> User:
        if not self.users.unban_user(target_id):
            raise NotFoundError("User not found.")
        target = self._reload(target_id)
        self._record(actor_id, AuditAction.unban_user, target_id, {"email": target.email}, ip)
        logger.info("Admin %s unbanned user %s", actor_id, target_id)
        return target

    def delete_user(self, actor_id: str, target_id: str, ip: str = "unknown") -> None:
        self._reject_self(actor_id, target_id, "delete")
        before = self.users.get_by_id(target_id)
        if before is None or not self.users.delete_non_admin(target_id):
            raise NotFoundError("User not found or cannot be deleted.")
        self.plans.delete_subscription(target_id)
        self._record(actor_id, AuditAction.delete_user, target_id, {"email": before.email}, ip)
        logger.warning("Admin %s deleted user %s", actor_id, target_id)

    def change_plan(self, actor_id: str, target_id: str, plan_slug: str, ip: str = "unknown") -> Subscription:
        target = self.users.get_by_id(target_id)
        if target is None:
            raise NotFoundError("User not found.")
        plan = self.plans.get_plan_by_slug(plan_slug)
        if plan is None or not plan.is_active:
            raise InvalidInputError(f"Unknown plan '{plan_slug}'.")
        current = self.plans.get_subscription(target_id)
        old_plan = current.plan_slug if current is not None else None
        self.plans.set_plan(target_id, plan)
        self._record(
            actor_id,
            AuditAction.change_plan,
            target_id,
            {"email": target.email, "old_plan": old_plan, "new_plan": plan.slug},
            ip,
        )
        logger.info("Admin %s moved user %s from plan %s to %s", actor_id, target_id, old_plan, plan.slug)
        return self.plans.get_subscription(target_id)

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        counts = self.users.count_users()
        since = (datetime.now(timezone.utc) - timedelta(days=7)).replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "total_users": counts["total"],
            "active_users": counts["active"],
            "banned_users": counts["banned"],
            "users_by_plan": self.plans.users_by_plan(),
            "recent_signups": self.users.signups_since(since),
        }

    def list_users(
        self,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: Role | None = None,
        is_banned: bool | None = None,
        plan: str | None = None,
    ) -> tuple[list[tuple[User, Subscription | None]], int, int]:
        """Return ([(user, subscription)], total, pages) for one page of users."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)
        user_ids = self.plans.subscriber_ids(plan) if plan else None
        users, total = self.users.list_users(
            page=page,
            limit=limit,
            search=search,
            role=role,
            is_banned=is_banned,
            user_ids=user_ids,
        )
        rows = [(u, self.plans.get_subscription(u.id)) for u in users]
        return rows, total, page_count(total, limit)

    def user_detail(self, user_id: str) -> tuple[User, Subscription | None]:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user, self.plans.get_subscription(user_id)

    def list_plans(self) -> list[Plan]:
        return self.plans.list_plans()

    def audit_log(
        self,
        page: int = 1,
        limit: int = 50,
        admin_id: str | None = None,
        action: AuditAction | None = None,
        target_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[list[AuditLogEntry], int, int]:
        """Return (entries, total, pages). Each entry carries the actor's current email."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)
        entries, total = self.audit.list_entries(
            page=page,
            limit=limit,
            admin_id=admin_id,
            action=action,
            target_type=target_type,
            start=start,
            end=end,
        )
        emails = self.users.get_emails({e.admin_id for e in entries})
        for entry in entries:
            entry.admin_email = emails.get(entry.admin_id)
        return entries, total, page_count(total, limit)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reject_self(actor_id: str, target_id: str, verb: str) -> None:
        if actor_id == target_id:
            logger.warning("Admin %s attempted to %s their own account", actor_id, verb)
            raise SelfTargetError(f"You cannot {verb} your own account.")

    def _reload(self, user_id: str) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    def _record(self, actor_id: str, action: AuditAction, target_id: str, details: dict, ip: str) -> None:
        entry = AuditLogEntry(
            admin_id=actor_id,
            action=action,
            target_type="user",
            target_id=target_id,
            details=details,
            ip_address=ip or "unknown",
        )
        try:
            self.audit.append(entry)
        except Exception:
            logger.exception("Audit append failed for %s on %s by %s", action.value, target_id, actor_id)
