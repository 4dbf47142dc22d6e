"""
tests/test_admin_service.py -- Unit tests for admin/service.py.

Covers:
  - self-targeting role change / ban / delete -> SelfTargetError, nothing written
  - admin targets are never modified (NotFoundError, same as a missing id)
  - each successful mutation appends exactly one audit entry with its details
  - ban revokes the target's refresh tokens; unban allows login again
  - change_plan validates the slug and records old/new plan
  - stats, list_users (plan filter), audit_log with admin email
  - a failing audit append does not undo the mutation
"""

from __future__ import annotations

import pytest

from admin.models import AuditAction
from admin.service import DEFAULT_BAN_REASON, page_count
from auth.errors import InvalidInputError, NotFoundError, SelfTargetError
from auth.models import Role

PASSWORD = "Str0ng!Pass1"
MISSING_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def people(stores, make_account):
    """An admin actor, a second admin, and a regular member, all on the free plan."""
    ids = {
        "actor": make_account(stores.users, "actor@example.com", role=Role.admin),
        "other_admin": make_account(stores.users, "other@example.com", role=Role.admin),
        "member": make_account(stores.users, "member@example.com"),
    }
    for uid in ids.values():
        stores.plans.assign_default_plan(uid)
    return ids


def _audit(stores):
    return stores.audit.list_entries()


class TestSelfTarget:
    @pytest.mark.parametrize("operation", ["change_role", "ban_user", "delete_user"])
    def test_self_target_is_refused_without_side_effects(self, admin_service, stores, people, operation):
        actor = people["actor"]
        call = getattr(admin_service, operation)
        args = (Role.user,) if operation == "change_role" else ()
        with pytest.raises(SelfTargetError) as exc:
            call(actor, actor, *args)
        assert exc.value.status_code == 400

        user = stores.users.get_by_id(actor)
        assert user is not None
        assert user.role is Role.admin
        assert not user.is_banned
        assert _audit(stores) == ([], 0)


class TestAdminTargets:
    def test_admin_cannot_be_demoted(self, admin_service, stores, people):
        with pytest.raises(NotFoundError):
            admin_service.change_role(people["actor"], people["other_admin"], Role.user)
        assert stores.users.get_by_id(people["other_admin"]).role is Role.admin

    def test_admin_cannot_be_banned(self, admin_service, stores, people):
        with pytest.raises(NotFoundError):
            admin_service.ban_user(people["actor"], people["other_admin"], "coup")
        assert not stores.users.get_by_id(people["other_admin"]).is_banned

    def test_admin_cannot_be_deleted(self, admin_service, stores, people):
        with pytest.raises(NotFoundError):
            admin_service.delete_user(people["actor"], people["other_admin"])
        assert stores.users.get_by_id(people["other_admin"]) is not None
        assert _audit(stores) == ([], 0)

    @pytest.mark.parametrize("operation", ["change_role", "ban_user", "unban_user", "delete_user"])
    def test_missing_target_is_404(self, admin_service, stores, people, operation):
        args = (Role.admin,) if operation == "change_role" else ()
        with pytest.raises(NotFoundError):
            getattr(admin_service, operation)(people["actor"], MISSING_ID, *args)
        assert _audit(stores) == ([], 0)


class TestAuditedMutations:
    def test_change_role_promotes_and_audits(self, admin_service, stores, people):
        user = admin_service.change_role(people["actor"], people["member"], Role.admin, ip="198.51.100.4")
        assert user.role is Role.admin

        entries, total = _audit(stores)
        assert total == 1
        entry = entries[0]
        assert entry.action is AuditAction.change_role
        assert entry.admin_id == people["actor"]
        assert entry.target_type == "user"
        assert entry.target_id == people["member"]
        assert entry.ip_address == "198.51.100.4"
        assert entry.details == {"email": "member@example.com", "old_role": "user", "new_role": "admin"}

    def test_ban_revokes_sessions_and_audits(self, admin_service, auth_service, stores, people):
        auth_service.login("member@example.com", PASSWORD)
        user = admin_service.ban_user(people["actor"], people["member"], "  spam  ")
        assert user.is_banned
        assert user.ban_reason == "spam"
        assert stores.users.count_refresh_tokens(people["member"]) == 0

        entries, total = _audit(stores)
        assert total == 1
        assert entries[0].details == {"email": "member@example.com", "reason": "spam"}

    def test_ban_without_reason_uses_default(self, admin_service, people):
        user = admin_service.ban_user(people["actor"], people["member"])
        assert user.ban_reason == DEFAULT_BAN_REASON

    def test_unban_restores_login(self, admin_service, auth_service, stores, people):
        admin_service.ban_user(people["actor"], people["member"], "oops")
        user = admin_service.unban_user(people["actor"], people["member"])
        assert not user.is_banned
        auth_service.login("member@example.com", PASSWORD)

        actions = [e.action for e in _audit(stores)[0]]
        assert actions == [AuditAction.unban_user, AuditAction.ban_user]

    def test_delete_removes_user_and_subscription(self, admin_service, stores, people):
        admin_service.delete_user(people["actor"], people["member"], ip="10.0.0.1")
        assert stores.users.get_by_id(people["member"]) is None
        assert stores.plans.get_subscription(people["member"]) is None

        entries, total = _audit(stores)
        assert total == 1
        assert entries[0].action is AuditAction.delete_user
        assert entries[0].details == {"email": "member@example.com"}

    def test_audit_entry_survives_deleted_actor(self, admin_service, stores, people):
        admin_service.ban_user(people["other_admin"], people["member"], "spam")
        stores.users.delete_user(people["other_admin"])
        entries, _, _ = admin_service.audit_log()
        assert entries[0].admin_id == people["other_admin"]
        assert entries[0].admin_email is None

    def test_failed_audit_append_keeps_mutation(self, admin_service, stores, people, monkeypatch):
        def boom(entry):
            raise RuntimeError("audit table locked")

        monkeypatch.setattr(stores.audit, "append", boom)
        admin_service.ban_user(people["actor"], people["member"], "spam")
        assert stores.users.get_by_id(people["member"]).is_banned


class TestChangePlan:
    def test_change_plan_by_slug(self, admin_service, stores, people):
        sub = admin_service.change_plan(people["actor"], people["member"], "pro")
        assert sub.plan_slug == "pro"

        entries, total = _audit(stores)
        assert total == 1
        assert entries[0].action is AuditAction.change_plan
        assert entries[0].details == {"email": "member@example.com", "old_plan": "free", "new_plan": "pro"}

    def test_change_plan_allowed_for_self(self, admin_service, people):
        assert admin_service.change_plan(people["actor"], people["actor"], "business").plan_slug == "business"

    def test_unknown_plan_is_invalid_input(self, admin_service, stores, people):
        with pytest.raises(InvalidInputError):
            admin_service.change_plan(people["actor"], people["member"], "platinum")
        assert _audit(stores) == ([], 0)

    def test_missing_user_is_404(self, admin_service, people):
        with pytest.raises(NotFoundError):
            admin_service.change_plan(people["actor"], MISSING_ID, "pro")


class TestReadViews:
    def test_stats(self, admin_service, stores, people):
        admin_service.ban_user(people["actor"], people["member"], "spam")
        stats = admin_service.stats()
        assert stats["total_users"] == 3
        assert stats["active_users"] == 2
        assert stats["banned_users"] == 1
        assert stats["users_by_plan"] == {"free": 3, "pro": 0, "business": 0}
        assert sum(stats["recent_signups"].values()) == 3

    def test_list_users_joins_subscription(self, admin_service, people):
        rows, total, pages = admin_service.list_users(limit=2)
        assert total == 3
        assert pages == 2
        assert len(rows) == 2
        assert all(sub.plan_slug == "free" for _, sub in rows)

    def test_list_users_by_plan(self, admin_service, people):
        admin_service.change_plan(people["actor"], people["member"], "pro")
        rows, total, _ = admin_service.list_users(plan="pro")
        assert total == 1
        assert rows[0][0].id == people["member"]
        assert admin_service.list_users(plan="business")[1] == 0

    def test_limit_is_clamped(self, admin_service, people):
        _, _, pages = admin_service.list_users(limit=1000)
        assert pages == 1

    def test_user_detail(self, admin_service, people):
        user, sub = admin_service.user_detail(people["member"])
        assert user.email == "member@example.com"
        assert sub.plan_slug == "free"
        with pytest.raises(NotFoundError):
            admin_service.user_detail(MISSING_ID)

    def test_audit_log_carries_admin_email(self, admin_service, people):
        admin_service.ban_user(people["actor"], people["member"], "spam")
        entries, total, pages = admin_service.audit_log(action=AuditAction.ban_user)
        assert (total, pages) == (1, 1)
        assert entries[0].admin_email == "actor@example.com"

    def test_list_plans(self, admin_service):
        assert [p.slug for p in admin_service.list_plans()] == ["free", "pro", "business"]


def test_page_count():
    assert page_count(0, 20) == 0
    assert page_count(20, 20) == 1
    assert page_count(21, 20) == 2
