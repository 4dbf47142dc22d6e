"""
tests/test_cli.py -- Tests for the operator commands in main.py.

main.get_settings is patched to point DATABASE_URL at a fresh shared-memory
database per test, leaving the cached application settings untouched.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

import main
from admin.audit import AuditLog
from admin.models import AuditAction, AuditLogEntry
from auth.models import Role
from auth.store import UserStore
from plans.store import PlanStore


@pytest.fixture
def cli_db(db_url, settings, monkeypatch):
    # Keep one connection open so the in-memory database outlives each command.
    keeper = UserStore(db_url)
    patched = settings.model_copy(update={"database_url": db_url})
    monkeypatch.setattr(main, "get_settings", lambda: patched)
    yield keeper
    keeper.close()


class TestCreateUser:
    def test_creates_verified_admin_on_free_plan(self, cli_db, db_url, capsys):
        code = main.main(["create-user", "Ops@Example.com", "--password", "Str0ng!Pass1", "--role", "admin"])
        assert code == 0
        user = cli_db.get_by_email("ops@example.com")
        assert user.role is Role.admin
        assert user.email_verified
        assert "Created admin ops@example.com" in capsys.readouterr().out

        plans = PlanStore(db_url)
        try:
            assert plans.get_subscription(user.id).plan_slug == "free"
        finally:
            plans.close()

    def test_duplicate_is_refused(self, cli_db, capsys):
        main.main(["create-user", "dup@example.com", "--password", "Str0ng!Pass1"])
        assert main.main(["create-user", "DUP@example.com", "--password", "Str0ng!Pass1"]) == 1
        assert "already exists" in capsys.readouterr().out

    def test_short_password_is_refused(self, cli_db):
        assert main.main(["create-user", "short@example.com", "--password", "abc"]) == 1
        assert cli_db.get_by_email("short@example.com") is None


class TestMaintenance:
    def test_purge_tokens(self, cli_db, make_account, capsys):
        uid = make_account(cli_db, "tok@example.com")
        cli_db.create_refresh_token(uid, "e" * 64, timedelta(seconds=-1))
        assert main.main(["purge-tokens"]) == 0
        assert "Removed 1 expired" in capsys.readouterr().out

    def test_audit_log_lists_entries(self, cli_db, db_url, make_account, capsys):
        admin_id = make_account(cli_db, "boss@example.com", role=Role.admin)
        audit = AuditLog(db_url)
        try:
            audit.append(
                AuditLogEntry(admin_id=admin_id, action=AuditAction.ban_user, target_type="user", target_id="u-1")
            )
        finally:
            audit.close()

        assert main.main(["audit-log", "--action", "ban_user"]) == 0
        out = capsys.readouterr().out
        assert "boss@example.com" in out
        assert "Showing 1 of 1 entry." in out

    def test_audit_log_empty(self, cli_db, capsys):
        assert main.main(["audit-log"]) == 0
        assert "No audit entries." in capsys.readouterr().out
