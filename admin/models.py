"""
admin/models.py -- Domain dataclasses for the admin audit trail.

Pure data containers. AuditLog in admin/audit.py writes and reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AuditAction(str, Enum):
    """One tag per privileged mutation."""

    change_role = "change_role"
    ban_user = "ban_user"
    unban_user = "unban_user"
    delete_user = "delete_user"
    change_plan = "change_plan"


@dataclass
class AuditLogEntry:
    """Immutable record of one privileged mutation.

    admin_id references the acting user by id only. Deleting that user does
    not remove or rewrite the entry; admin_email is filled at read time and
    is None once the actor no longer exists.

    Records are never updated or deleted -- only inserted.
    """

    admin_id: str
    action: AuditAction
    target_type: str | None = None
    target_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str = "unknown"
    id: int | None = None
    created_at: str = ""
    admin_email: str | None = None
