"""
admin/audit.py -- Append-only audit log for privileged admin mutations.

Pattern: Repository + Data Mapper, same shape as auth/store.py. The class
deliberately exposes append() and list_entries() and nothing else: there is
no update or delete path for audit rows anywhere in the codebase.

details is stored as a JSON text column so the schema stays portable between
SQLite and PostgreSQL.
"""

from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from admin.models import AuditAction, AuditLogEntry
from auth.store import make_engine, now_iso, to_iso
from core.config import get_settings

_metadata = MetaData()

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("admin_id", String(36), nullable=False, index=True),
    Column("action", String(100), nullable=False, index=True),
    Column("target_type", String(50)),
    Column("target_id", String(36)),
    Column("details", Text, nullable=False, server_default="{}"),  # JSON object
    Column("ip_address", String(45), nullable=False, server_default="unknown"),
    Column("created_at", String(32), nullable=False, index=True),
)


class AuditLog:
    """Append-only repository for AuditLogEntry records.

    Usage:
        audit = AuditLog()
        audit.append(AuditLogEntry(admin_id=a, action=AuditAction.ban_user, target_type="user", target_id=u))
        entries, total = audit.list_entries(action=AuditAction.ban_user)
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def append(self, entry: AuditLogEntry) -> int:
        """Insert one entry and return its id. created_at is always set here."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    admin_id=entry.admin_id,
                    action=AuditAction(entry.action).value,
                    target_type=entry.target_type,
                    target_id=entry.target_id,
                    details=json.dumps(entry.details, default=str),
                    ip_address=(entry.ip_address or "unknown")[:45],
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_entries(
        self,
        page: int = 1,
        limit: int = 50,
        admin_id: str | None = None,
        action: AuditAction | None = None,
        target_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[list[AuditLogEntry], int]:
        """Return one page of entries (newest first) and the total match count.

        start and end are inclusive bounds on created_at.
        """
        conditions = []
        if admin_id:
            conditions.append(_audit_log.c.admin_id == admin_id)
        if action is not None:
            conditions.append(_audit_log.c.action == AuditAction(action).value)
        if target_type:
            conditions.append(_audit_log.c.target_type == target_type)
        if start is not None:
            conditions.append(_audit_log.c.created_at >= to_iso(start))
        if end is not None:
            conditions.append(_audit_log.c.created_at <= to_iso(end))

        query = _audit_log.select()
        count_query = select(func.count()).select_from(_audit_log)
        for condition in conditions:
            query = query.where(condition)
            count_query = count_query.where(condition)
        query = query.order_by(_audit_log.c.created_at.desc(), _audit_log.c.id.desc())
        query = query.limit(limit).offset((page - 1) * limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_entry(r) for r in rows], total

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        admin_id=row.admin_id,
        action=AuditAction(row.action),
        target_type=row.target_type,
        target_id=row.target_id,
        details=json.loads(row.details or "{}"),
        ip_address=row.ip_address,
        created_at=row.created_at,
    )
