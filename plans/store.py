"""
plans/store.py -- SQLAlchemy-backed persistence for plans and subscriptions.

Uses SQLAlchemy Core (not ORM) so the dataclasses in plans/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. PlanStore is the repository; the _row_to_*
functions are the mappers. Services never touch SQL directly.

Seeding: the free / pro / business tiers are inserted on first start when the
plans table is empty. Every new account is subscribed to "free" by
AuthService right after the user row is written.

Security: all queries use bound parameters. No f-strings in SQL.
"""

import json
import logging
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import make_engine, now_iso
from core.config import get_settings
from plans.models import Plan, Subscription

logger = logging.getLogger("labelforge.plans")

DEFAULT_PLAN_SLUG = "free"

_DEFAULT_PLANS: list[Plan] = [
    Plan(
        name="Free",
        slug="free",
        description="Core editor features",
        price_monthly=0.0,
        max_projects=3,
        max_exports_per_month=5,
        features=["Full editor", "PDF export"],
    ),
    Plan(
        name="Pro",
        slug="pro",
        description="For regular makers",
        price_monthly=9.99,
        max_projects=20,
        max_exports_per_month=50,
        features=["Full editor", "PDF export", "Premium templates", "Priority support"],
    ),
    Plan(
        name="Business",
        slug="business",
        description="For professional workshops",
        price_monthly=29.99,
        max_projects=-1,
        max_exports_per_month=-1,
        features=["Unlimited projects", "Unlimited exports", "Premium templates", "Priority support", "API access"],
    ),
]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_plans = Table(
    "plans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("slug", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("price_monthly", Float, nullable=False, server_default="0"),
    Column("max_projects", Integer, nullable=False, server_default="5"),
    Column("max_exports_per_month", Integer, nullable=False, server_default="10"),
    Column("features", Text, nullable=False, server_default="[]"),  # JSON list
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_subscriptions = Table(
    "subscriptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, unique=True),
    Column("plan_id", Integer, nullable=False, index=True),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("current_period_start", String(32), nullable=False),
    Column("current_period_end", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PlanStore:
    """Repository for Plan and Subscription entities.

    Usage:
        store = PlanStore()
        store.assign_default_plan(user_id)
        sub = store.get_subscription(user_id)
        store.close()
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)
        self._seed_default_plans()

    def _seed_default_plans(self) -> None:
        """Insert the built-in tiers when the plans table is empty. Idempotent."""
        with self.engine.connect() as conn:
            existing = conn.execute(select(func.count()).select_from(_plans)).scalar() or 0
            if existing:
                return
            now = now_iso()
            for plan in _DEFAULT_PLANS:
                conn.execute(
                    _plans.insert().values(
                        name=plan.name,
                        slug=plan.slug,
                        description=plan.description,
                        price_monthly=plan.price_monthly,
                        max_projects=plan.max_projects,
                        max_exports_per_month=plan.max_exports_per_month,
                        features=json.dumps(plan.features),
                        is_active=plan.is_active,
                        created_at=now,
                    )
                )
            conn.commit()
        logger.info("Seeded %d default plans", len(_DEFAULT_PLANS))

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def list_plans(self) -> list[Plan]:
        """Return every plan, cheapest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_plans.select().order_by(_plans.c.price_monthly, _plans.c.id)).fetchall()
        return [_row_to_plan(r) for r in rows]

    def get_plan_by_slug(self, slug: str) -> Optional[Plan]:
        with self.engine.connect() as conn:
            row = conn.execute(_plans.select().where(_plans.c.slug == slug)).fetchone()
        return _row_to_plan(row) if row is not None else None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def assign_default_plan(self, user_id: str) -> bool:
        """Subscribe a new user to the free plan. False if already subscribed or no free plan."""
        free = self.get_plan_by_slug(DEFAULT_PLAN_SLUG)
        if free is None:
            logger.warning("No '%s' plan found; user %s left without a subscription", DEFAULT_PLAN_SLUG, user_id)
            return False
        now = now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _subscriptions.insert().values(
                        user_id=user_id,
                        plan_id=free.id,
                        status="active",
                        current_period_start=now,
                        created_at=now,
                    )
                )
                conn.commit()
        except IntegrityError:
            return False
        return True

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        """Return the user's subscription joined with its plan, or None."""
        stmt = (
            select(_subscriptions, _plans.c.slug.label("plan_slug"), _plans.c.name.label("plan_name"))
            .select_from(_subscriptions.join(_plans, _plans.c.id == _subscriptions.c.plan_id))
            .where(_subscriptions.c.user_id == user_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_subscription(row) if row is not None else None

    def set_plan(self, user_id: str, plan: Plan) -> None:
        """Move a user to ``plan``, creating the subscription row if missing."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _subscriptions.update()
                .where(_subscriptions.c.user_id == user_id)
                .values(plan_id=plan.id, status="active", current_period_start=now)
            )
            if result.rowcount == 0:
                conn.execute(
                    _subscriptions.insert().values(
                        user_id=user_id,
                        plan_id=plan.id,
                        status="active",
                        current_period_start=now,
                        created_at=now,
                    )
                )
            conn.commit()

    def delete_subscription(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_subscriptions.delete().where(_subscriptions.c.user_id == user_id))
            conn.commit()

    def subscriber_ids(self, slug: str) -> set[str]:
        """Return the ids of users currently on the plan with ``slug``."""
        stmt = (
            select(_subscriptions.c.user_id)
            .select_from(_subscriptions.join(_plans, _plans.c.id == _subscriptions.c.plan_id))
            .where(_plans.c.slug == slug)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return {row.user_id for row in rows}

    def users_by_plan(self) -> dict[str, int]:
        """Return {plan slug: subscriber count}, including plans with zero subscribers."""
        stmt = (
            select(_plans.c.slug, func.count(_subscriptions.c.id).label("count"))
            .select_from(_plans.outerjoin(_subscriptions, _plans.c.id == _subscriptions.c.plan_id))
            .group_by(_plans.c.slug)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return {row.slug: row.count for row in rows}

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_plan(row) -> Plan:
    return Plan(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        price_monthly=float(row.price_monthly),
        max_projects=row.max_projects,
        max_exports_per_month=row.max_exports_per_month,
        features=json.loads(row.features or "[]"),
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        plan_slug=row.plan_slug,
        plan_name=row.plan_name,
        status=row.status,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        created_at=row.created_at,
    )
