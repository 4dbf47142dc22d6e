"""
plans/models.py -- Domain dataclasses for subscription plans.

These are pure data containers with zero logic. Seeding, default assignment
and plan changes live in plans/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Plan:
    """A purchasable tier. -1 in a quota field means unlimited.

    id is None before the record is written to the database.
    """

    name: str
    slug: str  # "free" | "pro" | "business"
    description: str = ""
    price_monthly: float = 0.0
    max_projects: int = 5
    max_exports_per_month: int = 10
    features: list[str] = field(default_factory=list)
    is_active: bool = True
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Subscription:
    """The single plan a user is on. One row per user."""

    user_id: str
    plan_id: int
    plan_slug: str = ""
    plan_name: str = ""
    status: str = "active"  # "active" | "cancelled" | "past_due"
    current_period_start: str = ""
    current_period_end: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
