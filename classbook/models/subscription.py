"""
Subscription model - the entitlement ledger of one user at one tenant
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint
from datetime import date, datetime
from typing import Optional
from enum import Enum
import uuid


class SubscriptionStatus(str, Enum):
    """Status of a subscription"""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Subscription(SQLModel, table=True):
    """Per (user, tenant, plan) weekly and period class counters

    Counters are written only through the ledger's compare-and-swap on
    ``version`` (see ``classbook.services.entitlements``).
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("classes_remaining_this_period >= 0", name="ck_subscription_period_remaining"),
        CheckConstraint("classes_remaining_this_week >= 0", name="ck_subscription_week_remaining"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    plan_id: uuid.UUID = Field(foreign_key="payment_plans.id", index=True)

    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE, index=True)

    # Billing period (end is exclusive)
    start_date: date
    period_start_date: date
    period_end_date: date
    next_billing_date: Optional[date] = None

    # Monday of the week the weekly counters refer to
    week_start_date: date

    # Counters
    classes_used_this_period: int = Field(default=0)
    classes_remaining_this_period: int = Field(default=0)
    classes_used_this_week: int = Field(default=0)
    classes_remaining_this_week: int = Field(default=0)
    rollover_classes: int = Field(default=0, description="Classes carried into the current period")

    auto_renew: bool = Field(default=True)
    notes: Optional[str] = Field(default=None, max_length=2000)

    version: int = Field(
        default=0,
        description="Optimistic concurrency version"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def in_period(self, day: date) -> bool:
        return self.period_start_date <= day < self.period_end_date

    def in_current_week(self, day: date) -> bool:
        return 0 <= (day - self.week_start_date).days < 7
