"""
Subscription suspension model
"""

from sqlmodel import Field, SQLModel
from datetime import date, datetime
from typing import Optional
import uuid


class SubscriptionSuspension(SQLModel, table=True):
    """Date range during which a user's entitlement at a tenant is inactive"""

    __tablename__ = "subscription_suspensions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    subscription_id: Optional[uuid.UUID] = Field(default=None, foreign_key="subscriptions.id")

    start_date: date
    end_date: date = Field(description="Inclusive")
    reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def covers(self, day: date) -> bool:
        return self.is_active and self.start_date <= day <= self.end_date

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date <= end and start <= self.end_date
