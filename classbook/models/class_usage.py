"""
Class usage model - one quota debit on a subscription
"""

from sqlmodel import Field, SQLModel
from datetime import date, datetime
from typing import Optional
from enum import Enum
import uuid


class ClassUsageType(str, Enum):
    """What consumed the class"""
    RESERVATION = "reservation"
    WALK_IN = "walk_in"
    SPECIAL_CLASS = "special_class"


class ClassUsage(SQLModel, table=True):
    """Immutable ledger entry; removed only together with its reservation"""

    __tablename__ = "class_usages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    subscription_id: uuid.UUID = Field(foreign_key="subscriptions.id", index=True)
    reservation_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="reservations.id",
        unique=True,
        description="Reservation that originated this usage (type=reservation)"
    )

    type: ClassUsageType = Field(default=ClassUsageType.RESERVATION)
    usage_date: date = Field(index=True)
    notes: Optional[str] = Field(default=None, max_length=2000)

    created_at: datetime = Field(default_factory=datetime.utcnow)
