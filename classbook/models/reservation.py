"""
Reservation model - a user's seat in a slot
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import UniqueConstraint
from datetime import datetime
from typing import Optional
import uuid


class Reservation(SQLModel, table=True):
    """Links a user to a slot"""

    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("user_id", "slot_id", name="uq_reservation_user_slot"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    slot_id: uuid.UUID = Field(foreign_key="slots.id", index=True)
    recurring_rule_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="recurring_reservations.id",
        index=True,
        description="Rule that generated this reservation, if any"
    )

    notes: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(default_factory=datetime.utcnow)
