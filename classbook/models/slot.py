"""
Slot model - a bookable interval with fixed capacity
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint, UniqueConstraint
from datetime import date, datetime, time
from typing import Optional
import uuid


class Slot(SQLModel, table=True):
    """Bookable interval

    ``reserved_count`` only moves through the atomic reserve/release
    statements of ``classbook.services.slot_capacity``.
    """

    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "slot_date", "start_time", "end_time", "is_intermediate",
            name="uq_slot_window"
        ),
        CheckConstraint(
            "reserved_count >= 0 AND reserved_count <= capacity",
            name="ck_slot_reserved_within_capacity"
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )

    slot_date: date = Field(index=True)
    start_time: time
    end_time: time
    duration_minutes: int = Field(default=60)

    capacity: int
    reserved_count: int = Field(default=0)
    attended_count: int = Field(default=0)
    is_intermediate: bool = Field(default=False, description="Overlapping sub-slot")

    version: int = Field(
        default=0,
        description="Optimistic concurrency version"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def is_available(self) -> bool:
        return self.reserved_count < self.capacity

    def starts_at(self) -> datetime:
        return datetime.combine(self.slot_date, self.start_time)
