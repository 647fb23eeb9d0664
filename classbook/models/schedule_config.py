"""
Schedule configuration model - the weekly opening hours of a tenant
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint
from datetime import datetime, time
from typing import Optional
import uuid


class ScheduleConfig(SQLModel, table=True):
    """Opening window and capacity for one day of the week"""

    __tablename__ = "schedule_configs"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_schedule_config_day_of_week"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )

    day_of_week: int = Field(index=True, description="0 = Monday ... 6 = Sunday")
    start_time: time
    end_time: time
    capacity: int = Field(default=1, description="Capacity per slot")

    slot_duration_minutes: int = Field(default=60)
    allow_intermediate_slots: bool = Field(default=False)
    intermediate_capacity: Optional[int] = Field(default=None)
    intermediate_slot_duration_minutes: Optional[int] = Field(default=None)

    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
