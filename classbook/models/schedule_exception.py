"""
Schedule exception model - holidays, maintenance and reduced hours
"""

from sqlmodel import Field, SQLModel
from datetime import date, datetime, time
from typing import Optional
import uuid


class ScheduleException(SQLModel, table=True):
    """Override of the weekly schedule for one specific date"""

    __tablename__ = "schedule_exceptions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )

    exception_date: date = Field(index=True)
    is_closed: bool = Field(default=False)
    start_time: Optional[time] = Field(default=None, description="Reduced opening; null keeps the base start")
    end_time: Optional[time] = Field(default=None, description="Reduced closing; null keeps the base end")
    capacity: int = Field(default=0, description="Reduced capacity; 0 keeps the base capacity")
    reason: Optional[str] = Field(default=None, max_length=200)

    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def closes_day(self) -> bool:
        return self.is_closed
