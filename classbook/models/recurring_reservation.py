"""
Recurring reservation model - a template expanded into reservations
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON
from datetime import date, datetime, time
from typing import List, Optional
from enum import Enum
import uuid


class RecurringFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RecurringEndType(str, Enum):
    """How a rule stops producing occurrences"""
    DATE = "date"
    COUNT = "count"
    NEVER = "never"


class RecurringStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class RecurringReservation(SQLModel, table=True):
    """Days-of-week template for automatic bookings"""

    __tablename__ = "recurring_reservations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    frequency: RecurringFrequency = Field(default=RecurringFrequency.WEEKLY)
    days_of_week: List[int] = Field(
        default_factory=list,
        description="Python weekday numbers, 0 = Monday",
        sa_column=Column(JSON, nullable=False)
    )
    start_time: time
    end_time: time

    start_date: date
    end_type: RecurringEndType = Field(default=RecurringEndType.NEVER)
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    current_occurrences: int = Field(default=0)
    last_generated_date: Optional[date] = None

    status: RecurringStatus = Field(default=RecurringStatus.ACTIVE, index=True)
    notes: Optional[str] = Field(default=None, max_length=2000)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    # State machine methods
    def can_pause(self) -> bool:
        return self.status == RecurringStatus.ACTIVE

    def can_resume(self) -> bool:
        return self.status == RecurringStatus.PAUSED

    def can_cancel(self) -> bool:
        return self.status != RecurringStatus.CANCELLED

    def remaining_occurrences(self) -> Optional[int]:
        """Occurrences left for count-bound rules, None when unbounded"""
        if self.end_type != RecurringEndType.COUNT:
            return None
        return max(0, (self.max_occurrences or 0) - self.current_occurrences)

    def applies_to(self, day: date) -> bool:
        return day.weekday() in self.days_of_week
