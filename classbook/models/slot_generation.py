"""
Slot generation audit model
"""

from sqlmodel import Field, SQLModel
from datetime import date, datetime
import uuid


class SlotGeneration(SQLModel, table=True):
    """One run of slot generation over a date range"""

    __tablename__ = "slot_generations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", index=True)

    start_date: date
    end_date: date
    total_days: int
    days_with_config: int
    days_without_config: int = Field(default=0)
    total_slots: int
    created_slots: int

    created_at: datetime = Field(default_factory=datetime.utcnow)
