"""
Payment plan model - the allowance a subscription grants per week and period
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, Numeric
from decimal import Decimal
from datetime import datetime
from typing import Optional
import uuid


class PaymentPlan(SQLModel, table=True):
    """Monthly plan, e.g. "3x per week" """

    __tablename__ = "payment_plans"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )

    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    amount: Decimal = Field(
        default=Decimal("0.00"),
        description="Monthly amount",
        sa_column=Column(Numeric(10, 2), nullable=False)
    )
    frequency_days: int = Field(default=30, description="Length of one billing period")

    # Allowances
    classes_per_week: int = Field(description="Classes allowed per Monday-Sunday week")
    max_classes_per_period: int = Field(description="Classes allowed per billing period")

    # Billing rules
    grace_period_days: int = Field(default=0, description="Days to pay after the due date")
    late_fee_percentage: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(5, 2), nullable=False)
    )

    # Rollover
    allow_class_rollover: bool = Field(default=True)
    max_rollover_classes: int = Field(default=0)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
