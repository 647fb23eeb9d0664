"""
Payment model
Monthly plan payments; a PAID payment opens a 30-day booking window
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, Numeric
from decimal import Decimal
from datetime import date, datetime, timedelta
from typing import Optional
from enum import Enum
import uuid


class PaymentMethod(str, Enum):
    """Payment methods accepted at the front desk or online"""
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    OTHER = "other"


class PaymentStatus(str, Enum):
    """Status of a payment"""
    PENDING = "pending"           # Generated, waiting to be paid
    PAID = "paid"                 # Paid, opens the booking window
    OVERDUE = "overdue"           # Unpaid past the grace period
    CANCELLED = "cancelled"


class Payment(SQLModel, table=True):
    """Plan payment for one billing period"""

    __tablename__ = "payments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="tenants.id",
        index=True,
        description="Tenant ID for multi-tenant isolation"
    )
    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    plan_id: uuid.UUID = Field(foreign_key="payment_plans.id", index=True)
    subscription_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="subscriptions.id",
        index=True
    )

    # Amounts
    amount: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    late_fee: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))
    discount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))
    total_amount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False))

    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    method: Optional[PaymentMethod] = Field(default=None)

    due_date: date
    paid_date: Optional[date] = Field(default=None, index=True)
    period_start_date: Optional[date] = None
    period_end_date: Optional[date] = None

    transaction_id: Optional[str] = Field(
        default=None,
        unique=True,
        max_length=255,
        description="Idempotency key supplied by the payment processor"
    )
    notes: Optional[str] = Field(default=None, max_length=2000)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    def is_outstanding(self) -> bool:
        return self.status in (PaymentStatus.PENDING, PaymentStatus.OVERDUE)

    def covers(self, day: date, window_days: int = 30) -> bool:
        """Whether a paid payment's booking window contains ``day``"""
        if self.status != PaymentStatus.PAID or self.paid_date is None:
            return False
        return self.paid_date <= day < self.paid_date + timedelta(days=window_days)
