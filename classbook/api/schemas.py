"""
API schemas for schedules, slots, reservations, recurring rules,
subscriptions and payments
"""

from sqlmodel import SQLModel, Field
from datetime import date, datetime, time
from typing import Dict, List, Optional
from decimal import Decimal
from classbook.models.payment import PaymentMethod
from classbook.models.recurring_reservation import (
    RecurringEndType, RecurringFrequency, RecurringStatus
)
from classbook.models.subscription import SubscriptionStatus
import uuid

# ============================================================================
# Schedule Schemas
# ============================================================================

class ScheduleConfigCreate(SQLModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    capacity: int = Field(default=1, ge=1)
    slot_duration_minutes: int = Field(default=60, ge=1)
    allow_intermediate_slots: bool = False
    intermediate_capacity: Optional[int] = Field(default=None, ge=1)
    intermediate_slot_duration_minutes: Optional[int] = Field(default=None, ge=1)


class ScheduleConfigUpdate(SQLModel):
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    slot_duration_minutes: Optional[int] = Field(default=None, ge=1)
    allow_intermediate_slots: Optional[bool] = None
    intermediate_capacity: Optional[int] = Field(default=None, ge=1)
    intermediate_slot_duration_minutes: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class ScheduleConfigRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    day_of_week: int
    start_time: time
    end_time: time
    capacity: int
    slot_duration_minutes: int
    allow_intermediate_slots: bool
    intermediate_capacity: Optional[int] = None
    intermediate_slot_duration_minutes: Optional[int] = None
    is_active: bool

    class Config:
        from_attributes = True


class ScheduleExceptionCreate(SQLModel):
    exception_date: date
    is_closed: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    capacity: int = Field(default=0, ge=0)
    reason: Optional[str] = Field(default=None, max_length=200)


class ScheduleExceptionRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    exception_date: date
    is_closed: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    capacity: int
    reason: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


class SkippedSlotRead(SQLModel):
    slot_id: uuid.UUID
    start_time: time
    end_time: time
    reserved_count: int
    reason: str


class ExceptionApplyReportRead(SQLModel):
    exception_date: date
    deleted_slots: int
    clipped_slots: int
    resized_slots: int
    skipped_slots: int
    skipped: List[SkippedSlotRead] = []


class ScheduleExceptionCreated(SQLModel):
    exception: ScheduleExceptionRead
    report: ExceptionApplyReportRead


class RestoreReportRead(SQLModel):
    exception_date: date
    deleted_slots: int
    created_slots: int


# ============================================================================
# Slot Schemas
# ============================================================================

class SlotGenerationRequest(SQLModel):
    start_date: date
    end_date: date


class GenerationSummaryRead(SQLModel):
    tenant_id: uuid.UUID
    start_date: date
    end_date: date
    total_days: int
    days_with_config: int
    days_without_config: int
    total_slots: int
    created_slots: int
    existing_slots: int


class SlotRead(SQLModel):
    id: uuid.UUID
    slot_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    capacity: int
    reserved_count: int
    is_intermediate: bool

    class Config:
        from_attributes = True


# ============================================================================
# Reservation Schemas
# ============================================================================

class ReservationCreate(SQLModel):
    slot_id: uuid.UUID
    notes: Optional[str] = Field(default=None, max_length=2000)


class ReservationRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    slot_id: uuid.UUID
    recurring_rule_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CancelResultRead(SQLModel):
    reservation_id: uuid.UUID
    slot_id: uuid.UUID
    credited: bool


# ============================================================================
# Recurring Rule Schemas
# ============================================================================

class RecurringRuleCreate(SQLModel):
    days_of_week: List[int]
    start_time: time
    end_time: time
    start_date: date
    end_type: RecurringEndType = RecurringEndType.NEVER
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    frequency: RecurringFrequency = RecurringFrequency.WEEKLY
    notes: Optional[str] = Field(default=None, max_length=2000)


class RecurringRuleRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    tenant_id: uuid.UUID
    frequency: RecurringFrequency
    days_of_week: List[int]
    start_time: time
    end_time: time
    start_date: date
    end_type: RecurringEndType
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    current_occurrences: int
    last_generated_date: Optional[date] = None
    status: RecurringStatus
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ExpansionSummaryRead(SQLModel):
    created: int
    reservation_ids: List[str] = []
    past_dates: List[str] = []
    suspended_dates: List[str] = []
    cannot_book_dates: List[str] = []
    missing_time_slot_dates: List[str] = []
    duplicate_dates: List[str] = []
    no_capacity_dates: List[str] = []


class RecurringRuleExpanded(SQLModel):
    rule: RecurringRuleRead
    summary: ExpansionSummaryRead


class CancelRuleResultRead(SQLModel):
    rule_id: uuid.UUID
    deleted_reservations: int
    credited: int
    deleted_slots: int


# ============================================================================
# Subscription Schemas
# ============================================================================

class CanBookRead(SQLModel):
    subscription_id: uuid.UUID
    target_date: date
    allowed: bool
    reason: Optional[str] = None


class EntitlementStatusRead(SQLModel):
    subscription_id: uuid.UUID
    plan_id: uuid.UUID
    status: SubscriptionStatus
    period_start_date: date
    period_end_date: date
    week_start_date: date
    classes_per_week: int
    max_classes_per_period: int
    classes_used_this_period: int
    classes_remaining_this_period: int
    classes_used_this_week: int
    classes_remaining_this_week: int
    rollover_classes: int
    has_outstanding_payment: bool
    suspended_today: bool
    can_book_today: bool
    reason: Optional[str] = None


class SuspensionCreate(SQLModel):
    user_id: uuid.UUID
    start_date: date
    end_date: date
    subscription_id: Optional[uuid.UUID] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)


class SuspensionEnd(SQLModel):
    on: Optional[date] = None


class SuspensionRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    tenant_id: uuid.UUID
    subscription_id: Optional[uuid.UUID] = None
    start_date: date
    end_date: date
    reason: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


# ============================================================================
# Payment Schemas
# ============================================================================

class PaymentCompletedRequest(SQLModel):
    user_id: uuid.UUID
    plan_id: uuid.UUID
    amount: Decimal = Field(ge=0)
    paid_date: date
    method: Optional[PaymentMethod] = None
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    transaction_id: Optional[str] = Field(default=None, max_length=255)
    start_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class RenewalResultRead(SQLModel):
    subscription_id: uuid.UUID
    payment_id: uuid.UUID
    period_start_date: date
    period_end_date: date
    created_subscription: bool
    plan_changed: bool
    duplicate: bool
    expansions: Dict[str, ExpansionSummaryRead] = {}
    errors: List[Dict[str, str]] = []
