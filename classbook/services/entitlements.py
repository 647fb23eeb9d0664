"""
Entitlement ledger

Weekly and period class counters of a subscription. Counter rows are only
written through ``_compare_and_swap``, an UPDATE guarded by the row's
``version``; a lost race reloads the row and recomputes, up to
``LEDGER_MAX_RETRIES`` times.

Weekly counters are reset lazily: whoever touches a subscription first in
a new Monday-Sunday week realigns ``week_start_date`` and recomputes the
week from ClassUsage rows. Period counters never reset by the calendar;
only ``start_new_period`` (called on renewal) does that.
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import uuid

from sqlalchemy import func, update
from sqlmodel import Session, select
import structlog

from classbook.core.config import get_settings
from classbook.core.exceptions import (
    CannotBook,
    ConflictException,
    NotFound,
    QuotaViolation,
    SuspensionOverlap,
    ValidationException,
)
from classbook.core.timezone_utils import facility_now, facility_today, week_start
from classbook.models.class_usage import ClassUsage, ClassUsageType
from classbook.models.payment import Payment, PaymentStatus
from classbook.models.payment_plan import PaymentPlan
from classbook.models.subscription import Subscription, SubscriptionStatus
from classbook.models.suspension import SubscriptionSuspension

logger = structlog.get_logger(__name__)

OUTSTANDING_STATUSES = (PaymentStatus.PENDING, PaymentStatus.OVERDUE)


@dataclass
class Eligibility:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class EntitlementStatus:
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

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Lookups

def get_plan(session: Session, plan_id: uuid.UUID) -> PaymentPlan:
    plan = session.get(PaymentPlan, plan_id)
    if not plan:
        raise NotFound("Payment plan not found", details={"plan_id": str(plan_id)})
    return plan


def get_subscription(session: Session, subscription_id: uuid.UUID) -> Subscription:
    subscription = session.get(Subscription, subscription_id, populate_existing=True)
    if not subscription:
        raise NotFound(
            "Subscription not found",
            details={"subscription_id": str(subscription_id)},
        )
    return subscription


def get_active_subscription(
    session: Session, user_id: uuid.UUID, tenant_id: uuid.UUID
) -> Optional[Subscription]:
    return session.exec(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.tenant_id == tenant_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
        ).order_by(Subscription.created_at.desc())
    ).first()


def get_current_subscription(
    session: Session, user_id: uuid.UUID, tenant_id: uuid.UUID
) -> Optional[Subscription]:
    """Latest subscription that is not cancelled (active, paused or expired)"""
    return session.exec(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.tenant_id == tenant_id,
            Subscription.status != SubscriptionStatus.CANCELLED,
        ).order_by(Subscription.created_at.desc())
    ).first()


def count_usage(
    session: Session, subscription_id: uuid.UUID, start: date, end: date
) -> int:
    """ClassUsage rows dated in ``[start, end)``"""
    return session.exec(
        select(func.count(ClassUsage.id)).where(
            ClassUsage.subscription_id == subscription_id,
            ClassUsage.usage_date >= start,
            ClassUsage.usage_date < end,
        )
    ).one()


def has_outstanding_payment(session: Session, subscription: Subscription) -> bool:
    return session.exec(
        select(Payment.id).where(
            Payment.subscription_id == subscription.id,
            Payment.status.in_(OUTSTANDING_STATUSES),
        )
    ).first() is not None


def paid_payment_covering(
    session: Session, subscription: Subscription, day: date
) -> Optional[Payment]:
    """PAID payment whose booking window ``[paid_date, paid_date + 30)`` holds ``day``"""
    window = get_settings().PERIOD_LENGTH_DAYS
    return session.exec(
        select(Payment).where(
            Payment.user_id == subscription.user_id,
            Payment.tenant_id == subscription.tenant_id,
            Payment.status == PaymentStatus.PAID,
            Payment.paid_date <= day,
            Payment.paid_date > day - timedelta(days=window),
        ).order_by(Payment.paid_date.desc())
    ).first()


# Version compare-and-swap

def _compare_and_swap(
    session: Session,
    subscription_id: uuid.UUID,
    expected_version: int,
    **values,
) -> bool:
    result = session.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription_id,
            Subscription.version == expected_version,
        )
        .values(version=expected_version + 1, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def _ledger_conflict(subscription_id: uuid.UUID) -> ConflictException:
    logger.warning(f"Ledger retries exhausted for subscription {subscription_id}")
    return ConflictException(
        "Subscription was modified concurrently, please retry",
        code="LedgerConflict",
        details={"subscription_id": str(subscription_id)},
    )


def _check_consistency(subscription: Subscription) -> None:
    counters = {
        "classes_used_this_period": subscription.classes_used_this_period,
        "classes_remaining_this_period": subscription.classes_remaining_this_period,
        "classes_used_this_week": subscription.classes_used_this_week,
        "classes_remaining_this_week": subscription.classes_remaining_this_week,
        "rollover_classes": subscription.rollover_classes,
    }
    negative = {name: value for name, value in counters.items() if value < 0}
    if negative:
        logger.error(
            "Negative entitlement counters",
            subscription_id=str(subscription.id),
            counters=negative,
        )
        raise QuotaViolation(
            "Entitlement counters are inconsistent",
            details={"subscription_id": str(subscription.id), **negative},
        )


# Weekly reset

def refresh_week(
    session: Session, subscription: Subscription, today: Optional[date] = None
) -> Subscription:
    """Realign the weekly counters to the week containing ``today``

    Idempotent: a second call in the same week changes nothing.
    """
    today = today or facility_today()
    monday = week_start(today)
    if subscription.week_start_date == monday:
        return subscription

    plan = get_plan(session, subscription.plan_id)
    for _ in range(get_settings().LEDGER_MAX_RETRIES):
        used = count_usage(session, subscription.id, monday, monday + timedelta(days=7))
        remaining = max(
            0, min(plan.classes_per_week - used, subscription.classes_remaining_this_period)
        )
        if _compare_and_swap(
            session, subscription.id, subscription.version,
            week_start_date=monday,
            classes_used_this_week=used,
            classes_remaining_this_week=remaining,
        ):
            logger.debug(
                "Weekly counters reset",
                subscription_id=str(subscription.id),
                week_start=monday.isoformat(),
                used=used,
            )
            return get_subscription(session, subscription.id)

        subscription = get_subscription(session, subscription.id)
        if subscription.week_start_date == monday:
            return subscription

    raise _ledger_conflict(subscription.id)


def weekly_remaining(
    session: Session,
    subscription: Subscription,
    plan: PaymentPlan,
    day: date,
) -> int:
    """Classes still bookable in the week containing ``day``

    The stored counter answers for the current week; any other week is
    computed from its ClassUsage rows.
    """
    if subscription.in_current_week(day):
        return subscription.classes_remaining_this_week
    monday = week_start(day)
    used = count_usage(session, subscription.id, monday, monday + timedelta(days=7))
    return max(0, plan.classes_per_week - used)


# Eligibility

def active_suspension(
    session: Session, user_id: uuid.UUID, tenant_id: uuid.UUID, day: date
) -> Optional[SubscriptionSuspension]:
    return session.exec(
        select(SubscriptionSuspension).where(
            SubscriptionSuspension.user_id == user_id,
            SubscriptionSuspension.tenant_id == tenant_id,
            SubscriptionSuspension.is_active == True,  # noqa: E712
            SubscriptionSuspension.start_date <= day,
            SubscriptionSuspension.end_date >= day,
        )
    ).first()


def check_eligibility(
    session: Session,
    subscription: Subscription,
    target_date: date,
    now: Optional[datetime] = None,
) -> Eligibility:
    """Whether ``subscription`` may book a class on ``target_date``"""
    now = now or facility_now()

    if not subscription.is_active():
        return Eligibility(False, f"Subscription is {subscription.status.value}")

    subscription = refresh_week(session, subscription, now.date())
    plan = get_plan(session, subscription.plan_id)

    if active_suspension(session, subscription.user_id, subscription.tenant_id, target_date):
        return Eligibility(False, "Subscription is suspended on this date")

    if paid_payment_covering(session, subscription, target_date) is None:
        return Eligibility(False, "No paid period covers this date")

    if not subscription.in_period(target_date):
        return Eligibility(False, "Date is outside the current billing period")

    if subscription.classes_remaining_this_period <= 0:
        return Eligibility(False, "No classes left this period")

    if weekly_remaining(session, subscription, plan, target_date) <= 0:
        return Eligibility(False, "No classes left this week")

    if has_outstanding_payment(session, subscription):
        return Eligibility(False, "A payment is outstanding")

    return Eligibility(True)


def can_book(
    session: Session,
    subscription_id: uuid.UUID,
    target_date: date,
    now: Optional[datetime] = None,
) -> bool:
    subscription = get_subscription(session, subscription_id)
    return check_eligibility(session, subscription, target_date, now).allowed


# Debit / credit

def debit(
    session: Session,
    subscription_id: uuid.UUID,
    usage_date: date,
    usage_type: ClassUsageType = ClassUsageType.RESERVATION,
    reservation_id: Optional[uuid.UUID] = None,
    today: Optional[date] = None,
    notes: Optional[str] = None,
) -> ClassUsage:
    """Consume one class and record it as a ClassUsage row

    ``usage_date`` must fall in the current period. The week counter is
    decremented only when it also falls in the current week.
    """
    today = today or facility_today()

    for _ in range(get_settings().LEDGER_MAX_RETRIES):
        subscription = refresh_week(session, get_subscription(session, subscription_id), today)
        _check_consistency(subscription)
        plan = get_plan(session, subscription.plan_id)

        period_remaining = subscription.classes_remaining_this_period
        values: Dict[str, int] = {}

        if not subscription.in_period(usage_date):
            raise CannotBook(
                "Date is outside the current billing period",
                details={"subscription_id": str(subscription_id), "date": usage_date.isoformat()},
            )
        if period_remaining <= 0:
            raise CannotBook(
                "No classes left this period",
                details={"subscription_id": str(subscription_id)},
            )
        period_remaining -= 1
        values["classes_used_this_period"] = subscription.classes_used_this_period + 1
        values["classes_remaining_this_period"] = period_remaining

        if subscription.in_current_week(usage_date):
            if subscription.classes_remaining_this_week <= 0:
                raise CannotBook(
                    "No classes left this week",
                    details={"subscription_id": str(subscription_id)},
                )
            values["classes_used_this_week"] = subscription.classes_used_this_week + 1
            values["classes_remaining_this_week"] = min(
                subscription.classes_remaining_this_week - 1, period_remaining
            )
        else:
            if weekly_remaining(session, subscription, plan, usage_date) <= 0:
                raise CannotBook(
                    "No classes left in that week",
                    details={"subscription_id": str(subscription_id), "date": usage_date.isoformat()},
                )
            values["classes_remaining_this_week"] = min(
                subscription.classes_remaining_this_week, period_remaining
            )

        if _compare_and_swap(session, subscription.id, subscription.version, **values):
            break
    else:
        raise _ledger_conflict(subscription_id)

    usage = ClassUsage(
        tenant_id=subscription.tenant_id,
        user_id=subscription.user_id,
        subscription_id=subscription.id,
        reservation_id=reservation_id,
        type=usage_type,
        usage_date=usage_date,
        notes=notes,
    )
    session.add(usage)
    session.flush()

    logger.info(
        f"Debited subscription {subscription.id} for {usage_date.isoformat()}",
        usage_id=str(usage.id),
    )
    return usage


def credit(
    session: Session, usage: ClassUsage, today: Optional[date] = None
) -> bool:
    """Remove a ClassUsage row and give its class back

    Restores only the windows the usage date still belongs to, bounded by
    the plan allowance. Returns whether any counter moved.
    """
    today = today or facility_today()
    credited = False

    for _ in range(get_settings().LEDGER_MAX_RETRIES):
        subscription = refresh_week(
            session, get_subscription(session, usage.subscription_id), today
        )
        _check_consistency(subscription)
        plan = get_plan(session, subscription.plan_id)

        period_remaining = subscription.classes_remaining_this_period
        values: Dict[str, int] = {}

        if subscription.in_period(usage.usage_date):
            period_remaining = min(
                period_remaining + 1,
                plan.max_classes_per_period + subscription.rollover_classes,
            )
            values["classes_used_this_period"] = max(0, subscription.classes_used_this_period - 1)
            values["classes_remaining_this_period"] = period_remaining

        if subscription.in_current_week(usage.usage_date):
            values["classes_used_this_week"] = max(0, subscription.classes_used_this_week - 1)
            values["classes_remaining_this_week"] = min(
                subscription.classes_remaining_this_week + 1,
                plan.classes_per_week,
                period_remaining,
            )

        if not values:
            break
        if _compare_and_swap(session, subscription.id, subscription.version, **values):
            credited = True
            break
    else:
        raise _ledger_conflict(usage.subscription_id)

    session.delete(usage)
    session.flush()
    logger.info(
        f"Credited subscription {usage.subscription_id} for {usage.usage_date.isoformat()}",
        counters_restored=credited,
    )
    return credited


# Periods

def start_new_period(
    session: Session,
    subscription: Subscription,
    plan: PaymentPlan,
    plan_changed: bool = False,
    today: Optional[date] = None,
    reactivate: bool = False,
) -> Subscription:
    """Open a new billing period aligned on the current week's Monday

    Rollover carries ``min(previous remaining, max_rollover_classes)`` when
    the plan allows it and did not change.
    """
    today = today or facility_today()
    period_length = timedelta(days=get_settings().PERIOD_LENGTH_DAYS)

    for _ in range(get_settings().LEDGER_MAX_RETRIES):
        subscription = refresh_week(session, get_subscription(session, subscription.id), today)

        rollover = 0
        if plan.allow_class_rollover and not plan_changed:
            rollover = max(
                0, min(subscription.classes_remaining_this_period, plan.max_rollover_classes)
            )

        period_start = subscription.week_start_date
        period_end = period_start + period_length
        period_remaining = plan.max_classes_per_period + rollover

        week_used = count_usage(
            session, subscription.id, period_start, period_start + timedelta(days=7)
        )
        values: Dict[str, Any] = dict(
            plan_id=plan.id,
            period_start_date=period_start,
            period_end_date=period_end,
            next_billing_date=period_end,
            classes_used_this_period=0,
            classes_remaining_this_period=period_remaining,
            classes_used_this_week=week_used,
            classes_remaining_this_week=max(
                0, min(plan.classes_per_week - week_used, period_remaining)
            ),
            rollover_classes=rollover,
        )
        if reactivate:
            values["status"] = SubscriptionStatus.ACTIVE

        if _compare_and_swap(session, subscription.id, subscription.version, **values):
            logger.info(
                f"Started period {period_start.isoformat()} - {period_end.isoformat()} "
                f"for subscription {subscription.id}",
                rollover=rollover,
                plan_changed=plan_changed,
            )
            return get_subscription(session, subscription.id)

    raise _ledger_conflict(subscription.id)


def create_subscription(
    session: Session,
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    plan: PaymentPlan,
    start_date: date,
    auto_renew: bool = True,
    notes: Optional[str] = None,
) -> Subscription:
    period_end = start_date + timedelta(days=get_settings().PERIOD_LENGTH_DAYS)
    subscription = Subscription(
        tenant_id=tenant_id,
        user_id=user_id,
        plan_id=plan.id,
        status=SubscriptionStatus.ACTIVE,
        start_date=start_date,
        period_start_date=start_date,
        period_end_date=period_end,
        next_billing_date=period_end,
        week_start_date=week_start(start_date),
        classes_remaining_this_period=plan.max_classes_per_period,
        classes_remaining_this_week=min(plan.classes_per_week, plan.max_classes_per_period),
        auto_renew=auto_renew,
        notes=notes,
    )
    session.add(subscription)
    session.flush()
    logger.info(f"Created subscription {subscription.id} for user {user_id}")
    return subscription


def get_entitlement_status(
    session: Session,
    subscription_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> EntitlementStatus:
    now = now or facility_now()
    subscription = get_subscription(session, subscription_id)
    if subscription.is_active():
        subscription = refresh_week(session, subscription, now.date())
    eligibility = check_eligibility(session, subscription, now.date(), now)
    plan = get_plan(session, subscription.plan_id)
    session.commit()

    return EntitlementStatus(
        subscription_id=subscription.id,
        plan_id=plan.id,
        status=subscription.status,
        period_start_date=subscription.period_start_date,
        period_end_date=subscription.period_end_date,
        week_start_date=subscription.week_start_date,
        classes_per_week=plan.classes_per_week,
        max_classes_per_period=plan.max_classes_per_period,
        classes_used_this_period=subscription.classes_used_this_period,
        classes_remaining_this_period=subscription.classes_remaining_this_period,
        classes_used_this_week=subscription.classes_used_this_week,
        classes_remaining_this_week=subscription.classes_remaining_this_week,
        rollover_classes=subscription.rollover_classes,
        has_outstanding_payment=has_outstanding_payment(session, subscription),
        suspended_today=active_suspension(
            session, subscription.user_id, subscription.tenant_id, now.date()
        ) is not None,
        can_book_today=eligibility.allowed,
        reason=eligibility.reason,
    )


# Suspensions

def create_suspension(
    session: Session,
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    start_date: date,
    end_date: date,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    subscription_id: Optional[uuid.UUID] = None,
) -> SubscriptionSuspension:
    if end_date < start_date:
        raise ValidationException(
            "Suspension end date is before its start date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )

    overlapping = session.exec(
        select(SubscriptionSuspension).where(
            SubscriptionSuspension.user_id == user_id,
            SubscriptionSuspension.tenant_id == tenant_id,
            SubscriptionSuspension.is_active == True,  # noqa: E712
            SubscriptionSuspension.start_date <= end_date,
            SubscriptionSuspension.end_date >= start_date,
        )
    ).first()
    if overlapping:
        raise SuspensionOverlap(
            "An active suspension already covers part of this range",
            details={"suspension_id": str(overlapping.id)},
        )

    suspension = SubscriptionSuspension(
        tenant_id=tenant_id,
        user_id=user_id,
        subscription_id=subscription_id,
        start_date=start_date,
        end_date=end_date,
        reason=reason,
        notes=notes,
    )
    session.add(suspension)
    session.commit()
    session.refresh(suspension)

    logger.info(
        f"Suspended user {user_id} from {start_date.isoformat()} to {end_date.isoformat()}"
    )
    return suspension


def end_suspension(
    session: Session,
    suspension_id: uuid.UUID,
    on: Optional[date] = None,
) -> SubscriptionSuspension:
    """Lift a suspension; from ``on`` onwards when given, entirely otherwise"""
    suspension = session.get(SubscriptionSuspension, suspension_id)
    if not suspension:
        raise NotFound("Suspension not found", details={"suspension_id": str(suspension_id)})

    if on is None or on <= suspension.start_date:
        suspension.is_active = False
    elif on <= suspension.end_date:
        suspension.end_date = on - timedelta(days=1)
    suspension.updated_at = datetime.utcnow()

    session.add(suspension)
    session.commit()
    session.refresh(suspension)
    logger.info(f"Ended suspension {suspension.id}", active=suspension.is_active)
    return suspension


# Billing housekeeping

def compute_late_fee(payment: Payment, plan: PaymentPlan, on: date) -> Decimal:
    """Late fee owed when ``on`` is past the due date plus grace period"""
    if on <= payment.due_date + timedelta(days=plan.grace_period_days):
        return Decimal("0.00")
    fee = Decimal(payment.amount) * Decimal(plan.late_fee_percentage) / Decimal(100)
    return fee.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def mark_overdue_payments(
    session: Session,
    now: Optional[datetime] = None,
    tenant_id: Optional[uuid.UUID] = None,
) -> int:
    """Move pending payments past their grace period to OVERDUE"""
    today = (now or facility_now()).date()
    marked = 0

    statement = select(Payment).where(Payment.status == PaymentStatus.PENDING)
    if tenant_id:
        statement = statement.where(Payment.tenant_id == tenant_id)
    pending = session.exec(statement).all()
    for payment in pending:
        plan = get_plan(session, payment.plan_id)
        if today <= payment.due_date + timedelta(days=plan.grace_period_days):
            continue
        late_fee = compute_late_fee(payment, plan, today)
        payment.status = PaymentStatus.OVERDUE
        payment.late_fee = late_fee
        payment.total_amount = Decimal(payment.amount) + late_fee - Decimal(payment.discount)
        payment.updated_at = datetime.utcnow()
        session.add(payment)
        marked += 1

    session.commit()
    logger.info(f"Marked {marked} payments as overdue")
    return marked


def expire_lapsed_subscriptions(session: Session, today: Optional[date] = None) -> int:
    """Expire active subscriptions whose period ended beyond the grace period"""
    today = today or facility_today()
    expired = 0

    active = session.exec(
        select(Subscription).where(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.period_end_date <= today,
        )
    ).all()
    for subscription in active:
        plan = get_plan(session, subscription.plan_id)
        if today < subscription.period_end_date + timedelta(days=plan.grace_period_days):
            continue
        if _compare_and_swap(
            session, subscription.id, subscription.version,
            status=SubscriptionStatus.EXPIRED,
        ):
            expired += 1
        else:
            logger.warning(f"Subscription {subscription.id} changed while expiring, skipped")

    session.commit()
    logger.info(f"Expired {expired} lapsed subscriptions")
    return expired
