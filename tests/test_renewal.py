"""
Tests for the payment-completed renewal trigger
"""

import pytest
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from sqlmodel import select

from classbook.core.events import event_bus
from classbook.core.exceptions import CannotBook, DomainException, NotFound, ValidationException
from classbook.models import (
    Payment, PaymentMethod, PaymentPlan, PaymentStatus, RecurringEndType, SubscriptionStatus, Tenant
)
from classbook.services import renewal
from classbook.services.entitlements import can_book, debit, get_subscription, refresh_week
from classbook.services.recurring import RecurringRuleOptions, create_rule
from classbook.services.renewal import PaymentCompletedEvent, on_payment_completed
from classbook.services.reservations import book
from tests.factories import NOW, TODAY, make_slot, make_user

RENEWAL_DAY = date(2030, 2, 6)
RENEWAL_NOW = datetime(2030, 2, 6, 6, 0)


def payment_event(user, plan, paid_date=RENEWAL_DAY, **kwargs) -> PaymentCompletedEvent:
    return PaymentCompletedEvent(
        user_id=user.id,
        tenant_id=user.tenant_id,
        plan_id=plan.id,
        amount=plan.amount,
        paid_date=paid_date,
        method=PaymentMethod.CARD,
        **kwargs
    )


def test_first_payment_creates_subscription(db, tenant, plan):
    newcomer = make_user(db, tenant, "newcomer@test.com")
    published = []
    event_bus.subscribe("SubscriptionRenewed", published.append)

    result = on_payment_completed(db, payment_event(newcomer, plan, paid_date=TODAY), now=NOW)

    assert result.created_subscription is True
    assert result.period_start_date == TODAY
    assert result.period_end_date == date(2030, 2, 6)
    payment = db.get(Payment, result.payment_id)
    assert payment.status == PaymentStatus.PAID
    assert payment.subscription_id == result.subscription_id
    assert can_book(db, result.subscription_id, TODAY, now=NOW) is True
    assert published[0].created is True


def test_renewal_keeps_week_alignment(db, subscription, athlete, plan):
    """A late renewal opens the period on the Monday of the current week"""
    refresh_week(db, subscription, date(2030, 2, 4))
    debit(db, subscription.id, date(2030, 2, 4), today=date(2030, 2, 4))
    db.commit()

    result = on_payment_completed(db, payment_event(athlete, plan), now=RENEWAL_NOW)

    sub = get_subscription(db, subscription.id)
    assert result.created_subscription is False
    assert sub.week_start_date == date(2030, 2, 4)
    assert sub.period_start_date == date(2030, 2, 4)
    assert sub.period_end_date == date(2030, 3, 6)
    assert sub.classes_used_this_period == 0
    assert sub.classes_used_this_week == 1
    assert sub.classes_remaining_this_week == 2
    # 11 unused, capped at 2
    assert sub.rollover_classes == 2
    assert sub.classes_remaining_this_period == 14


def test_replayed_transaction_is_ignored(db, subscription, athlete, plan):
    first = on_payment_completed(
        db, payment_event(athlete, plan, transaction_id="tx-001"), now=RENEWAL_NOW
    )
    version = get_subscription(db, subscription.id).version

    second = on_payment_completed(
        db, payment_event(athlete, plan, transaction_id="tx-001"), now=RENEWAL_NOW
    )

    assert second.duplicate is True
    assert second.payment_id == first.payment_id
    assert second.period_start_date == first.period_start_date
    assert get_subscription(db, subscription.id).version == version
    assert len(db.exec(select(Payment).where(Payment.transaction_id == "tx-001")).all()) == 1


def test_settles_outstanding_payment_with_late_fee(db, subscription, athlete, plan):
    pending = Payment(
        tenant_id=subscription.tenant_id,
        user_id=subscription.user_id,
        plan_id=plan.id,
        subscription_id=subscription.id,
        amount=Decimal("100.00"),
        total_amount=Decimal("100.00"),
        status=PaymentStatus.OVERDUE,
        due_date=RENEWAL_DAY,
    )
    db.add(pending)
    db.commit()

    paid_on = RENEWAL_DAY + timedelta(days=7)
    result = on_payment_completed(
        db, payment_event(athlete, plan, paid_date=paid_on), now=datetime(2030, 2, 13, 9, 0)
    )

    assert result.payment_id == pending.id
    db.refresh(pending)
    assert pending.status == PaymentStatus.PAID
    assert pending.late_fee == Decimal("10.00")
    assert pending.total_amount == Decimal("110.00")
    assert pending.paid_date == paid_on


def test_plan_change_drops_rollover(db, subscription, athlete, tenant):
    bigger = PaymentPlan(
        tenant_id=tenant.id,
        name="5x per week",
        amount=Decimal("150.00"),
        classes_per_week=5,
        max_classes_per_period=20,
        max_rollover_classes=2,
    )
    db.add(bigger)
    db.commit()

    result = on_payment_completed(db, payment_event(athlete, bigger), now=RENEWAL_NOW)

    assert result.plan_changed is True
    sub = get_subscription(db, subscription.id)
    assert sub.plan_id == bigger.id
    assert sub.rollover_classes == 0
    assert sub.classes_remaining_this_period == 20
    assert sub.classes_remaining_this_week == 5


def test_expired_subscription_is_reactivated(db, subscription, athlete, plan):
    subscription.status = SubscriptionStatus.EXPIRED
    db.add(subscription)
    db.commit()

    result = on_payment_completed(
        db, payment_event(athlete, plan, paid_date=date(2030, 3, 1)), now=datetime(2030, 3, 1, 9, 0)
    )

    sub = get_subscription(db, result.subscription_id)
    assert result.subscription_id == subscription.id
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.period_start_date == date(2030, 2, 25)


def test_renewal_expands_active_rules(db, tenant, subscription, athlete, plan, weekday_schedule):
    rule, first = create_rule(
        db, athlete.id, tenant.id,
        RecurringRuleOptions(
            days_of_week=[0, 2],
            start_time=time(8, 0),
            end_time=time(9, 0),
            start_date=TODAY,
            end_type=RecurringEndType.NEVER,
        ),
        now=NOW,
    )
    assert first.created == 9

    result = on_payment_completed(db, payment_event(athlete, plan), now=RENEWAL_NOW)

    expansion = result.expansions[str(rule.id)]
    # Wednesday 6 Feb through Monday 4 Mar
    assert expansion["created"] == 8
    assert result.errors == []


def test_failed_expansion_keeps_payment(db, tenant, subscription, athlete, plan, weekday_schedule, monkeypatch):
    rule, _ = create_rule(
        db, athlete.id, tenant.id,
        RecurringRuleOptions(
            days_of_week=[0],
            start_time=time(8, 0),
            end_time=time(9, 0),
            start_date=TODAY,
        ),
        now=NOW,
    )

    def broken_expand(session, rule_id, now=None):
        raise DomainException("calendar unavailable")

    monkeypatch.setattr(renewal, "expand", broken_expand)

    result = on_payment_completed(db, payment_event(athlete, plan), now=RENEWAL_NOW)

    assert result.errors == [{"rule_id": str(rule.id), "error": "calendar unavailable"}]
    assert db.get(Payment, result.payment_id).status == PaymentStatus.PAID
    assert get_subscription(db, subscription.id).period_start_date == date(2030, 2, 4)


def test_plan_from_another_facility(db, athlete):
    other = Tenant(name="Other Gym", slug="other-gym")
    db.add(other)
    db.commit()
    foreign_plan = PaymentPlan(
        tenant_id=other.id, name="Foreign", classes_per_week=2, max_classes_per_period=8
    )
    db.add(foreign_plan)
    db.commit()

    with pytest.raises(ValidationException):
        on_payment_completed(db, payment_event(athlete, foreign_plan), now=RENEWAL_NOW)


def test_unknown_user(db, tenant, plan):
    ghost = make_user(db, tenant, "ghost@test.com")
    event = payment_event(ghost, plan)
    event.user_id = uuid.uuid4()

    with pytest.raises(NotFound):
        on_payment_completed(db, event, now=RENEWAL_NOW)


def test_paid_window_past_period_end_is_not_bookable(db, tenant, subscription, athlete, plan):
    """A mid-week renewal pays up to 8 March while the period ends on the 6th"""
    paid_on = date(2030, 2, 7)
    renewed_at = datetime(2030, 2, 7, 6, 0)
    result = on_payment_completed(db, payment_event(athlete, plan, paid_date=paid_on), now=renewed_at)
    assert result.period_end_date == date(2030, 3, 6)

    beyond = make_slot(db, tenant, date(2030, 3, 7), time(9, 0), time(10, 0))
    assert can_book(db, subscription.id, beyond.slot_date, now=renewed_at) is False

    with pytest.raises(CannotBook) as exc_info:
        book(db, athlete.id, beyond.id, now=renewed_at)
    assert exc_info.value.message == "Date is outside the current billing period"

    db.refresh(beyond)
    assert beyond.reserved_count == 0
    sub = get_subscription(db, subscription.id)
    assert sub.classes_used_this_period == 0
    assert sub.classes_remaining_this_period == 14
