"""
Renewal trigger

Handles a completed payment: opens the next billing period (or the first
one), records the payment, then re-expands the subscriber's active
recurring rules over the new period. The financial part commits before any
expansion runs, so a failing expansion never unpays a payment.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select
import structlog

from classbook.core.events import event_bus, SubscriptionRenewed
from classbook.core.exceptions import DomainException, NotFound, ValidationException
from classbook.core.timezone_utils import facility_now
from classbook.models.payment import Payment, PaymentMethod, PaymentStatus
from classbook.models.payment_plan import PaymentPlan
from classbook.models.recurring_reservation import RecurringReservation, RecurringStatus
from classbook.models.subscription import Subscription, SubscriptionStatus
from classbook.models.tenant import Tenant
from classbook.models.user import User
from classbook.services import entitlements
from classbook.services.recurring import expand

logger = structlog.get_logger(__name__)


@dataclass
class PaymentCompletedEvent:
    user_id: uuid.UUID
    tenant_id: uuid.UUID
    plan_id: uuid.UUID
    amount: Decimal
    paid_date: date
    method: Optional[PaymentMethod] = None
    discount: Decimal = Decimal("0.00")
    transaction_id: Optional[str] = None
    start_date: Optional[date] = None
    notes: Optional[str] = None


@dataclass
class RenewalResult:
    subscription_id: uuid.UUID
    payment_id: uuid.UUID
    period_start_date: date
    period_end_date: date
    created_subscription: bool = False
    plan_changed: bool = False
    duplicate: bool = False
    expansions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)


def _duplicate_result(session: Session, payment: Payment) -> RenewalResult:
    subscription = session.get(Subscription, payment.subscription_id)
    logger.info(f"Payment {payment.transaction_id} already processed, ignoring")
    return RenewalResult(
        subscription_id=payment.subscription_id,
        payment_id=payment.id,
        period_start_date=subscription.period_start_date,
        period_end_date=subscription.period_end_date,
        duplicate=True,
    )


def _find_by_transaction(session: Session, transaction_id: Optional[str]) -> Optional[Payment]:
    if not transaction_id:
        return None
    return session.exec(
        select(Payment).where(Payment.transaction_id == transaction_id)
    ).first()


def _settle_payment(
    session: Session,
    subscription: Subscription,
    plan: PaymentPlan,
    event: PaymentCompletedEvent,
) -> Payment:
    """Mark the oldest outstanding payment paid, or record a new paid one"""
    discount = Decimal(event.discount or 0)
    payment = session.exec(
        select(Payment).where(
            Payment.subscription_id == subscription.id,
            Payment.status.in_(entitlements.OUTSTANDING_STATUSES),
        ).order_by(Payment.due_date)
    ).first()

    if payment:
        late_fee = entitlements.compute_late_fee(payment, plan, event.paid_date)
        payment.late_fee = late_fee
        payment.total_amount = Decimal(payment.amount) + late_fee - discount
        payment.updated_at = datetime.utcnow()
    else:
        payment = Payment(
            tenant_id=subscription.tenant_id,
            user_id=subscription.user_id,
            plan_id=plan.id,
            subscription_id=subscription.id,
            amount=Decimal(event.amount),
            total_amount=Decimal(event.amount) - discount,
            due_date=event.paid_date,
        )

    payment.status = PaymentStatus.PAID
    payment.method = event.method
    payment.discount = discount
    payment.paid_date = event.paid_date
    payment.period_start_date = subscription.period_start_date
    payment.period_end_date = subscription.period_end_date
    payment.transaction_id = event.transaction_id
    payment.notes = event.notes
    session.add(payment)
    session.flush()
    return payment


def on_payment_completed(
    session: Session,
    event: PaymentCompletedEvent,
    now: Optional[datetime] = None,
) -> RenewalResult:
    """Renew (or start) the subscription a payment pays for

    Idempotent on ``transaction_id``: a replayed event returns the original
    outcome with ``duplicate=True`` and changes nothing.
    """
    now = now or facility_now()

    existing = _find_by_transaction(session, event.transaction_id)
    if existing:
        return _duplicate_result(session, existing)

    if not session.get(Tenant, event.tenant_id):
        raise NotFound("Tenant not found", details={"tenant_id": str(event.tenant_id)})
    if not session.get(User, event.user_id):
        raise NotFound("User not found", details={"user_id": str(event.user_id)})
    plan = entitlements.get_plan(session, event.plan_id)
    if plan.tenant_id != event.tenant_id:
        raise ValidationException(
            "Payment plan does not belong to this facility",
            details={"plan_id": str(plan.id), "tenant_id": str(event.tenant_id)},
        )

    created = plan_changed = False
    try:
        subscription = entitlements.get_current_subscription(
            session, event.user_id, event.tenant_id
        )
        if subscription is None:
            subscription = entitlements.create_subscription(
                session,
                event.user_id,
                event.tenant_id,
                plan,
                start_date=event.start_date or event.paid_date,
            )
            created = True
        else:
            plan_changed = subscription.plan_id != plan.id
            subscription = entitlements.start_new_period(
                session,
                subscription,
                plan,
                plan_changed=plan_changed,
                today=now.date(),
                reactivate=subscription.status == SubscriptionStatus.EXPIRED,
            )

        payment = _settle_payment(session, subscription, plan, event)
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = _find_by_transaction(session, event.transaction_id)
        if existing:
            return _duplicate_result(session, existing)
        raise
    except (DomainException, SQLAlchemyError):
        session.rollback()
        raise

    result = RenewalResult(
        subscription_id=subscription.id,
        payment_id=payment.id,
        period_start_date=subscription.period_start_date,
        period_end_date=subscription.period_end_date,
        created_subscription=created,
        plan_changed=plan_changed,
    )
    logger.info(
        f"Payment {payment.id} renewed subscription {subscription.id}",
        period_start=result.period_start_date.isoformat(),
        period_end=result.period_end_date.isoformat(),
        created=created,
        plan_changed=plan_changed,
    )
    event_bus.publish(SubscriptionRenewed(
        subscription_id=result.subscription_id,
        payment_id=result.payment_id,
        user_id=event.user_id,
        tenant_id=event.tenant_id,
        period_start_date=result.period_start_date,
        period_end_date=result.period_end_date,
        created=created,
    ))

    rule_ids = session.exec(
        select(RecurringReservation.id).where(
            RecurringReservation.user_id == event.user_id,
            RecurringReservation.tenant_id == event.tenant_id,
            RecurringReservation.status == RecurringStatus.ACTIVE,
        ).order_by(RecurringReservation.created_at)
    ).all()

    for rule_id in rule_ids:
        try:
            summary = expand(session, rule_id, now)
        except (DomainException, SQLAlchemyError) as e:
            session.rollback()
            logger.error(
                f"Expansion of rule {rule_id} failed after renewal: {e}",
                subscription_id=str(result.subscription_id),
                exc_info=True,
            )
            result.errors.append({"rule_id": str(rule_id), "error": str(e)})
            continue
        result.expansions[str(rule_id)] = summary.to_dict()

    return result
