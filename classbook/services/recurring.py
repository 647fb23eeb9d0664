"""
Recurring expansion engine

A recurring rule is a template (weekdays + time window + end condition)
that is expanded into concrete reservations inside the subscriber's current
billing period. Each occurrence commits on its own; a date that cannot be
booked is recorded in the summary and never aborts the rest.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlalchemy import update
from sqlmodel import Session, select
import structlog

from classbook.core.config import get_settings
from classbook.core.events import event_bus, RecurringRuleCancelled, RecurringRuleExpanded
from classbook.core.exceptions import (
    CannotBook,
    Duplicate,
    Forbidden,
    Full,
    InvalidRule,
    InvalidTransition,
    NotFound,
    PastDate,
)
from classbook.core.timezone_utils import combine, facility_now, to_facility_time
from classbook.models.recurring_reservation import (
    RecurringEndType,
    RecurringFrequency,
    RecurringReservation,
    RecurringStatus,
)
from classbook.models.reservation import Reservation
from classbook.models.slot import Slot
from classbook.services import entitlements
from classbook.services.calendar_rules import iter_dates
from classbook.services.reservations import find_reservation, place_reservation, remove_reservation
from classbook.services.slot_capacity import delete_if_empty, find_or_materialize_slot

logger = structlog.get_logger(__name__)

MAX_OCCURRENCES = 52


@dataclass
class RecurringRuleOptions:
    """Everything a client may set on a recurring rule"""
    days_of_week: List[int]
    start_time: time
    end_time: time
    start_date: date
    end_type: RecurringEndType = RecurringEndType.NEVER
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None
    frequency: RecurringFrequency = RecurringFrequency.WEEKLY
    notes: Optional[str] = None

    def validate(self) -> None:
        if not self.days_of_week:
            raise InvalidRule("At least one day of the week is required")
        if any(day < 0 or day > 6 for day in self.days_of_week):
            raise InvalidRule(
                "Days of the week go from 0 (Monday) to 6 (Sunday)",
                details={"days_of_week": self.days_of_week},
            )
        if len(set(self.days_of_week)) != len(self.days_of_week):
            raise InvalidRule("Days of the week must not repeat")
        if self.start_time >= self.end_time:
            raise InvalidRule("Start time must be before end time")

        if self.end_type == RecurringEndType.DATE:
            if self.end_date is None:
                raise InvalidRule("An end date is required for date-bound rules")
            if self.end_date < self.start_date:
                raise InvalidRule("End date is before start date")
        elif self.end_type == RecurringEndType.COUNT:
            if self.max_occurrences is None or not 1 <= self.max_occurrences <= MAX_OCCURRENCES:
                raise InvalidRule(
                    f"Count-bound rules need between 1 and {MAX_OCCURRENCES} occurrences",
                    details={"max_occurrences": self.max_occurrences},
                )


@dataclass
class ExpansionSummary:
    created: int = 0
    reservation_ids: List[str] = field(default_factory=list)
    past_dates: List[str] = field(default_factory=list)
    suspended_dates: List[str] = field(default_factory=list)
    cannot_book_dates: List[str] = field(default_factory=list)
    missing_time_slot_dates: List[str] = field(default_factory=list)
    duplicate_dates: List[str] = field(default_factory=list)
    no_capacity_dates: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return (
            len(self.past_dates) + len(self.suspended_dates) + len(self.cannot_book_dates)
            + len(self.missing_time_slot_dates) + len(self.duplicate_dates)
            + len(self.no_capacity_dates)
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CancelRuleResult:
    rule_id: uuid.UUID
    deleted_reservations: int = 0
    credited: int = 0
    deleted_slots: int = 0


def get_rule(session: Session, rule_id: uuid.UUID) -> RecurringReservation:
    rule = session.get(RecurringReservation, rule_id, populate_existing=True)
    if not rule:
        raise NotFound("Recurring rule not found", details={"rule_id": str(rule_id)})
    return rule


def get_owned_rule(
    session: Session, rule_id: uuid.UUID, user_id: Optional[uuid.UUID]
) -> RecurringReservation:
    rule = get_rule(session, rule_id)
    if user_id is not None and rule.user_id != user_id:
        raise Forbidden("You can only manage your own recurring rules")
    return rule


def list_rules(
    session: Session, user_id: uuid.UUID, tenant_id: uuid.UUID
) -> List[RecurringReservation]:
    return list(session.exec(
        select(RecurringReservation).where(
            RecurringReservation.user_id == user_id,
            RecurringReservation.tenant_id == tenant_id,
        ).order_by(RecurringReservation.created_at)
    ).all())


def expansion_window(
    rule: RecurringReservation, period_start: date, period_end: date, today: date
) -> Tuple[date, date]:
    """Inclusive date range a rule may book in; empty when start > end"""
    start = max(today, rule.start_date, period_start)
    end = period_end - timedelta(days=1)
    if rule.end_type == RecurringEndType.DATE and rule.end_date is not None:
        end = min(end, rule.end_date)
    return start, end


def create_rule(
    session: Session,
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    options: RecurringRuleOptions,
    now: Optional[datetime] = None,
) -> Tuple[RecurringReservation, ExpansionSummary]:
    now = now or facility_now()
    options.validate()

    if options.end_type == RecurringEndType.DATE and options.end_date < now.date():
        raise PastDate(
            "Rule ends in the past",
            details={"end_date": options.end_date.isoformat()},
        )

    subscription = entitlements.get_current_subscription(session, user_id, tenant_id)
    if not subscription:
        raise CannotBook(
            "A subscription is required to create recurring reservations",
            details={"tenant_id": str(tenant_id)},
        )

    rule = RecurringReservation(
        tenant_id=tenant_id,
        user_id=user_id,
        frequency=options.frequency,
        days_of_week=sorted(options.days_of_week),
        start_time=options.start_time,
        end_time=options.end_time,
        start_date=options.start_date,
        end_type=options.end_type,
        end_date=options.end_date if options.end_type == RecurringEndType.DATE else None,
        max_occurrences=(
            options.max_occurrences if options.end_type == RecurringEndType.COUNT else None
        ),
        notes=options.notes,
    )
    session.add(rule)
    session.commit()
    session.refresh(rule)
    logger.info(f"Created recurring rule {rule.id} for user {user_id}")

    summary = expand(session, rule.id, now)
    return get_rule(session, rule.id), summary


def expand(
    session: Session,
    rule_id: uuid.UUID,
    now: Optional[datetime] = None,
    window: Optional[Tuple[date, date]] = None,
) -> ExpansionSummary:
    """Materialize a rule's occurrences within the current billing period"""
    now = now or facility_now()
    today = now.date()
    summary = ExpansionSummary()

    rule = get_rule(session, rule_id)
    if rule.status != RecurringStatus.ACTIVE:
        return summary

    subscription = entitlements.get_current_subscription(session, rule.user_id, rule.tenant_id)
    if not subscription:
        logger.warning(f"Recurring rule {rule_id} has no subscription to expand against")
        return summary

    remaining = rule.remaining_occurrences()
    if remaining == 0:
        return summary

    start, end = expansion_window(
        rule, subscription.period_start_date, subscription.period_end_date, today
    )
    if window is not None:
        start, end = max(start, window[0]), min(end, window[1])
    if start > end:
        return summary

    cap = get_settings().RECURRING_EXPANSION_CAP
    limit = cap if remaining is None else min(cap, remaining)

    # Primitive copies survive the per-occurrence commits and rollbacks
    user_id, tenant_id = rule.user_id, rule.tenant_id
    subscription_id = subscription.id
    days = set(rule.days_of_week)
    start_time, end_time = rule.start_time, rule.end_time

    for day in iter_dates(start, end):
        if summary.created >= limit:
            break
        if day.weekday() not in days:
            continue
        iso = day.isoformat()

        if combine(day, start_time) <= now:
            summary.past_dates.append(iso)
            continue

        if entitlements.active_suspension(session, user_id, tenant_id, day):
            summary.suspended_dates.append(iso)
            continue

        subscription = entitlements.get_subscription(session, subscription_id)
        if not entitlements.check_eligibility(session, subscription, day, now).allowed:
            summary.cannot_book_dates.append(iso)
            continue

        slot = find_or_materialize_slot(session, tenant_id, day, start_time, end_time)
        if slot is None:
            summary.missing_time_slot_dates.append(iso)
            continue

        if find_reservation(session, user_id, slot.id):
            summary.duplicate_dates.append(iso)
            continue

        try:
            reservation = place_reservation(
                session, subscription, slot, today, recurring_rule_id=rule_id
            )
            session.execute(
                update(RecurringReservation)
                .where(RecurringReservation.id == rule_id)
                .values(
                    current_occurrences=RecurringReservation.current_occurrences + 1,
                    last_generated_date=day,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session="fetch")
            )
            session.commit()
        except Full:
            session.rollback()
            summary.no_capacity_dates.append(iso)
        except Duplicate:
            session.rollback()
            summary.duplicate_dates.append(iso)
        except CannotBook:
            session.rollback()
            summary.cannot_book_dates.append(iso)
        else:
            summary.created += 1
            summary.reservation_ids.append(str(reservation.id))

    session.commit()

    logger.info(
        f"Expanded recurring rule {rule_id}: {summary.created} created, "
        f"{summary.skipped} skipped",
        window_start=start.isoformat(),
        window_end=end.isoformat(),
    )
    if summary.skipped:
        logger.warning(
            "Recurring rule dates skipped",
            rule_id=str(rule_id),
            past=summary.past_dates,
            suspended=summary.suspended_dates,
            cannot_book=summary.cannot_book_dates,
            missing_time_slot=summary.missing_time_slot_dates,
            duplicate=summary.duplicate_dates,
            no_capacity=summary.no_capacity_dates,
        )
    if summary.created:
        event_bus.publish(RecurringRuleExpanded(
            rule_id=rule_id,
            user_id=user_id,
            tenant_id=tenant_id,
            summary=summary.to_dict(),
        ))
    return summary


def pause_rule(
    session: Session, rule_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
) -> RecurringReservation:
    rule = get_owned_rule(session, rule_id, user_id)
    if not rule.can_pause():
        raise InvalidTransition(
            f"Cannot pause a {rule.status.value} rule",
            details={"rule_id": str(rule_id), "status": rule.status.value},
        )

    rule.status = RecurringStatus.PAUSED
    rule.updated_at = datetime.utcnow()
    session.add(rule)
    session.commit()
    session.refresh(rule)
    logger.info(f"Paused recurring rule {rule_id}")
    return rule


def resume_rule(
    session: Session,
    rule_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Tuple[RecurringReservation, ExpansionSummary]:
    rule = get_owned_rule(session, rule_id, user_id)
    if not rule.can_resume():
        raise InvalidTransition(
            f"Cannot resume a {rule.status.value} rule",
            details={"rule_id": str(rule_id), "status": rule.status.value},
        )

    rule.status = RecurringStatus.ACTIVE
    rule.updated_at = datetime.utcnow()
    session.add(rule)
    session.commit()
    logger.info(f"Resumed recurring rule {rule_id}")

    summary = expand(session, rule_id, now)
    return get_rule(session, rule_id), summary


def cancel_rule(
    session: Session,
    rule_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
    delete_reservations: bool = False,
    now: Optional[datetime] = None,
) -> CancelRuleResult:
    """Cancel a rule; with ``delete_reservations`` also tear down its bookings

    Teardown covers the owner's reservations on slots matching the rule's
    weekdays and time window, dated on or after its start date: their usage
    rows are credited back, their seats released, and slots left empty that
    were created on or after that date are removed.
    """
    now = now or facility_now()
    rule = get_owned_rule(session, rule_id, user_id)
    if not rule.can_cancel():
        raise InvalidTransition(
            "Rule is already cancelled",
            details={"rule_id": str(rule_id)},
        )

    result = CancelRuleResult(rule_id=rule_id)
    rule_start = rule.start_date
    rule_user_id, rule_tenant_id = rule.user_id, rule.tenant_id

    rule.status = RecurringStatus.CANCELLED
    rule.updated_at = datetime.utcnow()
    session.add(rule)

    if delete_reservations:
        candidates = session.exec(
            select(Reservation, Slot)
            .join(Slot, Slot.id == Reservation.slot_id)
            .where(
                Reservation.user_id == rule_user_id,
                Reservation.tenant_id == rule_tenant_id,
                Slot.start_time == rule.start_time,
                Slot.end_time == rule.end_time,
                Slot.slot_date >= rule_start,
            )
        ).all()
        weekdays = set(rule.days_of_week)
        reservations = [
            reservation for reservation, slot in candidates
            if slot.slot_date.weekday() in weekdays
        ]

        touched_slots = set()
        for reservation in reservations:
            touched_slots.add(reservation.slot_id)
            if remove_reservation(session, reservation, credit=True, today=now.date()):
                result.credited += 1
            result.deleted_reservations += 1

        for slot_id in touched_slots:
            slot = session.get(Slot, slot_id, populate_existing=True)
            if (
                slot is not None
                and slot.reserved_count == 0
                and to_facility_time(slot.created_at).date() >= rule_start
                and delete_if_empty(session, slot_id)
            ):
                result.deleted_slots += 1

    session.commit()

    logger.info(
        f"Cancelled recurring rule {rule_id}",
        deleted_reservations=result.deleted_reservations,
        credited=result.credited,
        deleted_slots=result.deleted_slots,
    )
    event_bus.publish(RecurringRuleCancelled(
        rule_id=rule_id,
        user_id=rule_user_id,
        tenant_id=rule_tenant_id,
        deleted_reservations=result.deleted_reservations,
    ))
    return result
