"""
Reservation workflow

Booking couples a seat in a slot with an entitlement debit; both happen in
one transaction so a failing debit also undoes the seat.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Optional
import uuid

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
import structlog

from classbook.core.config import get_settings
from classbook.core.events import event_bus, ReservationCancelled, ReservationCreated
from classbook.core.exceptions import (
    CannotBook,
    CutoffExceeded,
    DomainException,
    Duplicate,
    Forbidden,
    Full,
    NotFound,
    PastSlot,
)
from classbook.core.timezone_utils import facility_now
from classbook.models.class_usage import ClassUsage, ClassUsageType
from classbook.models.reservation import Reservation
from classbook.models.slot import Slot
from classbook.models.subscription import Subscription
from classbook.services import entitlements
from classbook.services.slot_capacity import ReserveOutcome, release, reserve

logger = structlog.get_logger(__name__)


@dataclass
class CancelResult:
    reservation_id: uuid.UUID
    slot_id: uuid.UUID
    credited: bool


def get_slot(session: Session, slot_id: uuid.UUID) -> Slot:
    slot = session.get(Slot, slot_id)
    if not slot:
        raise NotFound("Slot not found", details={"slot_id": str(slot_id)})
    return slot


def find_reservation(
    session: Session, user_id: uuid.UUID, slot_id: uuid.UUID
) -> Optional[Reservation]:
    return session.exec(
        select(Reservation).where(
            Reservation.user_id == user_id,
            Reservation.slot_id == slot_id,
        )
    ).first()


def place_reservation(
    session: Session,
    subscription: Subscription,
    slot: Slot,
    today: date,
    recurring_rule_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
) -> Reservation:
    """Seat, reservation row and debit, without committing

    Raises Duplicate, Full or CannotBook; the caller owns the transaction.
    """
    if find_reservation(session, subscription.user_id, slot.id):
        raise Duplicate(
            "You already hold a reservation for this slot",
            details={"slot_id": str(slot.id)},
        )

    outcome = reserve(session, slot.id)
    if outcome == ReserveOutcome.FULL:
        raise Full("Slot is full", details={"slot_id": str(slot.id)})
    if outcome == ReserveOutcome.NOT_FOUND:
        raise NotFound("Slot not found", details={"slot_id": str(slot.id)})

    reservation = Reservation(
        tenant_id=slot.tenant_id,
        user_id=subscription.user_id,
        slot_id=slot.id,
        recurring_rule_id=recurring_rule_id,
        notes=notes,
    )
    session.add(reservation)
    try:
        session.flush()
    except IntegrityError:
        raise Duplicate(
            "You already hold a reservation for this slot",
            details={"slot_id": str(slot.id)},
        )

    entitlements.debit(
        session,
        subscription.id,
        slot.slot_date,
        usage_type=ClassUsageType.RESERVATION,
        reservation_id=reservation.id,
        today=today,
    )
    return reservation


def book(
    session: Session,
    user_id: uuid.UUID,
    slot_id: uuid.UUID,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> Reservation:
    """Book one slot for a user; all-or-nothing"""
    now = now or facility_now()

    try:
        slot = get_slot(session, slot_id)
        subscription = entitlements.get_active_subscription(session, user_id, slot.tenant_id)
        if not subscription:
            raise CannotBook(
                "No active subscription at this facility",
                details={"tenant_id": str(slot.tenant_id)},
            )

        eligibility = entitlements.check_eligibility(session, subscription, slot.slot_date, now)
        if not eligibility.allowed:
            raise CannotBook(eligibility.reason, details={"slot_id": str(slot.id)})

        if slot.starts_at() <= now:
            raise PastSlot("Slot has already started", details={"slot_id": str(slot.id)})

        reservation = place_reservation(session, subscription, slot, now.date(), notes=notes)
        session.commit()
    except DomainException as e:
        session.rollback()
        logger.info(f"Booking rejected for user {user_id} on slot {slot_id}: {e.code}")
        raise

    session.refresh(reservation)
    logger.info(f"Booked slot {slot_id} for user {user_id}", reservation_id=str(reservation.id))
    event_bus.publish(ReservationCreated(
        reservation_id=reservation.id,
        slot_id=reservation.slot_id,
        user_id=user_id,
        tenant_id=reservation.tenant_id,
    ))
    return reservation


def remove_reservation(
    session: Session,
    reservation: Reservation,
    credit: bool,
    today: date,
) -> bool:
    """Delete a reservation, free its seat and settle its usage row

    Returns whether the entitlement was credited. Does not commit.
    """
    reservation_id = reservation.id
    slot_id = reservation.slot_id

    usage = session.exec(
        select(ClassUsage).where(ClassUsage.reservation_id == reservation_id)
    ).first()

    credited = False
    if usage and credit:
        credited = entitlements.credit(session, usage, today)
    elif usage:
        # Keep the debit, detach it from the row being deleted
        usage.reservation_id = None
        session.add(usage)
        session.flush()

    result = session.execute(
        delete(Reservation)
        .where(Reservation.id == reservation_id)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise NotFound(
            "Reservation not found",
            details={"reservation_id": str(reservation_id)},
        )

    release(session, slot_id)
    return credited


def cancel(
    session: Session,
    reservation_id: uuid.UUID,
    user_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> CancelResult:
    """Cancel a reservation on behalf of its owner"""
    settings = get_settings()
    now = now or facility_now()

    try:
        reservation = session.get(Reservation, reservation_id)
        if not reservation:
            raise NotFound(
                "Reservation not found",
                details={"reservation_id": str(reservation_id)},
            )
        if reservation.user_id != user_id:
            raise Forbidden("You can only cancel your own reservations")

        slot = get_slot(session, reservation.slot_id)
        cutoff = timedelta(hours=settings.CANCELLATION_CUTOFF_HOURS)
        if slot.starts_at() - now < cutoff:
            raise CutoffExceeded(
                f"Reservations can only be cancelled up to "
                f"{settings.CANCELLATION_CUTOFF_HOURS} hours before the class",
                details={"slot_id": str(slot.id)},
            )

        credited = remove_reservation(
            session, reservation, settings.CREDIT_ON_CANCEL, now.date()
        )
        session.commit()
    except DomainException:
        session.rollback()
        raise

    logger.info(
        f"Cancelled reservation {reservation_id} for user {user_id}",
        credited=credited,
    )
    event_bus.publish(ReservationCancelled(
        reservation_id=reservation_id,
        slot_id=slot.id,
        user_id=user_id,
        tenant_id=slot.tenant_id,
        credited=credited,
    ))
    return CancelResult(reservation_id=reservation_id, slot_id=slot.id, credited=credited)


def list_user_reservations(
    session: Session,
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    from_date: Optional[date] = None,
) -> List[Reservation]:
    statement = (
        select(Reservation)
        .join(Slot, Slot.id == Reservation.slot_id)
        .where(Reservation.user_id == user_id, Reservation.tenant_id == tenant_id)
    )
    if from_date:
        statement = statement.where(Slot.slot_date >= from_date)
    return list(session.exec(statement.order_by(Slot.slot_date, Slot.start_time)).all())
