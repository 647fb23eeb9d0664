"""
Slot capacity manager

Owns slot rows. Capacity is only ever changed through conditional UPDATE
and DELETE statements whose WHERE clause carries the capacity check, so the
database row lock decides who wins when requests race for the last seat.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import delete, update
from sqlmodel import Session, select
import structlog

from classbook.core.events import event_bus, ScheduleExceptionApplied, SlotsGenerated
from classbook.core.exceptions import ConfigurationMissing, HasActiveReservations
from classbook.core.timezone_utils import minutes_between
from classbook.models.schedule_exception import ScheduleException
from classbook.models.slot import Slot
from classbook.models.slot_generation import SlotGeneration
from classbook.services.calendar_rules import SlotDefinition, generate_slot_definitions

logger = structlog.get_logger(__name__)


class ReserveOutcome(str, Enum):
    OK = "ok"
    FULL = "full"
    NOT_FOUND = "not_found"


@dataclass
class GenerationSummary:
    tenant_id: uuid.UUID
    start_date: date
    end_date: date
    total_days: int
    days_with_config: int
    days_without_config: int
    total_slots: int
    created_slots: int
    existing_slots: int


@dataclass
class SkippedSlot:
    slot_id: uuid.UUID
    start_time: time
    end_time: time
    reserved_count: int
    reason: str


@dataclass
class ExceptionApplyReport:
    exception_date: date
    deleted_slots: int = 0
    clipped_slots: int = 0
    resized_slots: int = 0
    skipped: List[SkippedSlot] = field(default_factory=list)

    @property
    def skipped_slots(self) -> int:
        return len(self.skipped)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["skipped_slots"] = self.skipped_slots
        return data


@dataclass
class RestoreReport:
    exception_date: date
    deleted_slots: int
    created_slots: int


def _slot_from_definition(tenant_id: uuid.UUID, definition: SlotDefinition) -> Slot:
    return Slot(
        tenant_id=tenant_id,
        slot_date=definition.slot_date,
        start_time=definition.start_time,
        end_time=definition.end_time,
        duration_minutes=definition.duration_minutes,
        capacity=definition.capacity,
        is_intermediate=definition.is_intermediate,
    )


def _slot_key(slot: Slot) -> tuple:
    return (slot.slot_date, slot.start_time, slot.end_time, slot.is_intermediate)


def slots_on(session: Session, tenant_id: uuid.UUID, day: date) -> List[Slot]:
    return list(session.exec(
        select(Slot).where(
            Slot.tenant_id == tenant_id,
            Slot.slot_date == day
        ).order_by(Slot.start_time, Slot.is_intermediate)
    ).all())


def reserve(session: Session, slot_id: uuid.UUID) -> ReserveOutcome:
    """Take one seat in a slot

    A single conditional UPDATE: the increment only happens when
    ``reserved_count < capacity`` still holds at write time.
    """
    result = session.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.reserved_count < Slot.capacity)
        .values(
            reserved_count=Slot.reserved_count + 1,
            version=Slot.version + 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 1:
        return ReserveOutcome.OK

    exists = session.exec(select(Slot.id).where(Slot.id == slot_id)).first()
    return ReserveOutcome.FULL if exists else ReserveOutcome.NOT_FOUND


def release(session: Session, slot_id: uuid.UUID) -> bool:
    """Give one seat back; never drops below zero"""
    result = session.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.reserved_count > 0)
        .values(
            reserved_count=Slot.reserved_count - 1,
            version=Slot.version + 1,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        logger.warning(f"Release on slot {slot_id} found no reserved seat")
        return False
    return True


def delete_if_empty(session: Session, slot_id: uuid.UUID) -> bool:
    """Delete a slot only while it holds no reservations"""
    result = session.execute(
        delete(Slot)
        .where(Slot.id == slot_id, Slot.reserved_count == 0)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def _update_if_empty(session: Session, slot_id: uuid.UUID, **values) -> bool:
    result = session.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.reserved_count == 0)
        .values(version=Slot.version + 1, updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def _resize(session: Session, slot_id: uuid.UUID, capacity: int) -> bool:
    result = session.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.reserved_count <= capacity)
        .values(capacity=capacity, version=Slot.version + 1, updated_at=datetime.utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def generate_slots(
    session: Session,
    tenant_id: uuid.UUID,
    start: date,
    end: date,
    commit: bool = True,
) -> GenerationSummary:
    """Persist the calendar's slots for ``[start, end]``

    Idempotent: slots that already exist with the same window are counted
    and left untouched.
    """
    plan = generate_slot_definitions(session, tenant_id, start, end)

    existing = {
        _slot_key(slot)
        for slot in session.exec(
            select(Slot).where(
                Slot.tenant_id == tenant_id,
                Slot.slot_date >= start,
                Slot.slot_date <= end,
            )
        ).all()
    }

    created = 0
    for definition in plan.definitions:
        if definition.key() in existing:
            continue
        session.add(_slot_from_definition(tenant_id, definition))
        existing.add(definition.key())
        created += 1

    session.add(SlotGeneration(
        tenant_id=tenant_id,
        start_date=start,
        end_date=end,
        total_days=plan.total_days,
        days_with_config=plan.days_with_config,
        days_without_config=plan.days_without_config,
        total_slots=len(plan.definitions),
        created_slots=created,
    ))

    if commit:
        session.commit()

    logger.info(
        f"Generated {created} slots for tenant {tenant_id} "
        f"from {start.isoformat()} to {end.isoformat()}"
    )
    event_bus.publish(SlotsGenerated(
        tenant_id=tenant_id,
        start_date=start,
        end_date=end,
        created_slots=created,
    ))

    return GenerationSummary(
        tenant_id=tenant_id,
        start_date=start,
        end_date=end,
        total_days=plan.total_days,
        days_with_config=plan.days_with_config,
        days_without_config=plan.days_without_config,
        total_slots=len(plan.definitions),
        created_slots=created,
        existing_slots=len(plan.definitions) - created,
    )


def apply_exception(
    session: Session,
    tenant_id: uuid.UUID,
    exception: ScheduleException,
    commit: bool = True,
) -> ExceptionApplyReport:
    """Reshape already-generated slots of the exception date

    Slots holding reservations are never deleted, clipped or shrunk below
    their reserved count; they are reported as skipped instead.
    """
    report = ExceptionApplyReport(exception_date=exception.exception_date)
    if not exception.is_active:
        return report

    slots = slots_on(session, tenant_id, exception.exception_date)
    taken = {_slot_key(slot) for slot in slots}

    def skip(slot: Slot, reason: str) -> None:
        report.skipped.append(SkippedSlot(
            slot_id=slot.id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            reserved_count=slot.reserved_count,
            reason=reason,
        ))

    def remove(slot: Slot) -> None:
        if delete_if_empty(session, slot.id):
            report.deleted_slots += 1
            taken.discard(_slot_key(slot))
        else:
            skip(slot, "has reservations")

    lower = exception.start_time
    upper = exception.end_time

    for slot in slots:
        if exception.is_closed:
            remove(slot)
            continue

        outside = (
            (upper is not None and slot.start_time >= upper)
            or (lower is not None and slot.end_time <= lower)
        )
        if outside:
            remove(slot)
            continue

        new_start = max(slot.start_time, lower) if lower is not None else slot.start_time
        new_end = min(slot.end_time, upper) if upper is not None else slot.end_time
        if (new_start, new_end) != (slot.start_time, slot.end_time):
            clipped_key = (slot.slot_date, new_start, new_end, slot.is_intermediate)
            if new_start >= new_end or clipped_key in taken:
                remove(slot)
                continue
            if slot.reserved_count > 0:
                skip(slot, "has reservations")
                continue
            if not _update_if_empty(
                session, slot.id,
                start_time=new_start,
                end_time=new_end,
                duration_minutes=minutes_between(new_start, new_end),
            ):
                skip(slot, "has reservations")
                continue
            taken.discard(_slot_key(slot))
            taken.add(clipped_key)
            report.clipped_slots += 1

        if exception.capacity > 0 and slot.capacity != exception.capacity:
            if _resize(session, slot.id, exception.capacity):
                report.resized_slots += 1
            else:
                skip(slot, "reservations exceed reduced capacity")

    if commit:
        session.commit()

    logger.info(
        f"Applied exception {exception.id} on {exception.exception_date.isoformat()}: "
        f"{report.deleted_slots} deleted, {report.clipped_slots} clipped, "
        f"{report.resized_slots} resized, {report.skipped_slots} skipped"
    )
    event_bus.publish(ScheduleExceptionApplied(
        tenant_id=tenant_id,
        exception_id=exception.id,
        exception_date=exception.exception_date,
        deleted_slots=report.deleted_slots,
        skipped_slots=report.skipped_slots,
    ))
    return report


def restore_from_exception(
    session: Session,
    exception: ScheduleException,
    commit: bool = True,
) -> RestoreReport:
    """Rebuild the exception date from the base schedule configuration

    Destructive: every slot of the date is replaced, so the whole operation
    is refused when any of them carries a reservation.
    """
    tenant_id = exception.tenant_id
    day = exception.exception_date
    slots = slots_on(session, tenant_id, day)

    booked = [slot for slot in slots if slot.reserved_count > 0]
    if booked:
        raise HasActiveReservations(
            "Cannot restore a date whose slots carry reservations",
            details={
                "date": day.isoformat(),
                "slot_ids": [str(slot.id) for slot in booked],
            },
        )

    plan = generate_slot_definitions(session, tenant_id, day, day, apply_exceptions=False)

    deleted = 0
    for slot in slots:
        if not delete_if_empty(session, slot.id):
            raise HasActiveReservations(
                "A slot was booked while the date was being restored",
                details={"date": day.isoformat(), "slot_ids": [str(slot.id)]},
            )
        deleted += 1
    session.flush()

    for definition in plan.definitions:
        session.add(_slot_from_definition(tenant_id, definition))

    if commit:
        session.commit()

    logger.info(
        f"Restored {day.isoformat()} for tenant {tenant_id}: "
        f"{deleted} slots replaced by {len(plan.definitions)}"
    )
    return RestoreReport(
        exception_date=day,
        deleted_slots=deleted,
        created_slots=len(plan.definitions),
    )


def find_slot(
    session: Session,
    tenant_id: uuid.UUID,
    day: date,
    start_time: time,
    end_time: time,
) -> Optional[Slot]:
    """Exact lookup, preferring primary slots over intermediate ones"""
    return session.exec(
        select(Slot).where(
            Slot.tenant_id == tenant_id,
            Slot.slot_date == day,
            Slot.start_time == start_time,
            Slot.end_time == end_time,
        ).order_by(Slot.is_intermediate)
    ).first()


def find_or_materialize_slot(
    session: Session,
    tenant_id: uuid.UUID,
    day: date,
    start_time: time,
    end_time: time,
) -> Optional[Slot]:
    """Exact slot for the window, created on demand when the calendar defines it"""
    slot = find_slot(session, tenant_id, day, start_time, end_time)
    if slot is not None:
        return slot

    try:
        plan = generate_slot_definitions(session, tenant_id, day, day)
    except ConfigurationMissing:
        return None

    for definition in plan.definitions:
        if definition.start_time == start_time and definition.end_time == end_time:
            slot = _slot_from_definition(tenant_id, definition)
            session.add(slot)
            session.flush()
            logger.info(f"Materialized slot {slot.id} on {day.isoformat()} {start_time}-{end_time}")
            return slot

    return None
