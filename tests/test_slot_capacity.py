"""
Tests for slot generation, atomic capacity and exception application
"""

import pytest
import threading
import uuid
from datetime import date, time
from sqlmodel import Session, select

from classbook.core.events import event_bus
from classbook.core.exceptions import HasActiveReservations
from classbook.models import ScheduleException, Slot, SlotGeneration, Tenant
from classbook.services.slot_capacity import (
    ReserveOutcome,
    apply_exception,
    delete_if_empty,
    find_or_materialize_slot,
    find_slot,
    generate_slots,
    release,
    reserve,
    restore_from_exception,
    slots_on,
)
from tests.factories import make_slot

MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 13)


def fill(db, slot, seats):
    for _ in range(seats):
        assert reserve(db, slot.id) == ReserveOutcome.OK
    db.commit()


def test_generate_slots_for_a_week(db, tenant, weekday_schedule):
    published = []
    event_bus.subscribe("SlotsGenerated", published.append)

    summary = generate_slots(db, tenant.id, MONDAY, SUNDAY)

    assert summary.total_days == 7
    assert summary.days_with_config == 5
    assert summary.days_without_config == 2
    assert summary.created_slots == 20
    assert summary.existing_slots == 0
    assert len(db.exec(select(Slot)).all()) == 20
    assert len(published) == 1
    assert published[0].created_slots == 20


def test_generate_slots_is_idempotent(db, tenant, weekday_schedule):
    generate_slots(db, tenant.id, MONDAY, SUNDAY)
    summary = generate_slots(db, tenant.id, MONDAY, SUNDAY)

    assert summary.created_slots == 0
    assert summary.existing_slots == 20
    assert len(db.exec(select(Slot)).all()) == 20
    # Every run is recorded
    assert len(db.exec(select(SlotGeneration)).all()) == 2


def test_generate_slots_honours_active_exceptions(db, tenant, weekday_schedule):
    db.add(ScheduleException(tenant_id=tenant.id, exception_date=MONDAY, is_closed=True))
    db.commit()

    summary = generate_slots(db, tenant.id, MONDAY, SUNDAY)

    assert summary.created_slots == 16
    assert slots_on(db, tenant.id, MONDAY) == []


def test_reserve_until_full(db, tenant):
    slot = make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0), capacity=2)

    assert reserve(db, slot.id) == ReserveOutcome.OK
    assert reserve(db, slot.id) == ReserveOutcome.OK
    assert reserve(db, slot.id) == ReserveOutcome.FULL
    db.commit()

    db.refresh(slot)
    assert slot.reserved_count == 2
    assert slot.version == 2


def test_reserve_unknown_slot(db, tenant):
    assert reserve(db, uuid.uuid4()) == ReserveOutcome.NOT_FOUND


def test_release_never_goes_negative(db, tenant):
    slot = make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0))
    fill(db, slot, 1)

    assert release(db, slot.id) is True
    assert release(db, slot.id) is False
    db.commit()

    db.refresh(slot)
    assert slot.reserved_count == 0


def test_delete_if_empty(db, tenant):
    booked = make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0))
    empty = make_slot(db, tenant, MONDAY, time(9, 0), time(10, 0))
    fill(db, booked, 1)

    assert delete_if_empty(db, booked.id) is False
    assert delete_if_empty(db, empty.id) is True
    db.commit()

    assert [s.id for s in slots_on(db, tenant.id, MONDAY)] == [booked.id]


def test_concurrent_reserve_last_seat(file_engine):
    """Two sessions racing for one seat: exactly one wins"""
    engine = file_engine

    with Session(engine) as session:
        tenant = Tenant(name="Race Gym", slug="race-gym")
        session.add(tenant)
        session.commit()
        slot = make_slot(session, tenant, MONDAY, time(8, 0), time(9, 0), capacity=1)
        slot_id = slot.id

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        with Session(engine) as session:
            barrier.wait()
            outcome = reserve(session, slot_id)
            session.commit()
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == sorted([ReserveOutcome.OK, ReserveOutcome.FULL])
    with Session(engine) as session:
        assert session.get(Slot, slot_id).reserved_count == 1


def test_closing_a_day_keeps_booked_slots(db, tenant, weekday_schedule):
    """Closing a date deletes empty slots and reports booked ones"""
    generate_slots(db, tenant.id, MONDAY, MONDAY)
    slots = slots_on(db, tenant.id, MONDAY)
    booked = slots[1]
    fill(db, booked, 1)

    exception = ScheduleException(tenant_id=tenant.id, exception_date=MONDAY, is_closed=True)
    db.add(exception)
    db.commit()

    report = apply_exception(db, tenant.id, exception)

    assert report.deleted_slots == 3
    assert report.skipped_slots == 1
    assert report.skipped[0].slot_id == booked.id
    assert report.skipped[0].reason == "has reservations"
    remaining = slots_on(db, tenant.id, MONDAY)
    assert [s.id for s in remaining] == [booked.id]
    assert remaining[0].reserved_count == 1


def test_reduced_hours_delete_and_clip(db, tenant):
    make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0))
    straddling = make_slot(db, tenant, MONDAY, time(9, 0), time(10, 30))
    make_slot(db, tenant, MONDAY, time(10, 30), time(12, 0))

    exception = ScheduleException(
        tenant_id=tenant.id, exception_date=MONDAY,
        start_time=time(8, 30), end_time=time(10, 0)
    )
    db.add(exception)
    db.commit()

    report = apply_exception(db, tenant.id, exception)

    # 10:30-12:00 lies outside; 08:00-09:00 and 09:00-10:30 are clipped
    assert report.deleted_slots == 1
    assert report.clipped_slots == 2
    remaining = slots_on(db, tenant.id, MONDAY)
    assert [(s.start_time, s.end_time) for s in remaining] == [
        (time(8, 30), time(9, 0)),
        (time(9, 0), time(10, 0)),
    ]
    db.refresh(straddling)
    assert straddling.duration_minutes == 60


def test_booked_slot_is_never_clipped(db, tenant):
    slot = make_slot(db, tenant, MONDAY, time(9, 0), time(11, 0))
    fill(db, slot, 1)

    exception = ScheduleException(
        tenant_id=tenant.id, exception_date=MONDAY, end_time=time(10, 0)
    )
    db.add(exception)
    db.commit()

    report = apply_exception(db, tenant.id, exception)

    assert report.clipped_slots == 0
    assert report.skipped_slots == 1
    db.refresh(slot)
    assert (slot.start_time, slot.end_time) == (time(9, 0), time(11, 0))


def test_reduced_capacity_resizes_what_fits(db, tenant):
    roomy = make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0), capacity=10)
    crowded = make_slot(db, tenant, MONDAY, time(9, 0), time(10, 0), capacity=10)
    fill(db, crowded, 5)

    exception = ScheduleException(tenant_id=tenant.id, exception_date=MONDAY, capacity=4)
    db.add(exception)
    db.commit()

    report = apply_exception(db, tenant.id, exception)

    assert report.resized_slots == 1
    assert report.skipped[0].slot_id == crowded.id
    assert report.skipped[0].reason == "reservations exceed reduced capacity"
    db.refresh(roomy)
    db.refresh(crowded)
    assert roomy.capacity == 4
    assert crowded.capacity == 10
    assert report.to_dict()["skipped_slots"] == 1


def test_restore_refuses_booked_date(db, tenant, weekday_schedule):
    generate_slots(db, tenant.id, MONDAY, MONDAY)
    exception = ScheduleException(
        tenant_id=tenant.id, exception_date=MONDAY, end_time=time(10, 0)
    )
    db.add(exception)
    db.commit()
    apply_exception(db, tenant.id, exception)
    fill(db, slots_on(db, tenant.id, MONDAY)[0], 1)

    with pytest.raises(HasActiveReservations):
        restore_from_exception(db, exception)

    db.rollback()
    assert len(slots_on(db, tenant.id, MONDAY)) == 2


def test_restore_rebuilds_base_schedule(db, tenant, weekday_schedule):
    generate_slots(db, tenant.id, MONDAY, MONDAY)
    exception = ScheduleException(tenant_id=tenant.id, exception_date=MONDAY, is_closed=True)
    db.add(exception)
    db.commit()
    apply_exception(db, tenant.id, exception)
    assert slots_on(db, tenant.id, MONDAY) == []

    report = restore_from_exception(db, exception)

    assert report.deleted_slots == 0
    assert report.created_slots == 4
    assert len(slots_on(db, tenant.id, MONDAY)) == 4


def test_find_slot_prefers_primary(db, tenant):
    intermediate = make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0), is_intermediate=True)
    primary = make_slot(db, tenant, MONDAY, time(8, 0), time(9, 0))

    assert find_slot(db, tenant.id, MONDAY, time(8, 0), time(9, 0)).id == primary.id
    assert intermediate.id != primary.id


def test_materialize_slot_from_schedule(db, tenant, weekday_schedule):
    slot = find_or_materialize_slot(db, tenant.id, MONDAY, time(9, 0), time(10, 0))
    db.commit()

    assert slot is not None
    assert slot.capacity == 2
    assert find_or_materialize_slot(db, tenant.id, MONDAY, time(9, 0), time(10, 0)).id == slot.id
    assert len(slots_on(db, tenant.id, MONDAY)) == 1


def test_materialize_outside_schedule(db, tenant, weekday_schedule):
    assert find_or_materialize_slot(db, tenant.id, MONDAY, time(13, 0), time(14, 0)) is None
    assert find_or_materialize_slot(db, tenant.id, SUNDAY, time(9, 0), time(10, 0)) is None


def test_materialize_without_configuration(db, tenant):
    assert find_or_materialize_slot(db, tenant.id, MONDAY, time(9, 0), time(10, 0)) is None
