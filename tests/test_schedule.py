"""
Tests for schedule administration
"""

import pytest
import uuid
from datetime import time, timedelta

from classbook.core.events import event_bus
from classbook.core.exceptions import (
    ConflictException,
    HasActiveReservations,
    NotFound,
    PastDate,
    ValidationException,
)
from classbook.services.schedule import (
    ScheduleConfigOptions,
    ScheduleConfigUpdate,
    ScheduleExceptionOptions,
    create_config,
    create_exception,
    delete_exception,
    list_configs,
    list_exceptions,
    list_slots,
    update_config,
)
from classbook.services.slot_capacity import ReserveOutcome, generate_slots, reserve, slots_on
from tests.factories import TODAY

TOMORROW = TODAY + timedelta(days=1)


def test_create_config(db, tenant):
    config = create_config(db, tenant.id, ScheduleConfigOptions(
        day_of_week=1, start_time=time(7, 0), end_time=time(9, 0), capacity=8
    ))

    assert config.slot_duration_minutes == 60
    assert [c.id for c in list_configs(db, tenant.id)] == [config.id]


@pytest.mark.parametrize("bad", [
    dict(day_of_week=7),
    dict(start_time=time(10, 0)),
    dict(capacity=0),
    dict(slot_duration_minutes=0),
])
def test_invalid_config(db, tenant, bad):
    values = dict(day_of_week=1, start_time=time(7, 0), end_time=time(9, 0), capacity=8)
    values.update(bad)
    with pytest.raises(ValidationException):
        create_config(db, tenant.id, ScheduleConfigOptions(**values))


def test_overlapping_config_rejected(db, tenant, weekday_schedule):
    with pytest.raises(ConflictException):
        create_config(db, tenant.id, ScheduleConfigOptions(
            day_of_week=0, start_time=time(11, 0), end_time=time(13, 0)
        ))

    # Adjacent windows are fine
    create_config(db, tenant.id, ScheduleConfigOptions(
        day_of_week=0, start_time=time(12, 0), end_time=time(13, 0)
    ))


def test_update_config(db, tenant, weekday_schedule):
    monday = weekday_schedule[0]

    updated = update_config(db, tenant.id, monday.id, ScheduleConfigUpdate(end_time=time(10, 0), capacity=5))

    assert updated.end_time == time(10, 0)
    assert updated.capacity == 5
    assert updated.start_time == time(8, 0)

    with pytest.raises(ValidationException):
        update_config(db, tenant.id, monday.id, ScheduleConfigUpdate(start_time=time(11, 0)))


def test_update_unknown_config(db, tenant):
    with pytest.raises(NotFound):
        update_config(db, tenant.id, uuid.uuid4(), ScheduleConfigUpdate(capacity=2))


def test_exception_must_change_something():
    with pytest.raises(ValidationException):
        ScheduleExceptionOptions(exception_date=TOMORROW).validate()


def test_exception_in_the_past(db, tenant, weekday_schedule):
    with pytest.raises(PastDate):
        create_exception(
            db, tenant.id,
            ScheduleExceptionOptions(exception_date=TODAY - timedelta(days=1), is_closed=True),
            today=TODAY,
        )


def test_closing_a_date_removes_its_slots(db, tenant, weekday_schedule):
    published = []
    event_bus.subscribe("ScheduleExceptionApplied", published.append)
    generate_slots(db, tenant.id, TOMORROW, TOMORROW)

    exception, report = create_exception(
        db, tenant.id,
        ScheduleExceptionOptions(exception_date=TOMORROW, is_closed=True, reason="Holiday"),
        today=TODAY,
    )

    assert report.deleted_slots == 4
    assert report.skipped_slots == 0
    assert slots_on(db, tenant.id, TOMORROW) == []
    assert [e.id for e in list_exceptions(db, tenant.id)] == [exception.id]
    assert published[0].deleted_slots == 4


def test_one_exception_per_date(db, tenant, weekday_schedule):
    options = ScheduleExceptionOptions(exception_date=TOMORROW, capacity=1)
    create_exception(db, tenant.id, options, today=TODAY)

    with pytest.raises(ConflictException):
        create_exception(db, tenant.id, options, today=TODAY)


def test_delete_exception_restores_date(db, tenant, weekday_schedule):
    generate_slots(db, tenant.id, TOMORROW, TOMORROW)
    exception, _ = create_exception(
        db, tenant.id,
        ScheduleExceptionOptions(exception_date=TOMORROW, start_time=time(9, 0), end_time=time(10, 0)),
        today=TODAY,
    )
    assert len(slots_on(db, tenant.id, TOMORROW)) == 1

    report = delete_exception(db, tenant.id, exception.id)

    assert report.deleted_slots == 1
    assert report.created_slots == 4
    assert len(slots_on(db, tenant.id, TOMORROW)) == 4
    assert list_exceptions(db, tenant.id) == []
    with pytest.raises(NotFound):
        delete_exception(db, tenant.id, exception.id)


def test_delete_exception_refused_with_reservations(db, tenant, weekday_schedule):
    generate_slots(db, tenant.id, TOMORROW, TOMORROW)
    exception, _ = create_exception(
        db, tenant.id, ScheduleExceptionOptions(exception_date=TOMORROW, capacity=1), today=TODAY
    )
    assert reserve(db, slots_on(db, tenant.id, TOMORROW)[0].id) == ReserveOutcome.OK
    db.commit()

    with pytest.raises(HasActiveReservations):
        delete_exception(db, tenant.id, exception.id)

    assert [e.id for e in list_exceptions(db, tenant.id)] == [exception.id]


def test_list_available_slots(db, tenant, weekday_schedule):
    generate_slots(db, tenant.id, TOMORROW, TOMORROW)
    first = slots_on(db, tenant.id, TOMORROW)[0]
    reserve(db, first.id)
    reserve(db, first.id)
    db.commit()

    assert len(list_slots(db, tenant.id, TOMORROW, TOMORROW)) == 4
    available = list_slots(db, tenant.id, TOMORROW, TOMORROW, available_only=True)
    assert first.id not in [s.id for s in available]
    assert len(available) == 3
