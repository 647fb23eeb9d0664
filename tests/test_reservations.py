"""
Tests for booking and cancellation
"""

import pytest
import threading
import uuid
from datetime import time, timedelta
from decimal import Decimal
from sqlmodel import Session, select

from classbook.core.config import get_settings
from classbook.core.events import event_bus
from classbook.core.exceptions import (
    CannotBook,
    CutoffExceeded,
    Duplicate,
    Forbidden,
    Full,
    NotFound,
    PastSlot,
)
from classbook.models import ClassUsage, PaymentPlan, Reservation, Slot, Subscription, Tenant
from classbook.services.entitlements import get_subscription
from classbook.services.reservations import book, cancel, list_user_reservations
from tests.factories import NOW, TODAY, make_slot, make_user, subscribe

TOMORROW = TODAY + timedelta(days=1)


@pytest.fixture
def slot(db, tenant):
    return make_slot(db, tenant, TOMORROW, time(9, 0), time(10, 0), capacity=2)


@pytest.fixture
def rival(db, tenant, plan):
    user = make_user(db, tenant, "rival@test.com")
    subscribe(db, user, plan)
    return user


def test_book_slot(db, athlete, subscription, slot):
    published = []
    event_bus.subscribe("ReservationCreated", published.append)

    reservation = book(db, athlete.id, slot.id, now=NOW)

    assert reservation.slot_id == slot.id
    assert reservation.tenant_id == slot.tenant_id
    db.refresh(slot)
    assert slot.reserved_count == 1

    usage = db.exec(select(ClassUsage)).one()
    assert usage.reservation_id == reservation.id
    assert usage.usage_date == TOMORROW

    sub = get_subscription(db, subscription.id)
    assert sub.classes_remaining_this_period == 11
    assert sub.classes_remaining_this_week == 2
    assert published[0].reservation_id == reservation.id


def test_book_unknown_slot(db, athlete, subscription):
    with pytest.raises(NotFound):
        book(db, athlete.id, uuid.uuid4(), now=NOW)


def test_book_without_subscription(db, tenant, slot):
    walk_in = make_user(db, tenant, "walkin@test.com")
    with pytest.raises(CannotBook):
        book(db, walk_in.id, slot.id, now=NOW)


def test_book_started_slot(db, tenant, athlete, subscription):
    early = make_slot(db, tenant, TODAY, time(5, 0), time(6, 0))

    with pytest.raises(PastSlot):
        book(db, athlete.id, early.id, now=NOW)

    db.refresh(early)
    assert early.reserved_count == 0
    assert db.exec(select(ClassUsage)).all() == []


def test_book_twice(db, athlete, subscription, slot):
    book(db, athlete.id, slot.id, now=NOW)

    with pytest.raises(Duplicate):
        book(db, athlete.id, slot.id, now=NOW)

    db.refresh(slot)
    assert slot.reserved_count == 1
    assert get_subscription(db, subscription.id).classes_used_this_period == 1


def test_book_full_slot(db, tenant, athlete, subscription, rival):
    single = make_slot(db, tenant, TOMORROW, time(11, 0), time(12, 0), capacity=1)
    book(db, rival.id, single.id, now=NOW)

    with pytest.raises(Full):
        book(db, athlete.id, single.id, now=NOW)

    sub = get_subscription(db, subscription.id)
    assert sub.classes_used_this_period == 0
    assert sub.version == 0


def test_book_beyond_weekly_quota(db, tenant, athlete, subscription):
    slots = [
        make_slot(db, tenant, TOMORROW + timedelta(days=offset), time(9, 0), time(10, 0))
        for offset in range(4)
    ]
    for slot in slots[:3]:
        book(db, athlete.id, slot.id, now=NOW)

    with pytest.raises(CannotBook) as exc_info:
        book(db, athlete.id, slots[3].id, now=NOW)
    assert exc_info.value.message == "No classes left this week"

    db.refresh(slots[3])
    assert slots[3].reserved_count == 0


def test_cancel_credits_entitlement(db, athlete, subscription, slot):
    published = []
    event_bus.subscribe("ReservationCancelled", published.append)
    reservation = book(db, athlete.id, slot.id, now=NOW)

    result = cancel(db, reservation.id, athlete.id, now=NOW)

    assert result.credited is True
    assert result.slot_id == slot.id
    assert db.get(Reservation, reservation.id) is None
    db.refresh(slot)
    assert slot.reserved_count == 0
    assert db.exec(select(ClassUsage)).all() == []
    sub = get_subscription(db, subscription.id)
    assert sub.classes_remaining_this_period == 12
    assert sub.classes_remaining_this_week == 3
    assert published[0].credited is True


def test_cancel_without_credit_keeps_usage(db, athlete, subscription, slot, monkeypatch):
    monkeypatch.setattr(get_settings(), "CREDIT_ON_CANCEL", False)
    reservation = book(db, athlete.id, slot.id, now=NOW)

    result = cancel(db, reservation.id, athlete.id, now=NOW)

    assert result.credited is False
    usage = db.exec(select(ClassUsage)).one()
    assert usage.reservation_id is None
    assert get_subscription(db, subscription.id).classes_remaining_this_period == 11
    db.refresh(slot)
    assert slot.reserved_count == 0


def test_cancel_someone_elses_reservation(db, athlete, subscription, rival, slot):
    reservation = book(db, athlete.id, slot.id, now=NOW)

    with pytest.raises(Forbidden):
        cancel(db, reservation.id, rival.id, now=NOW)

    assert db.get(Reservation, reservation.id) is not None


def test_cancel_inside_cutoff(db, tenant, athlete, subscription):
    soon = make_slot(db, tenant, TODAY, time(7, 0), time(8, 0))
    reservation = book(db, athlete.id, soon.id, now=NOW)

    with pytest.raises(CutoffExceeded):
        cancel(db, reservation.id, athlete.id, now=NOW)

    db.refresh(soon)
    assert soon.reserved_count == 1


def test_cancel_exactly_at_cutoff(db, tenant, athlete, subscription):
    at_cutoff = make_slot(db, tenant, TODAY, time(8, 0), time(9, 0))
    reservation = book(db, athlete.id, at_cutoff.id, now=NOW)

    assert cancel(db, reservation.id, athlete.id, now=NOW).credited is True


def test_cancel_twice(db, athlete, subscription, slot):
    reservation = book(db, athlete.id, slot.id, now=NOW)
    cancel(db, reservation.id, athlete.id, now=NOW)

    with pytest.raises(NotFound):
        cancel(db, reservation.id, athlete.id, now=NOW)

    db.refresh(slot)
    assert slot.reserved_count == 0


def test_list_user_reservations(db, tenant, athlete, subscription, slot):
    later = make_slot(db, tenant, TOMORROW + timedelta(days=1), time(9, 0), time(10, 0))
    book(db, athlete.id, later.id, now=NOW)
    book(db, athlete.id, slot.id, now=NOW)

    reservations = list_user_reservations(db, athlete.id, tenant.id)
    assert [r.slot_id for r in reservations] == [slot.id, later.id]

    upcoming = list_user_reservations(db, athlete.id, tenant.id, from_date=later.slot_date)
    assert [r.slot_id for r in upcoming] == [later.id]
    assert db.get(Slot, later.id).reserved_count == 1


def race_facility(session: Session, members: int):
    tenant = Tenant(name="Race Gym", slug="race-gym")
    session.add(tenant)
    session.commit()
    plan = PaymentPlan(
        tenant_id=tenant.id,
        name="3x per week",
        amount=Decimal("100.00"),
        classes_per_week=3,
        max_classes_per_period=12,
    )
    session.add(plan)
    session.commit()
    users = [make_user(session, tenant, f"member{n}@test.com") for n in range(members)]
    for user in users:
        subscribe(session, user, plan)
    return tenant, [user.id for user in users]


def race(engine, attempts):
    """Run each booking attempt on its own thread and session, released together"""
    barrier = threading.Barrier(len(attempts))
    outcomes = []
    lock = threading.Lock()

    def run(user_id, slot_id):
        with Session(engine) as session:
            barrier.wait()
            try:
                book(session, user_id, slot_id, now=NOW)
                outcome = "OK"
            except (Full, CannotBook) as e:
                outcome = e.code
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=run, args=attempt) for attempt in attempts]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return sorted(outcomes)


def test_concurrent_bookings_never_overbook(file_engine):
    """Four members race for a slot with two places"""
    with Session(file_engine) as session:
        tenant, user_ids = race_facility(session, 4)
        slot_id = make_slot(session, tenant, TOMORROW, time(9, 0), time(10, 0), capacity=2).id

    outcomes = race(file_engine, [(user_id, slot_id) for user_id in user_ids])

    assert outcomes == ["Full", "Full", "OK", "OK"]
    with Session(file_engine) as session:
        assert session.get(Slot, slot_id).reserved_count == 2
        assert len(session.exec(select(Reservation)).all()) == 2
        assert len(session.exec(select(ClassUsage)).all()) == 2
        subscriptions = session.exec(select(Subscription)).all()
        assert sum(s.classes_used_this_period for s in subscriptions) == 2
        assert sum(s.classes_remaining_this_period for s in subscriptions) == 4 * 12 - 2


def test_concurrent_bookings_respect_weekly_quota(file_engine):
    """One member books four classes of the same week at once with three left"""
    with Session(file_engine) as session:
        tenant, (user_id,) = race_facility(session, 1)
        slot_ids = [
            make_slot(session, tenant, TOMORROW + timedelta(days=offset), time(9, 0), time(10, 0)).id
            for offset in range(4)
        ]

    outcomes = race(file_engine, [(user_id, slot_id) for slot_id in slot_ids])

    assert outcomes == ["CannotBook", "OK", "OK", "OK"]
    with Session(file_engine) as session:
        subscription = session.exec(select(Subscription)).one()
        assert subscription.classes_used_this_week == 3
        assert subscription.classes_remaining_this_week == 0
        assert subscription.classes_used_this_period == 3
        assert subscription.classes_remaining_this_period == 9
        assert len(session.exec(select(ClassUsage)).all()) == 3
        assert sum(session.get(Slot, slot_id).reserved_count for slot_id in slot_ids) == 3
