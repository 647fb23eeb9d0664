"""
Calendar rule engine

Turns the weekly schedule configuration plus date-specific exceptions into
slot definitions for a date range. Planning is pure: the same configs,
exceptions and range always give the same definitions, and nothing here
writes to the database.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Sequence
import uuid

from sqlmodel import Session, select
import structlog

from classbook.core.config import get_settings
from classbook.core.exceptions import ConfigurationMissing
from classbook.core.timezone_utils import minutes_between
from classbook.models.schedule_config import ScheduleConfig
from classbook.models.schedule_exception import ScheduleException

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DayWindow:
    """Opening window for one date after exceptions are applied"""
    day: date
    start_time: time
    end_time: time
    capacity: int
    slot_duration_minutes: int
    allow_intermediate_slots: bool = False
    intermediate_capacity: Optional[int] = None
    intermediate_slot_duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class SlotDefinition:
    """A slot the calendar says should exist"""
    slot_date: date
    start_time: time
    end_time: time
    capacity: int
    is_intermediate: bool = False

    @property
    def duration_minutes(self) -> int:
        return minutes_between(self.start_time, self.end_time)

    def key(self) -> tuple:
        return (self.slot_date, self.start_time, self.end_time, self.is_intermediate)


@dataclass
class CalendarPlan:
    definitions: List[SlotDefinition]
    total_days: int
    days_with_config: int
    days_without_config: int


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive"""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _window_from_config(day: date, config: ScheduleConfig, default_duration: int) -> DayWindow:
    return DayWindow(
        day=day,
        start_time=config.start_time,
        end_time=config.end_time,
        capacity=config.capacity,
        slot_duration_minutes=config.slot_duration_minutes or default_duration,
        allow_intermediate_slots=config.allow_intermediate_slots,
        intermediate_capacity=config.intermediate_capacity,
        intermediate_slot_duration_minutes=config.intermediate_slot_duration_minutes,
    )


def resolve_day_windows(
    day: date,
    configs: Sequence[ScheduleConfig],
    exception: Optional[ScheduleException] = None,
    default_duration: Optional[int] = None,
) -> List[DayWindow]:
    """Opening windows for ``day``; an active exception overrides the configs"""
    default_duration = default_duration or get_settings().DEFAULT_SLOT_DURATION_MINUTES
    active_configs = [
        c for c in configs if c.is_active and c.day_of_week == day.weekday()
    ]
    windows = [_window_from_config(day, c, default_duration) for c in active_configs]

    if exception is None or not exception.is_active:
        return [w for w in windows if w.start_time < w.end_time]

    if exception.is_closed:
        return []

    if exception.start_time is not None or exception.end_time is not None:
        # Reduced hours collapse the day into a single window
        base = windows[0] if windows else None
        start = exception.start_time or (base.start_time if base else None)
        end = exception.end_time or (base.end_time if base else None)
        capacity = exception.capacity or (base.capacity if base else 0)
        if start is None or end is None or start >= end or capacity <= 0:
            return []
        windows = [DayWindow(
            day=day,
            start_time=start,
            end_time=end,
            capacity=capacity,
            slot_duration_minutes=base.slot_duration_minutes if base else default_duration,
            allow_intermediate_slots=base.allow_intermediate_slots if base else False,
            intermediate_capacity=base.intermediate_capacity if base else None,
            intermediate_slot_duration_minutes=base.intermediate_slot_duration_minutes if base else None,
        )]
    elif exception.capacity > 0:
        windows = [
            DayWindow(
                day=w.day,
                start_time=w.start_time,
                end_time=w.end_time,
                capacity=exception.capacity,
                slot_duration_minutes=w.slot_duration_minutes,
                allow_intermediate_slots=w.allow_intermediate_slots,
                intermediate_capacity=(
                    min(w.intermediate_capacity, exception.capacity)
                    if w.intermediate_capacity else None
                ),
                intermediate_slot_duration_minutes=w.intermediate_slot_duration_minutes,
            )
            for w in windows
        ]

    return [w for w in windows if w.start_time < w.end_time]


def _step_slots(
    day: date,
    first_start: datetime,
    limit: datetime,
    length: timedelta,
    step: timedelta,
    capacity: int,
    is_intermediate: bool,
) -> Iterator[SlotDefinition]:
    cursor = first_start
    while cursor < limit:
        slot_end = min(cursor + length, limit)
        yield SlotDefinition(
            slot_date=day,
            start_time=cursor.time(),
            end_time=slot_end.time(),
            capacity=capacity,
            is_intermediate=is_intermediate,
        )
        cursor += step


def build_day_slots(window: DayWindow) -> List[SlotDefinition]:
    """Cut a window into primary slots, plus offset intermediate slots"""
    window_start = datetime.combine(window.day, window.start_time)
    window_end = datetime.combine(window.day, window.end_time)
    duration = timedelta(minutes=window.slot_duration_minutes)

    slots = list(_step_slots(
        window.day, window_start, window_end, duration, duration,
        window.capacity, is_intermediate=False
    ))

    if window.allow_intermediate_slots:
        length = timedelta(
            minutes=window.intermediate_slot_duration_minutes or window.slot_duration_minutes
        )
        slots.extend(_step_slots(
            window.day,
            window_start + duration / 2,
            window_end,
            length,
            duration,
            window.intermediate_capacity or window.capacity,
            is_intermediate=True,
        ))

    return slots


def plan_slots(
    configs: Sequence[ScheduleConfig],
    exceptions: Iterable[ScheduleException],
    start: date,
    end: date,
    default_duration: Optional[int] = None,
) -> CalendarPlan:
    """Pure planning step over already-loaded configs and exceptions"""
    by_date: Dict[date, ScheduleException] = {}
    for exception in exceptions:
        if exception.is_active:
            by_date[exception.exception_date] = exception

    definitions: List[SlotDefinition] = []
    total_days = days_with_config = 0
    for day in iter_dates(start, end):
        total_days += 1
        windows = resolve_day_windows(day, configs, by_date.get(day), default_duration)
        if not windows:
            continue
        days_with_config += 1
        for window in windows:
            definitions.extend(build_day_slots(window))

    return CalendarPlan(
        definitions=definitions,
        total_days=total_days,
        days_with_config=days_with_config,
        days_without_config=total_days - days_with_config,
    )


def load_active_configs(session: Session, tenant_id: uuid.UUID) -> List[ScheduleConfig]:
    return list(session.exec(
        select(ScheduleConfig).where(
            ScheduleConfig.tenant_id == tenant_id,
            ScheduleConfig.is_active == True  # noqa: E712
        )
    ).all())


def load_active_exceptions(
    session: Session, tenant_id: uuid.UUID, start: date, end: date
) -> List[ScheduleException]:
    return list(session.exec(
        select(ScheduleException).where(
            ScheduleException.tenant_id == tenant_id,
            ScheduleException.is_active == True,  # noqa: E712
            ScheduleException.exception_date >= start,
            ScheduleException.exception_date <= end,
        ).order_by(ScheduleException.created_at)
    ).all())


def generate_slot_definitions(
    session: Session,
    tenant_id: uuid.UUID,
    start: date,
    end: date,
    apply_exceptions: bool = True,
) -> CalendarPlan:
    """Slot definitions for a tenant over ``[start, end]``

    Raises ConfigurationMissing when the tenant has no active schedule
    configuration at all.
    """
    configs = load_active_configs(session, tenant_id)
    if not configs:
        raise ConfigurationMissing(
            "No active schedule configuration for tenant",
            details={"tenant_id": str(tenant_id)},
        )

    exceptions = load_active_exceptions(session, tenant_id, start, end) if apply_exceptions else []
    plan = plan_slots(configs, exceptions, start, end)
    logger.debug(
        "Planned slots",
        tenant_id=str(tenant_id),
        start=start.isoformat(),
        end=end.isoformat(),
        definitions=len(plan.definitions),
    )
    return plan
