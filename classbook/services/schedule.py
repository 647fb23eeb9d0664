"""
Schedule administration: weekly configuration and date exceptions

Mutations take explicit option structs instead of free-form payloads.
"""

from dataclasses import dataclass, fields
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple
import uuid

from sqlmodel import Session, select
import structlog

from classbook.core.exceptions import (
    ConflictException,
    DomainException,
    NotFound,
    PastDate,
    ValidationException,
)
from classbook.core.timezone_utils import facility_today
from classbook.models.schedule_config import ScheduleConfig
from classbook.models.schedule_exception import ScheduleException
from classbook.models.slot import Slot
from classbook.services.slot_capacity import (
    ExceptionApplyReport,
    RestoreReport,
    apply_exception,
    restore_from_exception,
)

logger = structlog.get_logger(__name__)


def _validate_window(start_time: Optional[time], end_time: Optional[time]) -> None:
    if start_time is not None and end_time is not None and start_time >= end_time:
        raise ValidationException("Start time must be before end time")


@dataclass
class ScheduleConfigOptions:
    day_of_week: int
    start_time: time
    end_time: time
    capacity: int = 1
    slot_duration_minutes: int = 60
    allow_intermediate_slots: bool = False
    intermediate_capacity: Optional[int] = None
    intermediate_slot_duration_minutes: Optional[int] = None

    def validate(self) -> None:
        if not 0 <= self.day_of_week <= 6:
            raise ValidationException("Day of week goes from 0 (Monday) to 6 (Sunday)")
        _validate_window(self.start_time, self.end_time)
        if self.capacity < 1:
            raise ValidationException("Capacity must be at least 1")
        if self.slot_duration_minutes < 1:
            raise ValidationException("Slot duration must be positive")


@dataclass
class ScheduleConfigUpdate:
    """Fields left as None are not changed"""
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    capacity: Optional[int] = None
    slot_duration_minutes: Optional[int] = None
    allow_intermediate_slots: Optional[bool] = None
    intermediate_capacity: Optional[int] = None
    intermediate_slot_duration_minutes: Optional[int] = None
    is_active: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass
class ScheduleExceptionOptions:
    exception_date: date
    is_closed: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    capacity: int = 0
    reason: Optional[str] = None

    def validate(self) -> None:
        _validate_window(self.start_time, self.end_time)
        if self.capacity < 0:
            raise ValidationException("Capacity cannot be negative")
        if not self.is_closed and self.start_time is None and self.end_time is None and not self.capacity:
            raise ValidationException(
                "An exception must close the day, change its hours or change its capacity"
            )


# Configuration

def list_configs(session: Session, tenant_id: uuid.UUID) -> List[ScheduleConfig]:
    return list(session.exec(
        select(ScheduleConfig)
        .where(ScheduleConfig.tenant_id == tenant_id)
        .order_by(ScheduleConfig.day_of_week, ScheduleConfig.start_time)
    ).all())


def get_config(session: Session, tenant_id: uuid.UUID, config_id: uuid.UUID) -> ScheduleConfig:
    config = session.get(ScheduleConfig, config_id)
    if not config or config.tenant_id != tenant_id:
        raise NotFound("Schedule configuration not found", details={"config_id": str(config_id)})
    return config


def _check_overlap(
    session: Session,
    tenant_id: uuid.UUID,
    day_of_week: int,
    start_time: time,
    end_time: time,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    statement = select(ScheduleConfig).where(
        ScheduleConfig.tenant_id == tenant_id,
        ScheduleConfig.day_of_week == day_of_week,
        ScheduleConfig.is_active == True,  # noqa: E712
        ScheduleConfig.start_time < end_time,
        ScheduleConfig.end_time > start_time,
    )
    if exclude_id:
        statement = statement.where(ScheduleConfig.id != exclude_id)
    clash = session.exec(statement).first()
    if clash:
        raise ConflictException(
            "Another configuration already covers part of this window",
            details={"config_id": str(clash.id)},
        )


def create_config(
    session: Session, tenant_id: uuid.UUID, options: ScheduleConfigOptions
) -> ScheduleConfig:
    options.validate()
    _check_overlap(session, tenant_id, options.day_of_week, options.start_time, options.end_time)

    config = ScheduleConfig(tenant_id=tenant_id, **{f.name: getattr(options, f.name) for f in fields(options)})
    session.add(config)
    session.commit()
    session.refresh(config)
    logger.info(f"Created schedule config {config.id} for weekday {config.day_of_week}")
    return config


def update_config(
    session: Session,
    tenant_id: uuid.UUID,
    config_id: uuid.UUID,
    changes: ScheduleConfigUpdate,
) -> ScheduleConfig:
    """Apply a partial update; existing slots are not regenerated"""
    config = get_config(session, tenant_id, config_id)
    values = changes.changes()

    start_time = values.get("start_time", config.start_time)
    end_time = values.get("end_time", config.end_time)
    _validate_window(start_time, end_time)
    if values.get("capacity") is not None and values["capacity"] < 1:
        raise ValidationException("Capacity must be at least 1")
    if values.get("is_active", config.is_active):
        _check_overlap(session, tenant_id, config.day_of_week, start_time, end_time, exclude_id=config.id)

    for key, value in values.items():
        setattr(config, key, value)
    config.updated_at = datetime.utcnow()

    session.add(config)
    session.commit()
    session.refresh(config)
    logger.info(f"Updated schedule config {config.id}", fields=sorted(values))
    return config


# Exceptions

def list_exceptions(
    session: Session,
    tenant_id: uuid.UUID,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[ScheduleException]:
    statement = select(ScheduleException).where(
        ScheduleException.tenant_id == tenant_id,
        ScheduleException.is_active == True,  # noqa: E712
    )
    if start:
        statement = statement.where(ScheduleException.exception_date >= start)
    if end:
        statement = statement.where(ScheduleException.exception_date <= end)
    return list(session.exec(statement.order_by(ScheduleException.exception_date)).all())


def create_exception(
    session: Session,
    tenant_id: uuid.UUID,
    options: ScheduleExceptionOptions,
    today: Optional[date] = None,
) -> Tuple[ScheduleException, ExceptionApplyReport]:
    """Record an exception and reshape that date's existing slots"""
    today = today or facility_today()
    options.validate()
    if options.exception_date < today:
        raise PastDate(
            "Exceptions cannot be created for past dates",
            details={"exception_date": options.exception_date.isoformat()},
        )

    existing = session.exec(
        select(ScheduleException).where(
            ScheduleException.tenant_id == tenant_id,
            ScheduleException.exception_date == options.exception_date,
            ScheduleException.is_active == True,  # noqa: E712
        )
    ).first()
    if existing:
        raise ConflictException(
            "An exception already exists for this date",
            details={"exception_id": str(existing.id)},
        )

    exception = ScheduleException(
        tenant_id=tenant_id,
        exception_date=options.exception_date,
        is_closed=options.is_closed,
        start_time=options.start_time,
        end_time=options.end_time,
        capacity=options.capacity,
        reason=options.reason,
    )
    session.add(exception)
    session.commit()
    session.refresh(exception)
    logger.info(f"Created schedule exception {exception.id} for {exception.exception_date}")

    report = apply_exception(session, tenant_id, exception)
    return exception, report


def delete_exception(
    session: Session, tenant_id: uuid.UUID, exception_id: uuid.UUID
) -> RestoreReport:
    """Remove an exception and rebuild its date from the weekly configuration"""
    exception = session.get(ScheduleException, exception_id)
    if not exception or exception.tenant_id != tenant_id or not exception.is_active:
        raise NotFound("Schedule exception not found", details={"exception_id": str(exception_id)})

    try:
        report = restore_from_exception(session, exception, commit=False)
        exception.is_active = False
        exception.updated_at = datetime.utcnow()
        session.add(exception)
        session.commit()
    except DomainException:
        session.rollback()
        raise

    logger.info(f"Deleted schedule exception {exception_id}")
    return report


def list_slots(
    session: Session,
    tenant_id: uuid.UUID,
    start: date,
    end: date,
    available_only: bool = False,
) -> List[Slot]:
    statement = select(Slot).where(
        Slot.tenant_id == tenant_id,
        Slot.slot_date >= start,
        Slot.slot_date <= end,
    )
    if available_only:
        statement = statement.where(Slot.reserved_count < Slot.capacity)
    return list(session.exec(
        statement.order_by(Slot.slot_date, Slot.start_time, Slot.is_intermediate)
    ).all())
