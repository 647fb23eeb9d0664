"""
Schedule API endpoints
Weekly configuration, date exceptions and slot generation
"""

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session
from typing import List, Optional
from datetime import date
import structlog
import uuid

from classbook.core.database import get_session
from classbook.core.dependencies import get_tenant_id
from classbook.core.exceptions import ValidationException
from classbook.core.permissions import Permission, require_permission
from classbook.api.schemas import (
    GenerationSummaryRead, RestoreReportRead, ScheduleConfigCreate,
    ScheduleConfigRead, ScheduleConfigUpdate, ScheduleExceptionCreate,
    ScheduleExceptionCreated, ScheduleExceptionRead, SlotGenerationRequest,
    SlotRead
)
from classbook.services import schedule as schedule_service
from classbook.services.slot_capacity import generate_slots

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/configs", response_model=List[ScheduleConfigRead])
def list_configs(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_VIEW)),
    session: Session = Depends(get_session)
):
    """List the weekly schedule configuration"""
    return schedule_service.list_configs(session, tenant_id)


@router.post("/configs", response_model=ScheduleConfigRead, status_code=status.HTTP_201_CREATED)
def create_config(
    config_data: ScheduleConfigCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_EDIT)),
    session: Session = Depends(get_session)
):
    """Add opening hours for a day of the week"""
    options = schedule_service.ScheduleConfigOptions(**config_data.model_dump())
    return schedule_service.create_config(session, tenant_id, options)


@router.patch("/configs/{config_id}", response_model=ScheduleConfigRead)
def update_config(
    config_id: uuid.UUID,
    config_data: ScheduleConfigUpdate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_EDIT)),
    session: Session = Depends(get_session)
):
    """Change a weekly configuration (existing slots are kept)"""
    changes = schedule_service.ScheduleConfigUpdate(**config_data.model_dump(exclude_unset=True))
    return schedule_service.update_config(session, tenant_id, config_id, changes)


@router.get("/exceptions", response_model=List[ScheduleExceptionRead])
def list_exceptions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_VIEW)),
    session: Session = Depends(get_session)
):
    """List active date exceptions"""
    return schedule_service.list_exceptions(session, tenant_id, start_date, end_date)


@router.post("/exceptions", response_model=ScheduleExceptionCreated, status_code=status.HTTP_201_CREATED)
def create_exception(
    exception_data: ScheduleExceptionCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_EDIT)),
    session: Session = Depends(get_session)
):
    """Close a date or reduce its hours/capacity, reshaping existing slots"""
    options = schedule_service.ScheduleExceptionOptions(**exception_data.model_dump())
    exception, report = schedule_service.create_exception(session, tenant_id, options)
    return {"exception": exception, "report": report.to_dict()}


@router.delete("/exceptions/{exception_id}", response_model=RestoreReportRead)
def delete_exception(
    exception_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_EDIT)),
    session: Session = Depends(get_session)
):
    """Remove an exception and rebuild the date from the weekly configuration"""
    return schedule_service.delete_exception(session, tenant_id, exception_id)


@router.post("/slots/generate", response_model=GenerationSummaryRead)
def generate(
    request: SlotGenerationRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SLOTS_GENERATE)),
    session: Session = Depends(get_session)
):
    """Generate slots for a date range; safe to repeat"""
    if request.end_date < request.start_date:
        raise ValidationException("End date is before start date")
    return generate_slots(session, tenant_id, request.start_date, request.end_date)


@router.get("/slots", response_model=List[SlotRead])
def list_slots(
    start_date: date,
    end_date: date,
    available_only: bool = Query(default=False),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SCHEDULE_VIEW)),
    session: Session = Depends(get_session)
):
    """List slots in a date range"""
    return schedule_service.list_slots(session, tenant_id, start_date, end_date, available_only)
