"""
Reservations API endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from typing import List, Optional
from datetime import date
import structlog
import uuid

from classbook.core.database import get_session
from classbook.core.dependencies import get_current_user_id, get_tenant_id
from classbook.core.exceptions import NotFound
from classbook.core.permissions import Permission, require_permission
from classbook.api.schemas import CancelResultRead, ReservationCreate, ReservationRead
from classbook.services import reservations as reservation_service

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
def book(
    reservation_data: ReservationCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    _: str = Depends(require_permission(Permission.RESERVATION_BOOK)),
    session: Session = Depends(get_session)
):
    """Book a slot for the current user"""
    slot = reservation_service.get_slot(session, reservation_data.slot_id)
    if slot.tenant_id != tenant_id:
        raise NotFound("Slot not found", details={"slot_id": str(reservation_data.slot_id)})
    return reservation_service.book(
        session, current_user_id, reservation_data.slot_id, notes=reservation_data.notes
    )


@router.get("/", response_model=List[ReservationRead])
def list_my_reservations(
    from_date: Optional[date] = None,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """List the current user's reservations"""
    return reservation_service.list_user_reservations(session, current_user_id, tenant_id, from_date)


@router.delete("/{reservation_id}", response_model=CancelResultRead)
def cancel(
    reservation_id: uuid.UUID,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Cancel one of the current user's reservations"""
    return reservation_service.cancel(session, reservation_id, current_user_id)
