"""
Payment API endpoints
Payment completion drives subscription renewal
"""

from fastapi import APIRouter, Depends
from sqlmodel import Session
from typing import Dict
import structlog
import uuid

from classbook.core.database import get_session
from classbook.core.dependencies import get_tenant_id
from classbook.core.permissions import Permission, require_permission
from classbook.api.schemas import PaymentCompletedRequest, RenewalResultRead
from classbook.services import entitlements
from classbook.services.renewal import PaymentCompletedEvent, on_payment_completed

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/completed", response_model=RenewalResultRead)
def payment_completed(
    payment_data: PaymentCompletedRequest,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.PAYMENT_RECORD)),
    session: Session = Depends(get_session)
):
    """Record a completed payment and renew the subscriber's period

    Replaying the same transaction id returns the original result.
    """
    event = PaymentCompletedEvent(tenant_id=tenant_id, **payment_data.model_dump())
    return on_payment_completed(session, event)


@router.post("/mark-overdue")
def mark_overdue(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.PAYMENT_RECORD)),
    session: Session = Depends(get_session)
) -> Dict[str, int]:
    """Move pending payments past their grace period to overdue"""
    return {"marked": entitlements.mark_overdue_payments(session, tenant_id=tenant_id)}
