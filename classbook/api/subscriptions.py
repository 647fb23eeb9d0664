"""
Subscription API endpoints
Entitlement status, booking eligibility and suspensions
"""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from datetime import date
import structlog
import uuid

from classbook.core.database import get_session
from classbook.core.dependencies import get_current_user_id, get_tenant_id, get_user_role
from classbook.core.exceptions import Forbidden, NotFound
from classbook.core.permissions import Permission, get_permissions_for_role, require_permission
from classbook.api.schemas import (
    CanBookRead, EntitlementStatusRead, SuspensionCreate, SuspensionEnd, SuspensionRead
)
from classbook.models.subscription import Subscription
from classbook.models.suspension import SubscriptionSuspension
from classbook.services import entitlements

logger = structlog.get_logger(__name__)
router = APIRouter()


def _visible_subscription(
    session: Session,
    subscription_id: uuid.UUID,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    role: str,
) -> Subscription:
    subscription = session.get(Subscription, subscription_id)
    if not subscription or subscription.tenant_id != tenant_id:
        raise NotFound("Subscription not found", details={"subscription_id": str(subscription_id)})
    if (
        subscription.user_id != user_id
        and Permission.ENTITLEMENT_VIEW_OTHERS not in get_permissions_for_role(role)
    ):
        raise Forbidden("You can only view your own subscription")
    return subscription


@router.get("/me/status", response_model=EntitlementStatusRead)
def my_status(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Entitlement counters of the current user's subscription"""
    subscription = entitlements.get_current_subscription(session, current_user_id, tenant_id)
    if not subscription:
        raise NotFound("You have no subscription at this facility")
    return entitlements.get_entitlement_status(session, subscription.id)


@router.get("/{subscription_id}/status", response_model=EntitlementStatusRead)
def subscription_status(
    subscription_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    role: str = Depends(get_user_role),
    session: Session = Depends(get_session)
):
    """Entitlement counters of a subscription"""
    _visible_subscription(session, subscription_id, tenant_id, current_user_id, role)
    return entitlements.get_entitlement_status(session, subscription_id)


@router.get("/{subscription_id}/can-book", response_model=CanBookRead)
def can_book(
    subscription_id: uuid.UUID,
    target_date: date,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    role: str = Depends(get_user_role),
    session: Session = Depends(get_session)
):
    """Whether the subscription may book a class on a date"""
    subscription = _visible_subscription(session, subscription_id, tenant_id, current_user_id, role)
    eligibility = entitlements.check_eligibility(session, subscription, target_date)
    session.commit()
    return CanBookRead(
        subscription_id=subscription_id,
        target_date=target_date,
        allowed=eligibility.allowed,
        reason=eligibility.reason,
    )


@router.post("/suspensions", response_model=SuspensionRead, status_code=status.HTTP_201_CREATED)
def create_suspension(
    suspension_data: SuspensionCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SUSPENSION_MANAGE)),
    session: Session = Depends(get_session)
):
    """Suspend a user's entitlement for a date range"""
    return entitlements.create_suspension(
        session,
        suspension_data.user_id,
        tenant_id,
        suspension_data.start_date,
        suspension_data.end_date,
        reason=suspension_data.reason,
        notes=suspension_data.notes,
        subscription_id=suspension_data.subscription_id,
    )


@router.post("/suspensions/{suspension_id}/end", response_model=SuspensionRead)
def end_suspension(
    suspension_id: uuid.UUID,
    end_data: SuspensionEnd,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    _: str = Depends(require_permission(Permission.SUSPENSION_MANAGE)),
    session: Session = Depends(get_session)
):
    """Lift a suspension, entirely or from a date onwards"""
    suspension = session.get(SubscriptionSuspension, suspension_id)
    if not suspension or suspension.tenant_id != tenant_id:
        raise NotFound("Suspension not found", details={"suspension_id": str(suspension_id)})
    return entitlements.end_suspension(session, suspension_id, end_data.on)
