"""
Recurring reservation API endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from typing import List
import structlog
import uuid

from classbook.core.database import get_session
from classbook.core.dependencies import get_current_user_id, get_tenant_id
from classbook.core.permissions import Permission, require_permission
from classbook.api.schemas import (
    CancelRuleResultRead, ExpansionSummaryRead, RecurringRuleCreate,
    RecurringRuleExpanded, RecurringRuleRead
)
from classbook.services import recurring as recurring_service

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/", response_model=RecurringRuleExpanded, status_code=status.HTTP_201_CREATED)
def create_rule(
    rule_data: RecurringRuleCreate,
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    _: str = Depends(require_permission(Permission.RESERVATION_BOOK)),
    session: Session = Depends(get_session)
):
    """Create a recurring rule and book its occurrences in the current period"""
    options = recurring_service.RecurringRuleOptions(**rule_data.model_dump())
    rule, summary = recurring_service.create_rule(session, current_user_id, tenant_id, options)
    return {"rule": rule, "summary": summary.to_dict()}


@router.get("/", response_model=List[RecurringRuleRead])
def list_rules(
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """List the current user's recurring rules"""
    return recurring_service.list_rules(session, current_user_id, tenant_id)


@router.post("/{rule_id}/expand", response_model=ExpansionSummaryRead)
def expand_rule(
    rule_id: uuid.UUID,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Book any occurrences of the rule still missing in the current period"""
    recurring_service.get_owned_rule(session, rule_id, current_user_id)
    return recurring_service.expand(session, rule_id).to_dict()


@router.post("/{rule_id}/pause", response_model=RecurringRuleRead)
def pause_rule(
    rule_id: uuid.UUID,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Stop generating new occurrences"""
    return recurring_service.pause_rule(session, rule_id, current_user_id)


@router.post("/{rule_id}/resume", response_model=RecurringRuleExpanded)
def resume_rule(
    rule_id: uuid.UUID,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Resume a paused rule and expand it again"""
    rule, summary = recurring_service.resume_rule(session, rule_id, current_user_id)
    return {"rule": rule, "summary": summary.to_dict()}


@router.delete("/{rule_id}", response_model=CancelRuleResultRead)
def cancel_rule(
    rule_id: uuid.UUID,
    delete_reservations: bool = False,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Cancel a rule, optionally deleting the reservations it created"""
    return recurring_service.cancel_rule(
        session, rule_id, current_user_id, delete_reservations=delete_reservations
    )
