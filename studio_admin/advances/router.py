"""
Advance endpoints: models request and confirm, admins review and pay.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from studio_admin.advances import service
from studio_admin.advances.models import AdvanceStatus
from studio_admin.advances.schemas import AdvanceRequest, AdvanceResponse, AdvanceReview
from studio_admin.auth.dependencies import get_current_user, require_admin, require_model
from studio_admin.auth.models import User
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz

router = APIRouter(tags=["Advances"])


@router.get("", response_model=List[AdvanceResponse])
def list_advances(
    status: Optional[List[AdvanceStatus]] = Query(default=None),
    period_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return service.list_advances(db, current_user, status, period_date)


@router.get("/available")
def available(db: Session = Depends(get_db), current_user: User = Depends(require_model)) -> Dict[str, Decimal]:
    """How much the caller may still request for the current quincena."""
    return service.available_for_advance(db, current_user, now_in_business_tz().date())


@router.post("", response_model=AdvanceResponse, status_code=201)
def request_advance(
    data: AdvanceRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_model),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Requests an advance on the current quincena.

    - Capped at the advance limit minus requests already committed this period
    - Only one pending request per period
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        advance = service.request_advance(db, current_user, data, now_in_business_tz().date())
        logger.info(f"Advance requested: id={advance.id}, amount={advance.amount}")
        return advance
    except DOMAIN_ERRORS as e:
        logger.warning(f"Advance rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/{advance_id}", response_model=AdvanceResponse)
def get_advance(advance_id: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    try:
        return service.get_advance(db, current_user, advance_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/{advance_id}/approve", response_model=AdvanceResponse)
def approve_advance(
    advance_id: str,
    data: Optional[AdvanceReview] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.approve_advance(db, current_user, advance_id, data.comment if data else None)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/{advance_id}/reject", response_model=AdvanceResponse)
def reject_advance(
    advance_id: str,
    data: Optional[AdvanceReview] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.reject_advance(db, current_user, advance_id, data.comment if data else None)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/{advance_id}/paid", response_model=AdvanceResponse)
def mark_paid(advance_id: str, db: Session = Depends(get_db), current_user: User = Depends(require_admin)):
    try:
        return service.mark_paid(db, current_user, advance_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/{advance_id}/confirm", response_model=AdvanceResponse)
def confirm_received(advance_id: str, db: Session = Depends(get_db), current_user: User = Depends(require_model)):
    try:
        return service.confirm_received(db, current_user, advance_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/{advance_id}/cancel", response_model=AdvanceResponse)
def cancel_advance(advance_id: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    try:
        return service.cancel_advance(db, current_user, advance_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
