"""
Period closure endpoints. Scheduled steps authenticate with the cron secret,
manual steps require an admin, emergency unfreeze its own secret.
"""
from datetime import date
from typing import Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import (
    get_current_user,
    is_testing_mode,
    require_admin,
    require_cron_secret,
    require_emergency_secret,
)
from studio_admin.auth.models import User
from studio_admin.calculator.service import resolve_target_model
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.exceptions import NotFoundError
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz
from studio_admin.periods import service
from studio_admin.periods.schemas import (
    ClosePeriodRequest,
    ClosureStatusResponse,
    FreezeStatusResponse,
    FrozenPlatformItem,
    ManualCloseRequest,
    UnfreezeResponse,
)

router = APIRouter(tags=["Period Closure"])
unfreeze_router = APIRouter(tags=["Period Closure"])


@router.post("/early-freeze", dependencies=[Depends(require_cron_secret)])
def early_freeze(
    db: Session = Depends(get_db),
    testing: bool = Depends(is_testing_mode),
    x_correlation_id: Optional[str] = Header(default=None)
):
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        result = service.run_early_freeze(db, now_in_business_tz(), testing=testing)
        logger.info(f"Early freeze finished: {result.get('results') or 'already executed'}")
        return result
    except DOMAIN_ERRORS as e:
        logger.warning(f"Early freeze rejected: {str(e)}")
        raise to_http_exception(e)


@router.post("/close-period", dependencies=[Depends(require_cron_secret)])
def close_period(
    data: Optional[ClosePeriodRequest] = None,
    db: Session = Depends(get_db),
    testing: bool = Depends(is_testing_mode),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Full close of a period. Without a body the period is derived from today:
    day 1 closes the previous 16-31, day 16 closes 1-15. Outside the closure
    window the call is rejected unless `x-testing-mode` is set.
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    data = data or ClosePeriodRequest()
    try:
        result = service.close_period(
            db,
            data.period_date,
            data.period_type,
            now=now_in_business_tz(),
            testing=testing,
        )
        logger.info(f"Close period finished: {result}")
        return result
    except DOMAIN_ERRORS as e:
        logger.warning(f"Close period rejected: {str(e)}")
        raise to_http_exception(e)


@router.post("/manual-close", response_model=ClosureStatusResponse)
def manual_close(
    data: ManualCloseRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    x_correlation_id: Optional[str] = Header(default=None)
):
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        row = service.manual_close(
            db, current_user, data.period_date, data.period_type, data.target_status, force=data.force
        )
        logger.info(f"Manual closure by {current_user.id}: {row.period_date} {row.period_type} -> {row.status.value}")
        return row
    except DOMAIN_ERRORS as e:
        logger.warning(f"Manual closure rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/status", response_model=ClosureStatusResponse)
def closure_status(
    period_date: Optional[date] = None,
    period_type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        row = service.get_status(db, period_date or now_in_business_tz().date(), period_type)
        if not row:
            raise NotFoundError("No closure status for this period")
        return row
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.get("/platform-freeze-status", response_model=FreezeStatusResponse)
def platform_freeze_status(
    model_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        model = resolve_target_model(db, current_user, model_id)
        return service.platform_freeze_status(db, model.id, now_in_business_tz().date())
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@unfreeze_router.get("", response_model=Dict[str, List[FrozenPlatformItem]])
def list_frozen_platforms(db: Session = Depends(get_db), current_user: User = Depends(require_admin)):
    return service.list_frozen(db)


@unfreeze_router.delete("", response_model=UnfreezeResponse, dependencies=[Depends(require_emergency_secret)])
def unfreeze_platforms(
    model_id: Optional[str] = None,
    db: Session = Depends(get_db),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """Emergency removal of early-freeze locks, for every model or just `model_id`."""
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    removed = service.emergency_unfreeze(db, model_id)
    logger.warning(f"Emergency unfreeze executed: removed={removed}, model_id={model_id}")
    return UnfreezeResponse(removed=removed)
