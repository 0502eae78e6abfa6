"""
Scheduled triggers. Every route requires the cron secret.
"""
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import is_testing_mode, require_cron_secret
from studio_admin.chat.service import cleanup_sessions
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz
from studio_admin.periods.dates import last_ended_period
from studio_admin.periods.service import auto_close
from studio_admin.sedes.service import purge_inactive_assignments
from studio_admin.shop.service import is_period_closed, process_installments

router = APIRouter(tags=["Cron"], dependencies=[Depends(require_cron_secret)])


@router.get("/auto-close-calculator")
def auto_close_calculator(
    db: Session = Depends(get_db),
    testing: bool = Depends(is_testing_mode),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """Runs the early freeze or the full close depending on the business clock."""
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        result = auto_close(db, now_in_business_tz(), testing=testing)
        logger.info(f"Auto close: action={result['action']}")
        return result
    except DOMAIN_ERRORS as e:
        logger.warning(f"Auto close rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/shop-process-installments")
def shop_process_installments(
    db: Session = Depends(get_db),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """Charges the installments of the last ended period once its closure has completed."""
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    today = now_in_business_tz().date()
    period_date, period_type = last_ended_period(today)
    if not is_period_closed(db, period_date, period_type):
        logger.info(f"Installments skipped: {period_date} {period_type} is not closed yet")
        return {"success": True, "skipped": True, "period_date": period_date, "period_type": period_type}
    try:
        summary = process_installments(db, period_date, period_type)
        logger.info(f"Installments processed for {period_date} {period_type}: {summary}")
        return {"success": True, "period_date": period_date, "period_type": period_type, **summary}
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/chat-cleanup")
def chat_cleanup(db: Session = Depends(get_db)):
    result = cleanup_sessions(db)
    result["assignments_purged"] = purge_inactive_assignments(db)
    return {"success": True, **result}
