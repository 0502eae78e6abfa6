"""
Admin billing summary.
"""
from datetime import date
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import require_admin
from studio_admin.auth.models import User
from studio_admin.billing import service
from studio_admin.billing.schemas import BillingSummaryResponse
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz

router = APIRouter(tags=["Billing"])


@router.get("", response_model=BillingSummaryResponse)
def billing_summary(
    period_date: Optional[date] = None,
    group_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Per-model USD and COP split between model and studio for a quincena
    (today's by default). Admins see their studio, super admins every studio.
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        result = service.billing_summary(db, current_user, period_date or now_in_business_tz().date(), group_id)
        logger.info(f"Billing summary for {result['period_date']}: {result['summary']['total_models']} models")
        return result
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
