"""
FX rate endpoints.
"""
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import get_current_user, require_admin
from studio_admin.auth.models import User
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.rates import service
from studio_admin.rates.external import get_external_reference_rates
from studio_admin.rates.models import RateKind, RateScope
from studio_admin.rates.schemas import EffectiveRatesResponse, RateCreate, RateResponse, ReferenceRatesResponse

router = APIRouter(tags=["Rates"])


@router.get("", response_model=EffectiveRatesResponse)
def get_rates(
    group_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Rates in force for a group (or the caller's own group)."""
    group_id = group_id or current_user.group_id
    rates = service.get_effective_rates(db, group_id)
    return EffectiveRatesResponse(
        usd_cop=rates.usd_cop,
        eur_usd=rates.eur_usd,
        gbp_usd=rates.gbp_usd,
        group_id=group_id,
        active=service.list_active_rates(db, group_id),
    )


@router.post("", response_model=RateResponse, status_code=201)
def create_rate(
    data: RateCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    x_correlation_id: Optional[str] = Header(default=None)
):
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        rate = service.set_rate(
            db,
            kind=data.kind,
            value=data.value,
            scope=data.scope,
            scope_id=data.scope_id,
            author_id=current_user.id,
        )
        logger.info(f"Rate published: id={rate.id}")
        return rate
    except DOMAIN_ERRORS as e:
        logger.warning(f"Rate rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/history", response_model=List[RateResponse])
def rate_history(
    kind: Optional[RateKind] = None,
    scope: Optional[RateScope] = None,
    scope_id: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return service.list_rate_history(db, kind, scope, scope_id, min(max(limit, 1), 500))


@router.get("/reference", response_model=ReferenceRatesResponse)
def reference_rates(current_user: User = Depends(require_admin)):
    """Market rates from public sources, for comparison before publishing."""
    return ReferenceRatesResponse(**get_external_reference_rates().as_dict())
