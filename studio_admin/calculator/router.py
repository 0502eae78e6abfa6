"""
Calculator endpoints: platform catalog, per-model configuration, value input,
live totals and archived history.
"""
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import get_current_user, require_admin
from studio_admin.auth.models import User
from studio_admin.calculator import service
from studio_admin.calculator.schemas import (
    ConfigResponse,
    ConfigUpdate,
    HistoryResponse,
    PlatformCreate,
    PlatformResponse,
    PlatformUpdate,
    ValuesResponse,
    ValuesSaveRequest,
)
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz
from studio_admin.periods.dates import normalize_period

router = APIRouter(tags=["Calculator"])


@router.get("/platforms", response_model=List[PlatformResponse])
def list_platforms(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return service.list_platforms(db, include_inactive and current_user.is_admin)


@router.post("/platforms", response_model=PlatformResponse, status_code=201)
def create_platform(
    data: PlatformCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.create_platform(db, current_user, data)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.patch("/platforms/{platform_id}", response_model=PlatformResponse)
def update_platform(
    platform_id: str,
    data: PlatformUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.update_platform(db, current_user, platform_id, data)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


def _config_response(db: Session, model: User) -> ConfigResponse:
    config = service.get_config(db, model.id)
    group = service.get_group_for(db, model)
    return ConfigResponse(
        model_id=model.id,
        enabled_platforms=config.enabled_platforms if config else [],
        percentage_override=config.percentage_override if config else None,
        platform_percentages=config.platform_percentages if config else {},
        min_quota_override=config.min_quota_override if config else None,
        group_percentage=group.percentage if group else None,
        effective_percentage=service.effective_percentage(config, group),
    )


@router.get("/config/{model_id}", response_model=ConfigResponse)
def get_config(
    model_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        model = service.resolve_target_model(db, current_user, model_id)
        return _config_response(db, model)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.put("/config/{model_id}", response_model=ConfigResponse)
def set_config(
    model_id: str,
    data: ConfigUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        service.set_config(db, current_user, model_id, data)
        return _config_response(db, service.get_model(db, model_id))
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.get("/values", response_model=ValuesResponse)
def get_values(
    model_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        model = service.resolve_target_model(db, current_user, model_id)
        period_date, period_type = normalize_period(now_in_business_tz().date())
        return ValuesResponse(
            model_id=model.id,
            period_date=period_date,
            period_type=period_type,
            values=service.values_for_period(db, model.id, period_date),
            frozen_platforms=sorted(service.frozen_platform_ids(db, model.id, period_date)),
        )
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/values", response_model=ValuesResponse)
def save_values(
    data: ValuesSaveRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Saves the values of the current period.

    Platforms frozen by the early freeze and periods under closure are read-only.
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    today = now_in_business_tz().date()
    try:
        rows = service.save_values(db, current_user, data.model_id, data.values, today)
        model_id = rows[0].model_id if rows else (data.model_id or current_user.id)
        period_date, period_type = normalize_period(today)
        return ValuesResponse(
            model_id=model_id,
            period_date=period_date,
            period_type=period_type,
            values=rows,
            frozen_platforms=sorted(service.frozen_platform_ids(db, model_id, period_date)),
        )
    except DOMAIN_ERRORS as e:
        logger.warning(f"Values rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/totals")
def get_totals(
    model_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Dict[str, Any]:
    try:
        return service.get_totals(db, current_user, model_id, now_in_business_tz().date())
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.get("/history", response_model=List[HistoryResponse])
def get_history(
    model_id: Optional[str] = None,
    period_date: Optional[date] = None,
    period_type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        return service.get_history(db, current_user, model_id, period_date, period_type)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
