"""
Business logic for the earnings calculator.
Loads rules, configuration and rates from the database and delegates the
arithmetic to the pure engine.
"""
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_admin.auth.models import User, UserRole
from studio_admin.auth.service import ensure_same_scope
from studio_admin.calculator.engine import (
    CalcResult,
    CalculatorSettings,
    PercentageRule,
    PlatformRule,
    compute_totals,
    resolve_percentage,
)
from studio_admin.calculator.models import CalculatorConfig, CalculatorHistory, CalculatorPlatform, ModelValue
from studio_admin.calculator.schemas import ConfigUpdate, PlatformCreate, PlatformUpdate, ValueItem
from studio_admin.core.config import settings
from studio_admin.core.exceptions import ConflictError, FrozenPlatformError, NotFoundError, ScopeError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.utils import to_decimal, utcnow
from studio_admin.periods.dates import normalize_period
from studio_admin.periods.models import ClosureStatus, EarlyFrozenPlatform, PeriodClosureStatus
from studio_admin.rates.service import get_effective_rates
from studio_admin.sedes.models import Group

CLOSING_STATUSES = (
    ClosureStatus.CLOSING_CALCULATORS,
    ClosureStatus.WAITING_SUMMARY,
    ClosureStatus.CLOSING_SUMMARY,
    ClosureStatus.ARCHIVING,
)


# Platforms

def list_platforms(db: Session, include_inactive: bool = False) -> List[CalculatorPlatform]:
    query = db.query(CalculatorPlatform)
    if not include_inactive:
        query = query.filter(CalculatorPlatform.is_active == True)  # noqa: E712
    return query.order_by(CalculatorPlatform.name).all()


def create_platform(db: Session, actor: User, data: PlatformCreate) -> CalculatorPlatform:
    platform = CalculatorPlatform(**data.model_dump())
    db.add(platform)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Platform {data.id} already exists")
    db.refresh(platform)
    audit_log(action="platform_created", user=actor.id, resource=f"platform_id={platform.id}")
    return platform


def update_platform(db: Session, actor: User, platform_id: str, data: PlatformUpdate) -> CalculatorPlatform:
    platform = db.query(CalculatorPlatform).filter(CalculatorPlatform.id == platform_id).first()
    if not platform:
        raise NotFoundError("Platform not found")
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(platform, field, value)
    db.commit()
    db.refresh(platform)
    audit_log(
        action="platform_updated",
        user=actor.id,
        resource=f"platform_id={platform.id}",
        details={k: str(v) for k, v in changes.items()}
    )
    return platform


def to_rule(platform: CalculatorPlatform) -> PlatformRule:
    return PlatformRule(
        id=platform.id,
        name=platform.name,
        conversion_type=platform.conversion_type,
        discount_factor=platform.discount_factor,
        tax_factor=platform.tax_factor,
        token_rate_usd=platform.token_rate_usd,
        full_model_share=platform.full_model_share,
    )


# Models and configuration

def get_model(db: Session, model_id: str) -> User:
    model = db.query(User).filter(User.id == model_id, User.role == UserRole.MODEL).first()
    if not model:
        raise NotFoundError("Model not found")
    return model


def resolve_target_model(db: Session, actor: User, model_id: Optional[str]) -> User:
    """Models act on themselves; admins name a model inside their scope."""
    if actor.role == UserRole.MODEL:
        if model_id and model_id != actor.id:
            raise ScopeError("Models can only access their own calculator")
        return actor
    if not model_id:
        raise ValueError("model_id is required")
    model = get_model(db, model_id)
    ensure_same_scope(actor, model.affiliate_studio_id)
    return model


def get_config(db: Session, model_id: str) -> Optional[CalculatorConfig]:
    return db.query(CalculatorConfig).filter(CalculatorConfig.model_id == model_id).first()


def get_group_for(db: Session, model: User) -> Optional[Group]:
    if not model.group_id:
        return None
    return db.query(Group).filter(Group.id == model.group_id).first()


def effective_percentage(config: Optional[CalculatorConfig], group: Optional[Group]) -> Decimal:
    return resolve_percentage(
        config.percentage_override if config else None,
        group.percentage if group else None,
        to_decimal(settings.DEFAULT_MODEL_PERCENTAGE),
    )


def set_config(db: Session, actor: User, model_id: str, data: ConfigUpdate) -> CalculatorConfig:
    model = get_model(db, model_id)
    ensure_same_scope(actor, model.affiliate_studio_id)

    known = {p.id for p in list_platforms(db)}
    unknown = sorted(set(data.enabled_platforms) - known)
    if unknown:
        raise ValueError(f"Unknown or inactive platforms: {', '.join(unknown)}")

    config = get_config(db, model_id)
    if not config:
        config = CalculatorConfig(model_id=model_id)
        db.add(config)

    config.enabled_platforms = sorted(set(data.enabled_platforms))
    config.percentage_override = data.percentage_override
    config.platform_percentages = {k: str(v) for k, v in data.platform_percentages.items()}
    config.min_quota_override = data.min_quota_override
    config.updated_by = actor.id

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Configuration was created concurrently; retry")
    db.refresh(config)

    audit_log(
        action="calculator_config_set",
        user=actor.id,
        resource=f"model_id={model_id}",
        details={
            "enabled_platforms": config.enabled_platforms,
            "percentage_override": str(config.percentage_override) if config.percentage_override is not None else None,
        }
    )
    return config


def build_settings(db: Session, model: User, config: Optional[CalculatorConfig] = None) -> CalculatorSettings:
    config = config if config is not None else get_config(db, model.id)
    group = get_group_for(db, model)

    min_quota = None
    if config and config.min_quota_override is not None:
        min_quota = config.min_quota_override
    elif group and group.min_quota_usd is not None:
        min_quota = group.min_quota_usd

    return CalculatorSettings(
        enabled_platforms=frozenset(config.enabled_platforms if config else []),
        percentage_rule=PercentageRule(
            percentage_model=effective_percentage(config, group),
            overrides={k: to_decimal(v) for k, v in ((config.platform_percentages or {}) if config else {}).items()},
        ),
        min_quota_usd=to_decimal(min_quota) if min_quota is not None else None,
        advance_max_ratio=to_decimal(settings.ADVANCE_MAX_RATIO),
    )


# Values

def frozen_platform_ids(db: Session, model_id: str, period_date: date) -> Set[str]:
    rows = db.query(EarlyFrozenPlatform.platform_id).filter(
        EarlyFrozenPlatform.model_id == model_id,
        EarlyFrozenPlatform.period_date == period_date,
    ).all()
    return {row[0] for row in rows}


def values_for_period(db: Session, model_id: str, period_date: date) -> List[ModelValue]:
    return db.query(ModelValue).filter(
        ModelValue.model_id == model_id,
        ModelValue.period_date == period_date,
    ).order_by(ModelValue.platform_id).all()


def _ensure_period_open(db: Session, period_date: date, period_type: str) -> None:
    status = db.query(PeriodClosureStatus).filter(
        PeriodClosureStatus.period_date == period_date,
        PeriodClosureStatus.period_type == period_type,
    ).first()
    if not status:
        return
    if status.status == ClosureStatus.COMPLETED:
        raise ValueError("Period already closed")
    if status.status in CLOSING_STATUSES:
        raise ConflictError("Period closure in progress; values are read-only")


def save_values(
    db: Session,
    actor: User,
    model_id: Optional[str],
    items: Iterable[ValueItem],
    today: date,
) -> List[ModelValue]:
    """
    Upserts the model's values for the period containing `today`.
    Platforms frozen for the model and periods being closed are rejected.
    """
    model = resolve_target_model(db, actor, model_id)
    period_date, period_type = normalize_period(today)
    _ensure_period_open(db, period_date, period_type)

    items = list(items)
    config = get_config(db, model.id)
    enabled = set(config.enabled_platforms) if config else set()
    disabled = sorted({i.platform_id for i in items} - enabled)
    if disabled:
        raise ValueError(f"Platforms not enabled for this model: {', '.join(disabled)}")

    frozen = frozen_platform_ids(db, model.id, period_date) & {i.platform_id for i in items}
    if frozen:
        raise FrozenPlatformError(f"Platforms frozen for this period: {', '.join(sorted(frozen))}")

    now = utcnow()
    try:
        for item in items:
            updated = db.query(ModelValue).filter(
                ModelValue.model_id == model.id,
                ModelValue.platform_id == item.platform_id,
                ModelValue.period_date == period_date,
            ).update({ModelValue.value: item.value, ModelValue.updated_at: now}, synchronize_session=False)
            if not updated:
                db.add(ModelValue(
                    model_id=model.id,
                    platform_id=item.platform_id,
                    period_date=period_date,
                    value=item.value,
                    updated_at=now,
                ))
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Values were saved concurrently; retry")

    audit_log(
        action="calculator_values_saved",
        user=actor.id,
        resource=f"model_id={model.id}",
        details={"period_date": period_date.isoformat(), "platforms": [i.platform_id for i in items]}
    )
    logger.info(f"Saved {len(items)} values for model {model.id} in period {period_date} {period_type}")
    return values_for_period(db, model.id, period_date)


# Totals

def compute_model_totals(
    db: Session,
    model: User,
    values: Optional[Mapping[str, Decimal]] = None,
    period_date: Optional[date] = None,
    include_disabled: bool = False,
) -> CalcResult:
    """
    Totals for a model at current rates, from `values` or the stored period values.
    With `include_disabled`, platforms that hold a value but are no longer
    enabled for the model are counted too.
    """
    if values is None:
        if period_date is None:
            raise ValueError("period_date or values required")
        values = {v.platform_id: to_decimal(v.value) for v in values_for_period(db, model.id, period_date)}

    config = build_settings(db, model)
    if include_disabled:
        config = replace(config, enabled_platforms=config.enabled_platforms | frozenset(values))

    rules = [to_rule(p) for p in list_platforms(db, include_inactive=True)]
    return compute_totals(
        rules,
        values,
        get_effective_rates(db, model.group_id),
        config,
    )


def get_totals(db: Session, actor: User, model_id: Optional[str], today: date) -> Dict[str, object]:
    model = resolve_target_model(db, actor, model_id)
    period_date, period_type = normalize_period(today)
    result = compute_model_totals(db, model, period_date=period_date)
    rates = get_effective_rates(db, model.group_id)
    payload = result.as_dict()
    payload.update({
        "model_id": model.id,
        "period_date": period_date,
        "period_type": period_type,
        "rates": rates.as_dict(),
        "percentage": build_settings(db, model).percentage_rule.percentage_model,
    })
    return payload


def get_history(
    db: Session,
    actor: User,
    model_id: Optional[str],
    period_date: Optional[date] = None,
    period_type: Optional[str] = None,
) -> List[CalculatorHistory]:
    model = resolve_target_model(db, actor, model_id)
    query = db.query(CalculatorHistory).filter(CalculatorHistory.model_id == model.id)
    if period_date:
        start, period_type = normalize_period(period_date, period_type)
        query = query.filter(
            CalculatorHistory.period_date == start,
            CalculatorHistory.period_type == period_type,
        )
    return query.order_by(CalculatorHistory.period_date.desc(), CalculatorHistory.platform_id).all()
