"""
Rate provider. Selection order for a group: group rate, global rate, configured default.
"""
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_admin.calculator.engine import Rates
from studio_admin.core.config import settings
from studio_admin.core.exceptions import ConflictError, NotFoundError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.utils import to_decimal, utcnow
from studio_admin.rates.models import Rate, RateKind, RateScope
from studio_admin.sedes.models import Group


def default_rate(kind: RateKind) -> Decimal:
    return {
        RateKind.USD_COP: to_decimal(settings.DEFAULT_USD_COP),
        RateKind.EUR_USD: to_decimal(settings.DEFAULT_EUR_USD),
        RateKind.GBP_USD: to_decimal(settings.DEFAULT_GBP_USD),
    }[kind]


def _active_query(db: Session, kind: RateKind, scope: RateScope, scope_id: Optional[str]):
    query = db.query(Rate).filter(
        Rate.kind == kind,
        Rate.scope == scope,
        Rate.valid_to.is_(None),
    )
    if scope_id is None:
        return query.filter(Rate.scope_id.is_(None))
    return query.filter(Rate.scope_id == scope_id)


def get_active_rate(
    db: Session,
    kind: RateKind,
    scope: RateScope = RateScope.GLOBAL,
    scope_id: Optional[str] = None,
) -> Optional[Rate]:
    return _active_query(db, kind, scope, scope_id).order_by(Rate.valid_from.desc()).first()


def resolve_rate(db: Session, kind: RateKind, group_id: Optional[str] = None) -> Dict[str, object]:
    """Returns the value in force plus where it came from."""
    if group_id:
        rate = get_active_rate(db, kind, RateScope.GROUP, group_id)
        if rate:
            return {"value": to_decimal(rate.value), "origin": "group", "rate_id": rate.id}
    rate = get_active_rate(db, kind, RateScope.GLOBAL)
    if rate:
        return {"value": to_decimal(rate.value), "origin": "global", "rate_id": rate.id}
    return {"value": default_rate(kind), "origin": "default", "rate_id": None}


def get_effective_rates(db: Session, group_id: Optional[str] = None) -> Rates:
    return Rates(
        usd_cop=resolve_rate(db, RateKind.USD_COP, group_id)["value"],
        eur_usd=resolve_rate(db, RateKind.EUR_USD, group_id)["value"],
        gbp_usd=resolve_rate(db, RateKind.GBP_USD, group_id)["value"],
    )


def set_rate(
    db: Session,
    kind: RateKind,
    value: Decimal,
    scope: RateScope = RateScope.GLOBAL,
    scope_id: Optional[str] = None,
    author_id: Optional[str] = None,
    source: str = "manual",
) -> Rate:
    """
    Publishes a new rate for (kind, scope, scope_id).

    The previous active row is closed and the new one inserted in the same
    transaction. A concurrent writer that loses the race hits the partial
    unique index and gets a ConflictError.
    """
    value = to_decimal(value)
    if value <= 0:
        raise ValueError("Rate value must be positive")
    if scope == RateScope.GROUP:
        if not scope_id:
            raise ValueError("Group rates need a scope_id")
        if not db.query(Group).filter(Group.id == scope_id).first():
            raise NotFoundError("Group not found")
    else:
        scope_id = None

    now = utcnow()
    try:
        closed = _active_query(db, kind, scope, scope_id).update(
            {Rate.valid_to: now}, synchronize_session=False
        )
        rate = Rate(
            kind=kind,
            value=value,
            scope=scope,
            scope_id=scope_id,
            source=source,
            author_id=author_id,
            valid_from=now,
        )
        db.add(rate)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Another rate was published concurrently; retry")
    db.refresh(rate)

    audit_log(
        action="rate_set",
        user=author_id or "system",
        resource=f"rate_id={rate.id}",
        details={"kind": kind.value, "value": str(value), "scope": scope.value, "scope_id": scope_id, "closed": closed}
    )
    logger.info(f"Rate {kind.value} set to {value} ({scope.value}:{scope_id}); closed {closed} previous")
    return rate


def list_active_rates(db: Session, group_id: Optional[str] = None) -> List[Rate]:
    query = db.query(Rate).filter(Rate.valid_to.is_(None))
    if group_id:
        query = query.filter((Rate.scope == RateScope.GLOBAL) | (Rate.scope_id == group_id))
    return query.order_by(Rate.kind, Rate.scope).all()


def list_rate_history(
    db: Session,
    kind: Optional[RateKind] = None,
    scope: Optional[RateScope] = None,
    scope_id: Optional[str] = None,
    limit: int = 100,
) -> List[Rate]:
    query = db.query(Rate)
    if kind:
        query = query.filter(Rate.kind == kind)
    if scope:
        query = query.filter(Rate.scope == scope)
    if scope_id:
        query = query.filter(Rate.scope_id == scope_id)
    return query.order_by(Rate.valid_from.desc(), Rate.id.desc()).limit(limit).all()
