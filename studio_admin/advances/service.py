"""
Business logic for earnings advances.

A model may ask for part of the current quincena earnings before the period
closes, up to `advance_max_cop` minus what is already committed for the
period. Admins approve, reject and pay; the model confirms receipt.

    pendiente -> aprobado -> realizado -> confirmado
    pendiente -> rechazado | cancelado
    aprobado -> cancelado

Status changes are conditional updates on the status the row was read with.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from studio_admin.advances.models import Advance, AdvanceStatus
from studio_admin.advances.schemas import AdvanceRequest
from studio_admin.auth.models import User, UserRole
from studio_admin.auth.service import ensure_same_scope
from studio_admin.calculator.service import compute_model_totals
from studio_admin.chat.service import send_bot_notification
from studio_admin.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    ScopeError,
)
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.security import mask_sensitive_data
from studio_admin.core.utils import round_money, to_decimal, utcnow
from studio_admin.periods.dates import normalize_period
from studio_admin.periods.models import ClosureStatus, PeriodClosureStatus

TRANSITIONS: Dict[AdvanceStatus, Set[AdvanceStatus]] = {
    AdvanceStatus.PENDING: {AdvanceStatus.APPROVED, AdvanceStatus.REJECTED, AdvanceStatus.CANCELLED},
    AdvanceStatus.APPROVED: {AdvanceStatus.PAID, AdvanceStatus.CANCELLED},
    AdvanceStatus.PAID: {AdvanceStatus.CONFIRMED},
}

# Requests that count against the period's advance limit
COMMITTED = (AdvanceStatus.PENDING, AdvanceStatus.APPROVED, AdvanceStatus.PAID, AdvanceStatus.CONFIRMED)
# Money that left (or is about to leave) the studio
GRANTED = (AdvanceStatus.APPROVED, AdvanceStatus.PAID, AdvanceStatus.CONFIRMED)

OPEN_PERIOD_STATUSES = (ClosureStatus.PENDING, ClosureStatus.EARLY_FREEZING)


def committed_total(db: Session, model_id: str, period_date: date) -> Decimal:
    total = db.query(func.coalesce(func.sum(Advance.amount), 0)).filter(
        Advance.model_id == model_id,
        Advance.period_date == period_date,
        Advance.status.in_(COMMITTED),
    ).scalar()
    return to_decimal(total)


def granted_by_model(db: Session, model_ids: Iterable[str], period_date: date) -> Dict[str, Decimal]:
    rows = db.query(Advance.model_id, func.sum(Advance.amount)).filter(
        Advance.model_id.in_(list(model_ids)),
        Advance.period_date == period_date,
        Advance.status.in_(GRANTED),
    ).group_by(Advance.model_id).all()
    return {model_id: to_decimal(total) for model_id, total in rows}


def available_for_advance(db: Session, model: User, today: date) -> Dict[str, Decimal]:
    period_date, _ = normalize_period(today)
    limit = round_money(compute_model_totals(db, model, period_date=period_date).advance_max_cop)
    committed = committed_total(db, model.id, period_date)
    return {"limit": limit, "committed": committed, "available": max(limit - committed, Decimal(0))}


def _ensure_period_open(db: Session, period_date: date, period_type: str) -> None:
    row = db.query(PeriodClosureStatus).filter(
        PeriodClosureStatus.period_date == period_date,
        PeriodClosureStatus.period_type == period_type,
    ).first()
    if row and row.status not in OPEN_PERIOD_STATUSES:
        raise ValueError(f"Period {period_date} {period_type} is closing or closed")


def request_advance(db: Session, model: User, data: AdvanceRequest, today: date) -> Advance:
    period_date, period_type = normalize_period(today)
    _ensure_period_open(db, period_date, period_type)

    pending = db.query(Advance.id).filter(
        Advance.model_id == model.id,
        Advance.period_date == period_date,
        Advance.status == AdvanceStatus.PENDING,
    ).first()
    if pending:
        raise ValueError("A pending advance already exists for this period")

    funds = available_for_advance(db, model, today)
    amount = to_decimal(data.amount)
    if amount > funds["available"]:
        raise InsufficientFundsError(
            f"Requested {amount} exceeds the available advance {funds['available']}"
        )

    details = {k: v for k, v in data.payout.model_dump().items() if v}
    advance = Advance(
        model_id=model.id,
        period_date=period_date,
        period_type=period_type,
        amount=amount,
        available_amount=funds["available"],
        payout_method=data.payout_method,
        payout_details=details,
        affiliate_studio_id=model.affiliate_studio_id,
    )
    db.add(advance)
    db.commit()
    db.refresh(advance)

    audit_log(
        action="advance_requested",
        user=model.id,
        resource=f"advance_id={advance.id}",
        details={
            "amount": str(amount),
            "method": data.payout_method.value,
            "account": mask_sensitive_data(details.get("account_number") or details.get("phone_number") or ""),
        }
    )
    return advance


def get_advance(db: Session, actor: User, advance_id: str) -> Advance:
    advance = db.query(Advance).filter(Advance.id == advance_id).first()
    if not advance:
        raise NotFoundError("Advance not found")
    if actor.role == UserRole.MODEL:
        if advance.model_id != actor.id:
            raise ScopeError("Advance belongs to another model")
    else:
        ensure_same_scope(actor, advance.affiliate_studio_id)
    return advance


def list_advances(
    db: Session,
    actor: User,
    statuses: Optional[List[AdvanceStatus]] = None,
    period_date: Optional[date] = None,
) -> List[Advance]:
    query = db.query(Advance)
    if actor.role == UserRole.MODEL:
        query = query.filter(Advance.model_id == actor.id)
    elif actor.role != UserRole.SUPER_ADMIN:
        query = query.filter(Advance.affiliate_studio_id == actor.affiliate_studio_id)
    if statuses:
        query = query.filter(Advance.status.in_(statuses))
    if period_date:
        start, _ = normalize_period(period_date)
        query = query.filter(Advance.period_date == start)
    return query.order_by(Advance.created_at.desc()).all()


def _move(db: Session, advance: Advance, target: AdvanceStatus, **changes) -> Advance:
    expected = advance.status
    if target not in TRANSITIONS.get(expected, set()):
        raise InvalidTransitionError(f"Invalid advance transition {expected.value} -> {target.value}")

    values = {Advance.status: target, Advance.updated_at: utcnow()}
    values.update({getattr(Advance, field): value for field, value in changes.items()})
    updated = db.query(Advance).filter(
        Advance.id == advance.id,
        Advance.status == expected,
    ).update(values, synchronize_session=False)
    if not updated:
        db.rollback()
        raise ConflictError("Advance changed concurrently")
    db.commit()
    db.refresh(advance)
    logger.info(f"Advance {advance.id}: {expected.value} -> {target.value}")
    return advance


def _notify_model(db: Session, advance: Advance, text: str) -> None:
    try:
        send_bot_notification(db, advance.model_id, "advance", text)
    except Exception as e:
        db.rollback()
        logger.error(f"Advance notification for {advance.id} failed: {str(e)}", exc_info=True)


def approve_advance(db: Session, actor: User, advance_id: str, comment: Optional[str] = None) -> Advance:
    advance = get_advance(db, actor, advance_id)
    advance = _move(
        db, advance, AdvanceStatus.APPROVED,
        admin_comment=comment, reviewed_by=actor.id, reviewed_at=utcnow(),
    )
    audit_log(action="advance_approved", user=actor.id, resource=f"advance_id={advance.id}")
    _notify_model(db, advance, f"Tu anticipo por COP {advance.amount} fue aprobado.")
    return advance


def reject_advance(db: Session, actor: User, advance_id: str, comment: Optional[str] = None) -> Advance:
    advance = get_advance(db, actor, advance_id)
    advance = _move(
        db, advance, AdvanceStatus.REJECTED,
        admin_comment=comment, reviewed_by=actor.id, reviewed_at=utcnow(),
    )
    audit_log(action="advance_rejected", user=actor.id, resource=f"advance_id={advance.id}")
    _notify_model(db, advance, "Tu solicitud de anticipo fue rechazada.")
    return advance


def mark_paid(db: Session, actor: User, advance_id: str) -> Advance:
    advance = get_advance(db, actor, advance_id)
    advance = _move(db, advance, AdvanceStatus.PAID, paid_at=utcnow())
    audit_log(action="advance_paid", user=actor.id, resource=f"advance_id={advance.id}")
    _notify_model(db, advance, "Tu anticipo fue consignado. Confírmalo cuando lo recibas.")
    return advance


def confirm_received(db: Session, actor: User, advance_id: str) -> Advance:
    advance = get_advance(db, actor, advance_id)
    if advance.model_id != actor.id:
        raise ScopeError("Only the requesting model can confirm the advance")
    advance = _move(db, advance, AdvanceStatus.CONFIRMED, confirmed_at=utcnow())
    audit_log(action="advance_confirmed", user=actor.id, resource=f"advance_id={advance.id}")
    return advance


def cancel_advance(db: Session, actor: User, advance_id: str) -> Advance:
    """Models cancel their own pending requests; admins also cancel approved ones."""
    advance = get_advance(db, actor, advance_id)
    if actor.role == UserRole.MODEL and advance.status != AdvanceStatus.PENDING:
        raise InvalidTransitionError("Only pending advances can be cancelled by the model")
    advance = _move(db, advance, AdvanceStatus.CANCELLED)
    audit_log(action="advance_cancelled", user=actor.id, resource=f"advance_id={advance.id}")
    return advance
