"""
Period closure state machine.

    pending -> early_freezing -> closing_calculators -> waiting_summary
            -> closing_summary -> archiving -> completed

`pending` may skip straight to `closing_calculators` when no early freeze ran,
and every non-terminal state may move to `failed`. Transitions are conditional
updates on the expected current status, so two closers racing on the same
period cannot both advance it.
"""
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_admin.auth.models import ADMIN_ROLES, User, UserRole
from studio_admin.calculator.models import CalculatorHistory, ModelValue
from studio_admin.calculator.service import compute_model_totals, values_for_period
from studio_admin.chat.service import send_bot_notification
from studio_admin.core.config import settings
from studio_admin.core.exceptions import ClosureConflictError, InvalidTransitionError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.utils import business_tz, round_money, to_decimal, utcnow
from studio_admin.periods.dates import (
    current_period,
    is_early_freeze_time,
    is_full_closure_time,
    normalize_period,
    period_bounds,
    period_to_close,
)
from studio_admin.periods.models import ClosureStatus, EarlyFrozenPlatform, PeriodClosureStatus
from studio_admin.rates.service import get_effective_rates

TRANSITIONS: Dict[ClosureStatus, Set[ClosureStatus]] = {
    ClosureStatus.PENDING: {ClosureStatus.EARLY_FREEZING, ClosureStatus.CLOSING_CALCULATORS, ClosureStatus.FAILED},
    ClosureStatus.EARLY_FREEZING: {ClosureStatus.CLOSING_CALCULATORS, ClosureStatus.FAILED},
    ClosureStatus.CLOSING_CALCULATORS: {ClosureStatus.WAITING_SUMMARY, ClosureStatus.FAILED},
    ClosureStatus.WAITING_SUMMARY: {ClosureStatus.CLOSING_SUMMARY, ClosureStatus.FAILED},
    ClosureStatus.CLOSING_SUMMARY: {ClosureStatus.ARCHIVING, ClosureStatus.FAILED},
    ClosureStatus.ARCHIVING: {ClosureStatus.COMPLETED, ClosureStatus.FAILED},
    ClosureStatus.COMPLETED: set(),
    ClosureStatus.FAILED: set(),
}

IN_PROGRESS = (
    ClosureStatus.CLOSING_CALCULATORS,
    ClosureStatus.WAITING_SUMMARY,
    ClosureStatus.CLOSING_SUMMARY,
    ClosureStatus.ARCHIVING,
)


def is_valid_transition(current: ClosureStatus, target: ClosureStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


def get_status(db: Session, period_date: date, period_type: Optional[str] = None) -> Optional[PeriodClosureStatus]:
    period_date, period_type = normalize_period(period_date, period_type)
    return db.query(PeriodClosureStatus).filter(
        PeriodClosureStatus.period_date == period_date,
        PeriodClosureStatus.period_type == period_type,
    ).first()


def get_or_create_status(db: Session, period_date: date, period_type: Optional[str] = None) -> PeriodClosureStatus:
    """Returns the period's status row. A concurrent creator wins through the unique key."""
    period_date, period_type = normalize_period(period_date, period_type)
    row = get_status(db, period_date, period_type)
    if row:
        return row

    try:
        with db.begin_nested():
            row = PeriodClosureStatus(period_date=period_date, period_type=period_type, details={})
            db.add(row)
        db.commit()
    except IntegrityError:
        logger.info(f"Closure status for {period_date} {period_type} created concurrently")
        db.rollback()
        row = get_status(db, period_date, period_type)
    db.refresh(row)
    return row


def transition(
    db: Session,
    row: PeriodClosureStatus,
    target: ClosureStatus,
    details: Optional[Dict[str, Any]] = None,
    force: bool = False,
) -> PeriodClosureStatus:
    """
    Moves `row` to `target` if it is still in the status it was read with.
    Raises InvalidTransitionError outside the allow-list (unless forced) and
    ClosureConflictError when another writer moved the row first.
    """
    expected = row.status
    if not force and not is_valid_transition(expected, target):
        raise InvalidTransitionError(f"Invalid transition {expected.value} -> {target.value}")

    merged = dict(row.details or {})
    merged.update(details or {})
    updated = db.query(PeriodClosureStatus).filter(
        PeriodClosureStatus.id == row.id,
        PeriodClosureStatus.status == expected,
    ).update(
        {
            PeriodClosureStatus.status: target,
            PeriodClosureStatus.details: merged,
            PeriodClosureStatus.updated_at: utcnow(),
        },
        synchronize_session=False,
    )
    if not updated:
        db.rollback()
        raise ClosureConflictError(
            f"Closure status of {row.period_date} {row.period_type} changed concurrently"
        )
    db.commit()
    db.refresh(row)
    logger.info(f"Closure {row.period_date} {row.period_type}: {expected.value} -> {target.value}")
    return row


def _active_models(db: Session) -> List[User]:
    return db.query(User).filter(
        User.role == UserRole.MODEL,
        User.is_active == True,  # noqa: E712
    ).all()


def _mark_failed(db: Session, period_date: date, period_type: str, error: str) -> None:
    db.rollback()
    row = get_status(db, period_date, period_type)
    if not row or row.status in (ClosureStatus.COMPLETED, ClosureStatus.FAILED):
        return
    try:
        transition(db, row, ClosureStatus.FAILED, {"error": error})
    except ClosureConflictError:
        logger.warning(f"Could not mark {period_date} {period_type} as failed; status moved concurrently")


# Early freeze

def freeze_platforms_for_model(db: Session, model_id: str, period_date: date, platform_ids: List[str]) -> int:
    """Inserts the missing frozen rows for one model. Returns how many were added."""
    existing = {
        row[0] for row in db.query(EarlyFrozenPlatform.platform_id).filter(
            EarlyFrozenPlatform.period_date == period_date,
            EarlyFrozenPlatform.model_id == model_id,
        ).all()
    }
    added = 0
    for platform_id in platform_ids:
        if platform_id in existing:
            continue
        try:
            with db.begin_nested():
                db.add(EarlyFrozenPlatform(period_date=period_date, model_id=model_id, platform_id=platform_id))
            added += 1
        except IntegrityError:
            logger.info(f"Platform {platform_id} already frozen for model {model_id}")
    return added


def run_early_freeze(db: Session, now: datetime, testing: bool = False) -> Dict[str, Any]:
    """
    Freezes the early-freeze platforms for every active model on the last day
    of a period around European midnight. Re-running for the period is a no-op.
    """
    if not testing and not is_early_freeze_time(now):
        raise ValueError("Not early freeze time (European midnight on the last day of the period)")

    today = now.astimezone(business_tz()).date()
    period_date, period_type = current_period(today)
    row = get_or_create_status(db, period_date, period_type)
    if row.status != ClosureStatus.PENDING:
        logger.info(f"Early freeze already executed for {period_date} {period_type} ({row.status.value})")
        return {
            "success": True,
            "already_executed": True,
            "period_date": period_date,
            "period_type": period_type,
            "status": row.status.value,
        }

    row = transition(db, row, ClosureStatus.EARLY_FREEZING, {"early_freeze_started_at": utcnow().isoformat()})
    platforms = list(settings.EARLY_FREEZE_PLATFORMS)

    try:
        models = _active_models(db)
        model_ids = [m.id for m in models]
        successful = 0
        notification_errors = 0
        failed: List[Dict[str, str]] = []
        text = (
            "Las plataformas especiales ({}) han sido bloqueadas para edición. "
            "El período está cerrado para estas plataformas.".format(", ".join(p.upper() for p in platforms))
        )
        for model_id in model_ids:
            try:
                freeze_platforms_for_model(db, model_id, period_date, platforms)
                db.commit()
                successful += 1
            except Exception as e:
                db.rollback()
                logger.error(f"Early freeze failed for model {model_id}: {str(e)}", exc_info=True)
                failed.append({"model_id": model_id, "error": str(e)})
                continue
            if not _notify(db, model_id, text):
                notification_errors += 1

        summary = {
            "models_processed": len(model_ids),
            "success_count": successful,
            "error_count": len(failed),
            "notification_errors": notification_errors,
        }
        row.details = {**(row.details or {}), **summary}
        db.commit()
    except Exception as e:
        logger.error(f"Early freeze failed for {period_date} {period_type}: {str(e)}", exc_info=True)
        _mark_failed(db, period_date, period_type, str(e))
        raise

    audit_log(
        action="early_freeze",
        user="system",
        resource=f"period={period_date.isoformat()}:{period_type}",
        details=summary
    )
    return {
        "success": True,
        "period_date": period_date,
        "period_type": period_type,
        "results": {"total_models": len(model_ids), "successful": successful, "failed": len(failed)},
        "frozen_platforms": platforms,
        "errors": failed,
    }


# Full close

def archive_model_values(db: Session, model: User, period_date: date, period_type: str) -> int:
    """Copies the model's period values into history at current rates. Already archived platforms are skipped."""
    values = values_for_period(db, model.id, period_date)
    if not values:
        return 0

    archived = {
        row[0] for row in db.query(CalculatorHistory.platform_id).filter(
            CalculatorHistory.model_id == model.id,
            CalculatorHistory.period_date == period_date,
            CalculatorHistory.period_type == period_type,
        ).all()
    }
    by_platform = {v.platform_id: v for v in values}
    result = compute_model_totals(
        db,
        model,
        values={v.platform_id: to_decimal(v.value) for v in values},
        include_disabled=True,
    )
    rates = get_effective_rates(db, model.group_id)

    count = 0
    for totals in result.per_platform:
        if totals.platform_id in archived:
            continue
        db.add(CalculatorHistory(
            model_id=model.id,
            platform_id=totals.platform_id,
            period_date=period_date,
            period_type=period_type,
            value=totals.value,
            usd_bruto=totals.usd_bruto,
            usd_modelo=totals.usd_modelo,
            cop_modelo=round_money(totals.cop_modelo),
            percentage=totals.percentage,
            rate_usd_cop=rates.usd_cop,
            rate_eur_usd=rates.eur_usd,
            rate_gbp_usd=rates.gbp_usd,
            original_updated_at=by_platform[totals.platform_id].updated_at,
        ))
        count += 1
    db.flush()
    return count


def reset_archived_values(db: Session, model_ids: List[str], period_date: date, period_type: str) -> int:
    """Deletes the period values that reached history. Values without a history row stay."""
    if not model_ids:
        return 0
    archived: Dict[str, Set[str]] = {}
    for model_id, platform_id in db.query(CalculatorHistory.model_id, CalculatorHistory.platform_id).filter(
        CalculatorHistory.period_date == period_date,
        CalculatorHistory.period_type == period_type,
        CalculatorHistory.model_id.in_(model_ids),
    ).all():
        archived.setdefault(model_id, set()).add(platform_id)

    removed = 0
    for model_id, platform_ids in archived.items():
        removed += db.query(ModelValue).filter(
            ModelValue.period_date == period_date,
            ModelValue.model_id == model_id,
            ModelValue.platform_id.in_(platform_ids),
        ).delete(synchronize_session=False)
    return removed


def _notify(db: Session, user_id: str, text: str) -> bool:
    """Sends one closure notification. A failure is logged and never interrupts the caller."""
    try:
        send_bot_notification(db, user_id, "periodo_cerrado", text)
        return True
    except Exception as e:
        db.rollback()
        logger.error(f"Closure notification to {user_id} failed: {str(e)}", exc_info=True)
        return False


def _notify_closure(db: Session, archived_models: List[str], period_date: date, period_type: str) -> int:
    """Notifies archived models and active admins. Returns how many notifications failed."""
    failed = 0
    for model_id in archived_models:
        if not _notify(
            db,
            model_id,
            f"La quincena {period_type} ({period_date.isoformat()}) fue cerrada. "
            "Tus valores quedaron archivados y la calculadora inicia en cero.",
        ):
            failed += 1
    admins = db.query(User).filter(User.role.in_(ADMIN_ROLES), User.is_active == True).all()  # noqa: E712
    for admin in admins:
        if not _notify(
            db,
            admin.id,
            f"Cierre de la quincena {period_type} ({period_date.isoformat()}) completado: "
            f"{len(archived_models)} modelos archivados.",
        ):
            failed += 1
    return failed


def close_period(
    db: Session,
    period_date: Optional[date] = None,
    period_type: Optional[str] = None,
    now: Optional[datetime] = None,
    testing: bool = False,
) -> Dict[str, Any]:
    """
    Runs the full close of a period: archive, optional wait, summary, reset.

    Without an explicit period the close only runs inside the full closure
    window, and an explicit period must already have ended. `testing` lifts
    both checks. Each model is archived inside its own savepoint so one failing
    model does not lose the others. Any unexpected error marks the period `failed`.
    """
    now = now or utcnow()
    today = now.astimezone(business_tz()).date()
    if period_date is None:
        if not testing and not is_full_closure_time(now):
            raise ValueError("Not full closure time (day 1 or 16 shortly after midnight)")
        period_date, period_type = period_to_close(today)
    period_date, period_type = normalize_period(period_date, period_type)
    if not testing and period_bounds(period_date, period_type)[1] >= today:
        raise ValueError(f"Period {period_date} {period_type} has not ended yet")

    row = get_or_create_status(db, period_date, period_type)
    if row.status == ClosureStatus.COMPLETED:
        return {"success": True, "already_closed": True, "period_date": period_date, "period_type": period_type}
    if row.status in IN_PROGRESS:
        raise ClosureConflictError(f"Closure of {period_date} {period_type} already running ({row.status.value})")

    row = transition(db, row, ClosureStatus.CLOSING_CALCULATORS, {"closure_started_at": utcnow().isoformat()})

    try:
        model_ids = [r[0] for r in db.query(ModelValue.model_id).filter(
            ModelValue.period_date == period_date
        ).distinct().all()]

        archived_models: List[str] = []
        archive_errors: List[Dict[str, str]] = []
        archived_rows = 0
        for model_id in model_ids:
            model = db.query(User).filter(User.id == model_id).first()
            if not model:
                continue
            try:
                with db.begin_nested():
                    archived_rows += archive_model_values(db, model, period_date, period_type)
                archived_models.append(model_id)
            except Exception as e:
                logger.error(f"Archiving failed for model {model_id}: {str(e)}", exc_info=True)
                archive_errors.append({"model_id": model_id, "error": str(e)})
        db.commit()

        row = transition(db, row, ClosureStatus.WAITING_SUMMARY, {
            "models_archived": len(archived_models),
            "rows_archived": archived_rows,
            "archive_errors": archive_errors,
        })
        if settings.CLOSURE_SUMMARY_WAIT_SECONDS > 0:
            time.sleep(settings.CLOSURE_SUMMARY_WAIT_SECONDS)

        row = transition(db, row, ClosureStatus.CLOSING_SUMMARY)
        row = transition(db, row, ClosureStatus.ARCHIVING)

        values_reset = reset_archived_values(db, archived_models, period_date, period_type)
        frozen_removed = db.query(EarlyFrozenPlatform).filter(
            EarlyFrozenPlatform.period_date == period_date
        ).delete(synchronize_session=False)
        db.commit()

        notification_errors = _notify_closure(db, archived_models, period_date, period_type)

        summary = {
            "models_archived": len(archived_models),
            "rows_archived": archived_rows,
            "values_reset": values_reset,
            "frozen_removed": frozen_removed,
            "archive_errors": len(archive_errors),
            "notification_errors": notification_errors,
        }
        row = transition(db, row, ClosureStatus.COMPLETED, {**summary, "completed_at": utcnow().isoformat()})
    except ClosureConflictError:
        raise
    except Exception as e:
        logger.error(f"Period close failed for {period_date} {period_type}: {str(e)}", exc_info=True)
        _mark_failed(db, period_date, period_type, str(e))
        raise

    audit_log(
        action="period_closed",
        user="system",
        resource=f"period={period_date.isoformat()}:{period_type}",
        details=summary
    )
    return {"success": True, "period_date": period_date, "period_type": period_type, "summary": summary}


def auto_close(db: Session, now: datetime, testing: bool = False) -> Dict[str, Any]:
    """Scheduled entry point: full close on day 1/16 after midnight, early freeze at European midnight."""
    if is_full_closure_time(now):
        return {"action": "close_period", **close_period(db, now=now)}
    if is_early_freeze_time(now) or testing:
        return {"action": "early_freeze", **run_early_freeze(db, now, testing=testing)}
    return {"action": "none", "success": True, "message": "Not a closure window"}


# Manual operations

def manual_close(
    db: Session,
    actor: User,
    period_date: date,
    period_type: Optional[str],
    target: ClosureStatus,
    force: bool = False,
) -> PeriodClosureStatus:
    row = get_or_create_status(db, period_date, period_type)
    previous = row.status
    row = transition(
        db,
        row,
        target,
        {"manual_closure": True, "executed_by": actor.id, "previous_status": previous.value},
        force=force,
    )
    audit_log(
        action="manual_closure",
        user=actor.id,
        resource=f"period={row.period_date.isoformat()}:{row.period_type}",
        details={"previous_status": previous.value, "status": target.value, "force": force}
    )
    return row


def emergency_unfreeze(db: Session, model_id: Optional[str] = None) -> int:
    query = db.query(EarlyFrozenPlatform)
    if model_id:
        query = query.filter(EarlyFrozenPlatform.model_id == model_id)
    removed = query.delete(synchronize_session=False)
    db.commit()
    audit_log(
        action="emergency_unfreeze",
        user="emergency",
        resource=f"model_id={model_id or '*'}",
        details={"removed": removed}
    )
    logger.warning(f"Emergency unfreeze removed {removed} frozen platform rows")
    return removed


def list_frozen(db: Session) -> Dict[str, List[Dict[str, Any]]]:
    """Frozen rows grouped by model."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    rows = db.query(EarlyFrozenPlatform).order_by(
        EarlyFrozenPlatform.model_id, EarlyFrozenPlatform.platform_id
    ).all()
    for row in rows:
        grouped.setdefault(row.model_id, []).append({
            "platform_id": row.platform_id,
            "period_date": row.period_date,
            "frozen_at": row.frozen_at,
        })
    return grouped


def platform_freeze_status(db: Session, model_id: str, today: date) -> Dict[str, Any]:
    period_date, period_type = current_period(today)
    frozen = db.query(EarlyFrozenPlatform.platform_id).filter(
        EarlyFrozenPlatform.model_id == model_id,
        EarlyFrozenPlatform.period_date == period_date,
    ).order_by(EarlyFrozenPlatform.platform_id).all()
    row = get_status(db, period_date, period_type)
    return {
        "model_id": model_id,
        "period_date": period_date,
        "period_type": period_type,
        "frozen_platforms": [r[0] for r in frozen],
        "status": row.status.value if row else ClosureStatus.PENDING.value,
    }
