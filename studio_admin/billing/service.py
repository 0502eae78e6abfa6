"""
Billing summary per model for a quincena.

Archived periods are read from calculator history at the rates stored with
each row; open periods are computed from the current values and rates.
Granted advances of the period are deducted from the model's COP.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from studio_admin.advances.service import granted_by_model
from studio_admin.auth.models import User, UserRole
from studio_admin.calculator.models import CalculatorHistory
from studio_admin.calculator.service import compute_model_totals
from studio_admin.core.utils import round_money
from studio_admin.periods.dates import normalize_period
from studio_admin.rates.service import get_effective_rates

ZERO = Decimal(0)
TOTAL_FIELDS = ("usd_bruto", "usd_modelo", "usd_sede", "cop_modelo", "cop_sede", "advances_cop", "net_cop")


def _models_in_scope(db: Session, actor: User, group_id: Optional[str]) -> List[User]:
    query = db.query(User).filter(
        User.role == UserRole.MODEL,
        User.is_active == True,  # noqa: E712
    )
    if actor.role != UserRole.SUPER_ADMIN:
        query = query.filter(User.affiliate_studio_id == actor.affiliate_studio_id)
    if group_id:
        query = query.filter(User.group_id == group_id)
    return query.order_by(User.name).all()


def _archived_totals(rows: List[CalculatorHistory]) -> Dict[str, Decimal]:
    usd_bruto = sum((r.usd_bruto for r in rows), ZERO)
    usd_modelo = sum((r.usd_modelo for r in rows), ZERO)
    return {
        "usd_bruto": usd_bruto,
        "usd_modelo": usd_modelo,
        "cop_modelo": sum((r.cop_modelo for r in rows), ZERO),
        "cop_sede": sum(((r.usd_bruto - r.usd_modelo) * r.rate_usd_cop for r in rows), ZERO),
    }


def _live_totals(db: Session, model: User, period_date: date) -> Dict[str, Decimal]:
    result = compute_model_totals(db, model, period_date=period_date)
    usd_cop = get_effective_rates(db, model.group_id).usd_cop
    return {
        "usd_bruto": result.total_usd_bruto,
        "usd_modelo": result.total_usd_modelo,
        "cop_modelo": result.total_cop_modelo,
        "cop_sede": (result.total_usd_bruto - result.total_usd_modelo) * usd_cop,
    }


def billing_summary(
    db: Session,
    actor: User,
    period_date: date,
    group_id: Optional[str] = None,
) -> Dict[str, Any]:
    period_date, period_type = normalize_period(period_date)
    models = _models_in_scope(db, actor, group_id)
    model_ids = [m.id for m in models]

    history: Dict[str, List[CalculatorHistory]] = {}
    if model_ids:
        for row in db.query(CalculatorHistory).filter(
            CalculatorHistory.period_date == period_date,
            CalculatorHistory.period_type == period_type,
            CalculatorHistory.model_id.in_(model_ids),
        ).all():
            history.setdefault(row.model_id, []).append(row)
    advances = granted_by_model(db, model_ids, period_date) if model_ids else {}

    rows: List[Dict[str, Any]] = []
    totals = {field: ZERO for field in TOTAL_FIELDS}
    for model in models:
        archived = model.id in history
        figures = _archived_totals(history[model.id]) if archived else _live_totals(db, model, period_date)
        figures["usd_sede"] = figures["usd_bruto"] - figures["usd_modelo"]
        figures["advances_cop"] = advances.get(model.id, ZERO)
        figures["net_cop"] = figures["cop_modelo"] - figures["advances_cop"]
        for field in TOTAL_FIELDS:
            totals[field] += figures[field]

        rows.append({
            "model_id": model.id,
            "name": model.name,
            # Only the local part of the email leaves the API
            "username": model.email.split("@")[0],
            "source": "history" if archived else "live",
            **{field: round_money(figures[field]) for field in TOTAL_FIELDS},
        })

    return {
        "period_date": period_date,
        "period_type": period_type,
        "group_id": group_id,
        "models": rows,
        "summary": {"total_models": len(rows), **{field: round_money(totals[field]) for field in TOTAL_FIELDS}},
    }
