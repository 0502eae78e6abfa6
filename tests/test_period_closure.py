"""
Tests for the period closure state machine: allow-listed transitions,
conditional updates, early freeze and the full close.
"""
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from studio_admin.auth.models import UserRole
from studio_admin.calculator.models import CalculatorConfig, CalculatorHistory, ModelValue
from studio_admin.calculator.schemas import ValueItem
from studio_admin.calculator.service import save_values
from studio_admin.chat.models import ChatMessage, ChatSession
from studio_admin.core.exceptions import ClosureConflictError, FrozenPlatformError, InvalidTransitionError
from studio_admin.periods import service as periods_service
from studio_admin.periods.models import ClosureStatus, EarlyFrozenPlatform, PeriodClosureStatus
from studio_admin.periods.service import (
    close_period,
    emergency_unfreeze,
    get_or_create_status,
    get_status,
    is_valid_transition,
    list_frozen,
    manual_close,
    platform_freeze_status,
    run_early_freeze,
    transition,
)

BOGOTA = ZoneInfo("America/Bogota")
FIRST_HALF_NOV = date(2025, 11, 1)


def add_values(db, model, period_date, **values):
    for platform_id, value in values.items():
        db.add(ModelValue(model_id=model.id, platform_id=platform_id, period_date=period_date, value=Decimal(value)))
    db.commit()


def test_allow_list():
    assert is_valid_transition(ClosureStatus.PENDING, ClosureStatus.EARLY_FREEZING)
    assert is_valid_transition(ClosureStatus.PENDING, ClosureStatus.CLOSING_CALCULATORS)
    assert is_valid_transition(ClosureStatus.ARCHIVING, ClosureStatus.FAILED)
    assert not is_valid_transition(ClosureStatus.PENDING, ClosureStatus.COMPLETED)
    assert not is_valid_transition(ClosureStatus.COMPLETED, ClosureStatus.PENDING)
    assert not is_valid_transition(ClosureStatus.FAILED, ClosureStatus.CLOSING_CALCULATORS)


def test_invalid_transition_needs_force(db):
    row = get_or_create_status(db, FIRST_HALF_NOV)

    with pytest.raises(InvalidTransitionError):
        transition(db, row, ClosureStatus.COMPLETED)

    row = transition(db, row, ClosureStatus.COMPLETED, force=True)
    assert row.status == ClosureStatus.COMPLETED


def test_stale_transition_conflicts(database):
    first = database.session()
    second = database.session()
    try:
        row_a = get_or_create_status(first, FIRST_HALF_NOV)
        row_b = second.query(PeriodClosureStatus).filter(PeriodClosureStatus.id == row_a.id).one()

        transition(first, row_a, ClosureStatus.EARLY_FREEZING)

        with pytest.raises(ClosureConflictError):
            transition(second, row_b, ClosureStatus.CLOSING_CALCULATORS)
    finally:
        first.close()
        second.close()


def test_status_row_is_unique_per_period(db):
    first = get_or_create_status(db, date(2025, 11, 9))
    again = get_or_create_status(db, FIRST_HALF_NOV, "1-15")

    assert first.id == again.id
    assert db.query(PeriodClosureStatus).count() == 1


def test_manual_close_records_metadata(db, admin):
    with pytest.raises(InvalidTransitionError):
        manual_close(db, admin, FIRST_HALF_NOV, None, ClosureStatus.COMPLETED)

    row = manual_close(db, admin, FIRST_HALF_NOV, None, ClosureStatus.COMPLETED, force=True)

    assert row.status == ClosureStatus.COMPLETED
    assert row.details["manual_closure"] is True
    assert row.details["executed_by"] == admin.id
    assert row.details["previous_status"] == "pending"


def test_early_freeze_outside_window_rejected(db, configured_model):
    with pytest.raises(ValueError):
        run_early_freeze(db, datetime(2025, 1, 14, 12, 0, tzinfo=BOGOTA))


def test_early_freeze_is_idempotent(db, configured_model):
    now = datetime(2025, 1, 15, 18, 1, tzinfo=BOGOTA)

    result = run_early_freeze(db, now)
    again = run_early_freeze(db, now)

    frozen = db.query(EarlyFrozenPlatform).filter(EarlyFrozenPlatform.model_id == configured_model.id).count()
    assert result["results"]["successful"] == 1
    assert again["already_executed"] is True
    assert frozen == 10
    assert get_or_create_status(db, date(2025, 1, 1)).status == ClosureStatus.EARLY_FREEZING


def test_frozen_platform_rejects_values(db, configured_model):
    run_early_freeze(db, datetime(2025, 1, 15, 18, 1, tzinfo=BOGOTA))

    with pytest.raises(FrozenPlatformError):
        save_values(db, configured_model, None, [ValueItem(platform_id="superfoon", value=Decimal("5"))], date(2025, 1, 15))

    saved = save_values(db, configured_model, None, [ValueItem(platform_id="skypvt", value=Decimal("5"))], date(2025, 1, 15))
    assert [v.platform_id for v in saved] == ["skypvt"]

    status = platform_freeze_status(db, configured_model.id, date(2025, 1, 15))
    assert "superfoon" in status["frozen_platforms"]
    assert status["status"] == "early_freezing"


def test_emergency_unfreeze(db, configured_model):
    run_early_freeze(db, datetime(2025, 1, 15, 18, 1, tzinfo=BOGOTA))
    assert configured_model.id in list_frozen(db)

    removed = emergency_unfreeze(db, configured_model.id)

    assert removed == 10
    assert list_frozen(db) == {}


def test_full_close_archives_and_resets(db, configured_model):
    add_values(db, configured_model, FIRST_HALF_NOV, modelka="3", skypvt="20")

    result = close_period(db, FIRST_HALF_NOV, "1-15")

    history = db.query(CalculatorHistory).filter(CalculatorHistory.model_id == configured_model.id).all()
    by_platform = {h.platform_id: h for h in history}
    assert result["summary"]["rows_archived"] == 2
    assert by_platform["skypvt"].cop_modelo == Decimal("40950.00")
    assert sum(h.cop_modelo for h in history) == Decimal("49221.90")
    assert db.query(ModelValue).filter(ModelValue.period_date == FIRST_HALF_NOV).count() == 0
    assert get_or_create_status(db, FIRST_HALF_NOV).status == ClosureStatus.COMPLETED

    session = db.query(ChatSession).filter(ChatSession.user_id == configured_model.id).one()
    kinds = [m.kind for m in db.query(ChatMessage).filter(ChatMessage.session_id == session.id)]
    assert "periodo_cerrado" in kinds


def test_full_close_is_idempotent(db, configured_model):
    add_values(db, configured_model, FIRST_HALF_NOV, modelka="3")

    close_period(db, FIRST_HALF_NOV, "1-15")
    again = close_period(db, FIRST_HALF_NOV, "1-15")

    assert again["already_closed"] is True
    assert db.query(CalculatorHistory).count() == 1


def test_full_close_after_early_freeze_drops_frozen_rows(db, configured_model):
    run_early_freeze(db, datetime(2025, 1, 15, 18, 1, tzinfo=BOGOTA))
    add_values(db, configured_model, date(2025, 1, 1), skypvt="10")

    close_period(db, now=datetime(2025, 1, 16, 0, 5, tzinfo=BOGOTA))

    assert db.query(EarlyFrozenPlatform).count() == 0
    assert get_or_create_status(db, date(2025, 1, 1)).status == ClosureStatus.COMPLETED


def test_closed_period_rejects_values(db, configured_model):
    close_period(db, FIRST_HALF_NOV, "1-15")

    with pytest.raises(ValueError):
        save_values(db, configured_model, None, [ValueItem(platform_id="skypvt", value=Decimal("1"))], date(2025, 11, 10))


def test_close_without_period_outside_window_rejected(db, configured_model):
    add_values(db, configured_model, date(2025, 11, 16), skypvt="20")

    with pytest.raises(ValueError):
        close_period(db, now=datetime(2025, 11, 19, 12, 0, tzinfo=BOGOTA))

    assert db.query(ModelValue).count() == 1
    assert get_status(db, date(2025, 11, 16)) is None


def test_open_period_cannot_be_closed_outside_testing(db, configured_model):
    midway = datetime(2025, 11, 19, 12, 0, tzinfo=BOGOTA)

    with pytest.raises(ValueError):
        close_period(db, date(2025, 11, 16), "16-31", now=midway)

    result = close_period(db, now=midway, testing=True)
    assert result["period_date"] == date(2025, 11, 16)
    assert result["period_type"] == "16-31"


def test_close_archives_values_of_platforms_disabled_later(db, configured_model):
    add_values(db, configured_model, FIRST_HALF_NOV, modelka="3", skypvt="20")
    config = db.query(CalculatorConfig).filter(CalculatorConfig.model_id == configured_model.id).one()
    config.enabled_platforms = ["skypvt"]
    db.commit()

    result = close_period(db, FIRST_HALF_NOV, "1-15")

    archived = {h.platform_id for h in db.query(CalculatorHistory).all()}
    assert archived == {"modelka", "skypvt"}
    assert result["summary"]["values_reset"] == 2
    assert db.query(ModelValue).count() == 0


def test_one_failing_model_does_not_stop_the_close(db, configured_model, make_user, affiliate, group, monkeypatch):
    other = make_user("Camila Torres", "camila@studio.co", UserRole.MODEL, affiliate.id, group.id)
    other_id = other.id
    db.add(CalculatorConfig(model_id=other_id, enabled_platforms=["skypvt"]))
    add_values(db, configured_model, FIRST_HALF_NOV, skypvt="20")
    add_values(db, other, FIRST_HALF_NOV, skypvt="10")
    archive = periods_service.archive_model_values

    def archive_or_fail(db, model, period_date, period_type):
        if model.id == other_id:
            raise RuntimeError("disk full")
        return archive(db, model, period_date, period_type)

    monkeypatch.setattr(periods_service, "archive_model_values", archive_or_fail)

    result = close_period(db, FIRST_HALF_NOV, "1-15")

    remaining = db.query(ModelValue).filter(ModelValue.period_date == FIRST_HALF_NOV).all()
    assert get_status(db, FIRST_HALF_NOV).status == ClosureStatus.COMPLETED
    assert result["summary"]["models_archived"] == 1
    assert result["summary"]["archive_errors"] == 1
    assert {h.model_id for h in db.query(CalculatorHistory).all()} == {configured_model.id}
    assert [v.model_id for v in remaining] == [other_id]


def test_notification_failure_does_not_fail_the_close(db, configured_model, admin, monkeypatch):
    add_values(db, configured_model, FIRST_HALF_NOV, skypvt="20")

    def chat_down(*args, **kwargs):
        raise RuntimeError("chat down")

    monkeypatch.setattr(periods_service, "send_bot_notification", chat_down)

    result = close_period(db, FIRST_HALF_NOV, "1-15")

    assert get_status(db, FIRST_HALF_NOV).status == ClosureStatus.COMPLETED
    # The archived model and the studio admin
    assert result["summary"]["notification_errors"] == 2
    assert db.query(CalculatorHistory).count() == 1
    assert db.query(ModelValue).count() == 0


def test_notification_failure_does_not_fail_early_freeze(db, configured_model, monkeypatch):
    def chat_down(*args, **kwargs):
        raise RuntimeError("chat down")

    monkeypatch.setattr(periods_service, "send_bot_notification", chat_down)

    result = run_early_freeze(db, datetime(2025, 1, 15, 18, 1, tzinfo=BOGOTA))

    assert result["results"]["successful"] == 1
    assert db.query(EarlyFrozenPlatform).count() == 10
    row = get_status(db, date(2025, 1, 1))
    assert row.status == ClosureStatus.EARLY_FREEZING
    assert row.details["notification_errors"] == 1
