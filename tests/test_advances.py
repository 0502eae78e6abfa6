"""
Tests for earnings advances and the admin billing summary.
"""
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from studio_admin.advances.models import AdvanceStatus, PayoutMethod
from studio_admin.advances.schemas import AdvanceRequest, PayoutDetails
from studio_admin.advances.service import (
    approve_advance,
    available_for_advance,
    cancel_advance,
    confirm_received,
    get_advance,
    list_advances,
    mark_paid,
    reject_advance,
    request_advance,
)
from studio_admin.auth.models import AffiliateStudio, UserRole
from studio_admin.billing.service import billing_summary
from studio_admin.calculator.models import ModelValue
from studio_admin.core.exceptions import InsufficientFundsError, InvalidTransitionError, ScopeError
from studio_admin.periods.service import close_period

FIRST_HALF_NOV = date(2025, 11, 1)
TODAY = date(2025, 11, 5)
BOGOTA = ZoneInfo("America/Bogota")
NEQUI = PayoutDetails(beneficiary_name="Valentina Ruiz", phone_number="3001234567")


@pytest.fixture
def earnings(db, configured_model):
    """Modelka 3 EUR and SkyPrivate 20 USD: COP 49221.90 for the model, 44299.71 advanceable."""
    for platform_id, value in (("modelka", "3"), ("skypvt", "20")):
        db.add(ModelValue(
            model_id=configured_model.id,
            platform_id=platform_id,
            period_date=FIRST_HALF_NOV,
            value=Decimal(value),
        ))
    db.commit()
    return configured_model


@pytest.fixture
def outsider(make_user, db):
    studio = AffiliateStudio(name="Estudio Sur")
    db.add(studio)
    db.commit()
    return make_user("Pedro Admin", "pedro@sur.co", UserRole.ADMIN, studio.id)


def nequi(amount):
    return AdvanceRequest(amount=Decimal(amount), payout_method=PayoutMethod.NEQUI, payout=NEQUI)


def test_available_is_capped_by_advance_limit(db, earnings):
    funds = available_for_advance(db, earnings, TODAY)

    assert funds["limit"] == Decimal("44299.71")
    assert funds["committed"] == Decimal(0)
    assert funds["available"] == Decimal("44299.71")


def test_request_over_available_rejected(db, earnings):
    with pytest.raises(InsufficientFundsError):
        request_advance(db, earnings, nequi("44300"), TODAY)


def test_request_records_period_and_available(db, earnings):
    advance = request_advance(db, earnings, nequi("20000"), TODAY)

    assert advance.status == AdvanceStatus.PENDING
    assert advance.period_date == FIRST_HALF_NOV
    assert advance.period_type == "1-15"
    assert advance.available_amount == Decimal("44299.71")
    assert advance.payout_details == {"beneficiary_name": "Valentina Ruiz", "phone_number": "3001234567"}


def test_only_one_pending_request_per_period(db, earnings):
    request_advance(db, earnings, nequi("10000"), TODAY)

    with pytest.raises(ValueError):
        request_advance(db, earnings, nequi("5000"), TODAY)


def test_committed_requests_reduce_available(db, admin, earnings):
    first = request_advance(db, earnings, nequi("30000"), TODAY)
    approve_advance(db, admin, first.id)

    assert available_for_advance(db, earnings, TODAY)["available"] == Decimal("14299.71")
    with pytest.raises(InsufficientFundsError):
        request_advance(db, earnings, nequi("15000"), TODAY)

    second = request_advance(db, earnings, nequi("14000"), TODAY)
    assert second.status == AdvanceStatus.PENDING


def test_rejected_request_frees_the_amount(db, admin, earnings):
    advance = request_advance(db, earnings, nequi("40000"), TODAY)
    reject_advance(db, admin, advance.id, "Sin soporte")

    assert advance.admin_comment == "Sin soporte"
    assert available_for_advance(db, earnings, TODAY)["available"] == Decimal("44299.71")


def test_full_flow_to_confirmed(db, admin, earnings):
    advance = request_advance(db, earnings, nequi("20000"), TODAY)

    approve_advance(db, admin, advance.id)
    assert advance.reviewed_by == admin.id
    mark_paid(db, admin, advance.id)
    assert advance.paid_at is not None
    confirm_received(db, earnings, advance.id)

    assert advance.status == AdvanceStatus.CONFIRMED
    assert advance.confirmed_at is not None


def test_invalid_transitions_rejected(db, admin, earnings):
    advance = request_advance(db, earnings, nequi("20000"), TODAY)

    with pytest.raises(InvalidTransitionError):
        mark_paid(db, admin, advance.id)

    approve_advance(db, admin, advance.id)
    with pytest.raises(InvalidTransitionError):
        reject_advance(db, admin, advance.id)


def test_model_cancels_only_pending(db, admin, earnings):
    pending = request_advance(db, earnings, nequi("10000"), TODAY)
    cancel_advance(db, earnings, pending.id)
    assert pending.status == AdvanceStatus.CANCELLED

    approved = request_advance(db, earnings, nequi("10000"), TODAY)
    approve_advance(db, admin, approved.id)
    with pytest.raises(InvalidTransitionError):
        cancel_advance(db, earnings, approved.id)

    cancel_advance(db, admin, approved.id)
    assert approved.status == AdvanceStatus.CANCELLED


def test_other_studio_admin_cannot_touch_advance(db, earnings, outsider):
    advance = request_advance(db, earnings, nequi("10000"), TODAY)

    with pytest.raises(ScopeError):
        approve_advance(db, outsider, advance.id)
    assert list_advances(db, outsider) == []


def test_model_sees_only_own_advances(db, make_user, affiliate, group, earnings):
    other = make_user("Camila Mora", "camila@studio.co", UserRole.MODEL, affiliate.id, group.id)
    advance = request_advance(db, earnings, nequi("10000"), TODAY)

    assert list_advances(db, other) == []
    with pytest.raises(ScopeError):
        get_advance(db, other, advance.id)
    with pytest.raises(ScopeError):
        confirm_received(db, other, advance.id)


def test_payout_fields_required_per_method():
    with pytest.raises(ValidationError):
        AdvanceRequest(amount=Decimal("1000"), payout_method=PayoutMethod.NEQUI)
    with pytest.raises(ValidationError):
        AdvanceRequest(amount=Decimal("1000"), payout_method=PayoutMethod.BANK_ACCOUNT, payout=NEQUI)

    bank = AdvanceRequest(
        amount=Decimal("1000"),
        payout_method=PayoutMethod.BANK_ACCOUNT,
        payout=PayoutDetails(
            account_holder="Valentina Ruiz",
            bank="Bancolombia",
            account_type="ahorros",
            account_number="12345678901",
            holder_document="1020304050",
        ),
    )
    assert bank.payout.bank == "Bancolombia"


def test_closed_period_accepts_no_requests(db, earnings):
    close_period(db, FIRST_HALF_NOV, "1-15")

    with pytest.raises(ValueError):
        request_advance(db, earnings, nequi("1000"), TODAY)


def test_billing_summary_live_deducts_granted_advances(db, admin, earnings):
    granted = request_advance(db, earnings, nequi("20000"), TODAY)
    approve_advance(db, admin, granted.id)
    request_advance(db, earnings, nequi("1000"), TODAY)

    result = billing_summary(db, admin, TODAY)
    row = result["models"][0]

    assert result["period_date"] == FIRST_HALF_NOV
    assert row["source"] == "live"
    assert row["username"] == "valentina"
    assert row["usd_bruto"] == Decimal("18.03")
    assert row["cop_modelo"] == Decimal("49221.90")
    assert row["cop_sede"] == Decimal("21095.10")
    assert row["advances_cop"] == Decimal("20000.00")
    assert row["net_cop"] == Decimal("29221.90")
    assert result["summary"]["total_models"] == 1


def test_billing_summary_reads_history_after_close(db, admin, earnings):
    advance = request_advance(db, earnings, nequi("10000"), TODAY)
    approve_advance(db, admin, advance.id)
    close_period(db, FIRST_HALF_NOV, "1-15")

    row = billing_summary(db, admin, FIRST_HALF_NOV)["models"][0]

    assert row["source"] == "history"
    assert row["cop_modelo"] == Decimal("49221.90")
    assert row["cop_sede"] == Decimal("21095.10")
    assert row["net_cop"] == Decimal("39221.90")


def test_billing_summary_scoped_to_studio(db, earnings, outsider, super_admin):
    assert billing_summary(db, outsider, TODAY)["models"] == []
    assert billing_summary(db, super_admin, TODAY)["summary"]["total_models"] == 1


def test_advance_api_flow(client, admin, earnings, headers_for, monkeypatch):
    monkeypatch.setattr(
        "studio_admin.advances.router.now_in_business_tz",
        lambda: datetime(2025, 11, 5, 10, 0, tzinfo=BOGOTA),
    )
    available = client.get("/api/advances/available", headers=headers_for(earnings))
    assert available.status_code == 200

    created = client.post(
        "/api/advances",
        json={"amount": "15000", "payout_method": "nequi", "payout": NEQUI.model_dump()},
        headers=headers_for(earnings),
    )
    assert created.status_code == 201
    advance_id = created.json()["id"]

    # Still pending, so a second request is refused
    second = client.post(
        "/api/advances",
        json={"amount": "5000", "payout_method": "nequi", "payout": NEQUI.model_dump()},
        headers=headers_for(earnings),
    )
    assert second.status_code == 400

    assert client.post(f"/api/advances/{advance_id}/approve", headers=headers_for(earnings)).status_code == 403
    approved = client.post(
        f"/api/advances/{advance_id}/approve",
        json={"comment": "ok"},
        headers=headers_for(admin),
    )
    assert approved.json()["status"] == "aprobado"

    listed = client.get("/api/advances", params={"status": "aprobado"}, headers=headers_for(admin))
    assert [a["id"] for a in listed.json()] == [advance_id]

    summary = client.get(
        "/api/admin/billing-summary",
        params={"period_date": "2025-11-01"},
        headers=headers_for(admin),
    )
    assert summary.status_code == 200
    assert summary.json()["models"][0]["advances_cop"] == "15000.00"
    assert client.get("/api/admin/billing-summary", headers=headers_for(earnings)).status_code == 403
