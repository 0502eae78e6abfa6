"""
Tests for the shop: installment schedules, checkout rules, financing review
and installment charging after a period closes.
"""
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from studio_admin.calculator.models import ModelValue
from studio_admin.core.config import settings
from studio_admin.core.exceptions import InsufficientFundsError, InsufficientStockError, ScopeError
from studio_admin.periods.service import close_period
from studio_admin.shop.models import (
    Financing,
    FinancingStatus,
    InstallmentStatus,
    OrderStatus,
    PaymentMode,
    Product,
)
from studio_admin.shop.schemas import CheckoutItem, CheckoutRequest
from studio_admin.shop.service import (
    approve_financing,
    build_installment_schedule,
    checkout,
    get_financing_for_order,
    get_schedule,
    process_installments,
    reject_financing,
)

FIRST_HALF_NOV = date(2025, 11, 1)
TODAY = date(2025, 11, 5)
BOGOTA = ZoneInfo("America/Bogota")


@pytest.fixture
def product_factory(db, affiliate):
    def factory(name="Ring light", price="40000", stock=5, allow_financing=True, affiliate_studio_id=affiliate.id):
        product = Product(
            name=name,
            base_price=Decimal(price),
            stock=stock,
            allow_financing=allow_financing,
            affiliate_studio_id=affiliate_studio_id,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return factory


@pytest.fixture
def earnings(db, configured_model):
    """Modelka 3 EUR and SkyPrivate 20 USD: COP 49221.90 for the model."""
    for platform_id, value in (("modelka", "3"), ("skypvt", "20")):
        db.add(ModelValue(
            model_id=configured_model.id,
            platform_id=platform_id,
            period_date=FIRST_HALF_NOV,
            value=Decimal(value),
        ))
    db.commit()
    return configured_model


def order_for(product, quantity=1, mode=PaymentMode.ONE):
    return CheckoutRequest(items=[CheckoutItem(product_id=product.id, quantity=quantity)], payment_mode=mode)


def test_schedule_sums_to_total_and_spans_periods():
    schedule = build_installment_schedule(Decimal("100001"), 3, (date(2025, 12, 20), None))

    assert [amount for _, amount, _, _ in schedule] == [Decimal("33334"), Decimal("33334"), Decimal("33333")]
    assert sum(amount for _, amount, _, _ in schedule) == Decimal("100001")
    assert [(d, t) for _, _, d, t in schedule] == [
        (date(2025, 12, 16), "16-31"),
        (date(2026, 1, 1), "1-15"),
        (date(2026, 1, 16), "16-31"),
    ]


def test_schedule_rejects_total_smaller_than_installments():
    with pytest.raises(ValueError):
        build_installment_schedule(Decimal("3"), 4, (TODAY, None))


def test_cash_purchase_needs_available_earnings(db, configured_model, product_factory):
    product = product_factory(price="40000")

    with pytest.raises(InsufficientFundsError):
        checkout(db, configured_model, order_for(product), TODAY)

    db.refresh(product)
    assert product.stock == 5


def test_cash_purchase_approved_with_earnings(db, earnings, product_factory):
    product = product_factory(price="40000")

    order = checkout(db, earnings, order_for(product), TODAY)

    financing = get_financing_for_order(db, order.id)
    db.refresh(product)
    assert order.status == OrderStatus.APPROVED
    assert financing.status == FinancingStatus.APPROVED
    assert [i.period_date for i in get_schedule(db, financing.id)] == [FIRST_HALF_NOV]
    assert product.stock == 4


def test_financed_purchase_is_reserved_pending_review(db, model, product_factory):
    product = product_factory(price="90000")

    order = checkout(db, model, order_for(product, mode=PaymentMode.THREE), TODAY)

    financing = get_financing_for_order(db, order.id)
    assert order.status == OrderStatus.RESERVED
    assert order.reserved_until is not None
    assert financing.status == FinancingStatus.PENDING
    assert financing.amount_per_installment == Decimal("30000")


def test_only_one_active_multi_financing(db, model, product_factory):
    product = product_factory()
    checkout(db, model, order_for(product, mode=PaymentMode.TWO), TODAY)

    with pytest.raises(ValueError):
        checkout(db, model, order_for(product, mode=PaymentMode.TWO), TODAY)


def test_product_without_financing_cannot_be_split(db, model, product_factory):
    product = product_factory(allow_financing=False)

    with pytest.raises(ValueError):
        checkout(db, model, order_for(product, mode=PaymentMode.TWO), TODAY)


def test_other_studio_product_rejected(db, model, product_factory):
    product = product_factory(affiliate_studio_id=None)

    with pytest.raises(ScopeError):
        checkout(db, model, order_for(product, mode=PaymentMode.TWO), TODAY)


def test_stock_is_never_oversold(db, model, product_factory):
    product = product_factory(stock=1)

    with pytest.raises(InsufficientStockError):
        checkout(db, model, order_for(product, quantity=2, mode=PaymentMode.TWO), TODAY)

    db.refresh(product)
    assert product.stock == 1


def test_reject_restores_stock(db, admin, model, product_factory):
    product = product_factory(stock=3)
    order = checkout(db, model, order_for(product, quantity=2, mode=PaymentMode.TWO), TODAY)
    financing = get_financing_for_order(db, order.id)

    reject_financing(db, admin, financing.id)

    db.refresh(product)
    db.refresh(order)
    assert product.stock == 3
    assert order.status == OrderStatus.REJECTED
    with pytest.raises(ValueError):
        approve_financing(db, admin, financing.id)


def test_installments_charged_after_close_and_deferred_without_earnings(db, admin, earnings, product_factory):
    product = product_factory(price="40000")
    order = checkout(db, earnings, order_for(product, mode=PaymentMode.TWO), TODAY)
    financing = get_financing_for_order(db, order.id)
    approve_financing(db, admin, financing.id)

    close_period(db, FIRST_HALF_NOV, "1-15")
    first = process_installments(db, FIRST_HALF_NOV)
    again = process_installments(db, FIRST_HALF_NOV)
    # Nothing was earned in the second half
    close_period(db, date(2025, 11, 16), "16-31")
    second = process_installments(db, date(2025, 11, 16))

    schedule = get_schedule(db, financing.id)
    assert first == {"charged": 1, "deferred": 0, "completed": 0}
    assert again == {"charged": 0, "deferred": 0, "completed": 0}
    assert second == {"charged": 0, "deferred": 1, "completed": 0}
    assert schedule[0].status == InstallmentStatus.CHARGED
    assert schedule[1].status == InstallmentStatus.PENDING
    assert schedule[1].period_date == date(2025, 12, 1)
    assert schedule[1].prorogued_count == 1


def test_cash_financing_completes_when_charged(db, earnings, product_factory):
    product = product_factory(price="40000")
    order = checkout(db, earnings, order_for(product), TODAY)

    close_period(db, FIRST_HALF_NOV, "1-15")
    summary = process_installments(db, FIRST_HALF_NOV, "1-15")

    financing = db.query(Financing).filter(Financing.order_id == order.id).one()
    assert summary["completed"] == 1
    assert financing.status == FinancingStatus.COMPLETED


def test_installments_wait_for_the_period_to_close(db, admin, earnings, product_factory):
    product = product_factory(price="40000")
    order = checkout(db, earnings, order_for(product, mode=PaymentMode.TWO), TODAY)
    financing = get_financing_for_order(db, order.id)
    approve_financing(db, admin, financing.id)

    summary = process_installments(db, FIRST_HALF_NOV, "1-15")

    schedule = get_schedule(db, financing.id)
    assert summary == {"charged": 0, "deferred": 0, "completed": 0}
    assert schedule[0].status == InstallmentStatus.PENDING
    assert schedule[0].period_date == FIRST_HALF_NOV
    assert schedule[0].prorogued_count == 0


def test_installments_cron_skips_open_period(client, db, admin, earnings, product_factory, monkeypatch):
    product = product_factory(price="40000")
    order = checkout(db, earnings, order_for(product, mode=PaymentMode.TWO), TODAY)
    financing = get_financing_for_order(db, order.id)
    approve_financing(db, admin, financing.id)
    monkeypatch.setattr(
        "studio_admin.cron.router.now_in_business_tz",
        lambda: datetime(2025, 11, 20, 10, 0, tzinfo=BOGOTA),
    )
    headers = {"x-cron-secret": settings.CRON_SECRET}

    skipped = client.get("/api/cron/shop-process-installments", headers=headers)
    close_period(db, FIRST_HALF_NOV, "1-15")
    charged = client.get("/api/cron/shop-process-installments", headers=headers)

    db.expire_all()
    schedule = get_schedule(db, financing.id)
    assert skipped.json()["skipped"] is True
    assert skipped.json()["period_date"] == "2025-11-01"
    assert charged.json()["charged"] == 1
    assert schedule[0].status == InstallmentStatus.CHARGED
    assert schedule[0].prorogued_count == 0
    assert schedule[1].period_date == date(2025, 11, 16)
