"""
Business logic for the shop.

Purchases are paid from the model's quincena earnings: at once (1q) or split
in up to four consecutive periods. Installments are charged after each period
closes, from the archived COP earnings of that period.
"""
from datetime import date, datetime, timedelta
from decimal import ROUND_CEILING, Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from studio_admin.auth.models import User, UserRole
from studio_admin.calculator.models import CalculatorHistory
from studio_admin.calculator.service import compute_model_totals
from studio_admin.chat.service import send_bot_notification
from studio_admin.core.config import settings
from studio_admin.core.exceptions import InsufficientFundsError, InsufficientStockError, NotFoundError, ScopeError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.utils import format_business_time, to_decimal, utcnow
from studio_admin.periods.dates import next_period, normalize_period
from studio_admin.periods.models import ClosureStatus, PeriodClosureStatus
from studio_admin.shop.models import (
    Financing,
    FinancingInstallment,
    FinancingStatus,
    InstallmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    Product,
)
from studio_admin.shop.schemas import CheckoutRequest, ProductCreate

ACTIVE_FINANCING = (FinancingStatus.PENDING, FinancingStatus.APPROVED)


# Catalog

def list_products(db: Session, actor: User, include_inactive: bool = False) -> List[Product]:
    query = db.query(Product)
    if actor.role != UserRole.SUPER_ADMIN:
        if actor.affiliate_studio_id is None:
            query = query.filter(Product.affiliate_studio_id.is_(None))
        else:
            query = query.filter(Product.affiliate_studio_id == actor.affiliate_studio_id)
    if not include_inactive:
        query = query.filter(Product.is_active == True)  # noqa: E712
    return query.order_by(Product.name).all()


def create_product(db: Session, actor: User, data: ProductCreate) -> Product:
    product = Product(**data.model_dump(), affiliate_studio_id=actor.affiliate_studio_id)
    db.add(product)
    db.commit()
    db.refresh(product)
    audit_log(
        action="product_created",
        user=actor.id,
        resource=f"product_id={product.id}",
        details={"affiliate_studio_id": actor.affiliate_studio_id, "price": str(product.base_price)}
    )
    return product


# Installment schedule

def build_installment_schedule(
    total: Decimal,
    installments: int,
    start_period: Tuple[date, str],
) -> List[Tuple[int, Decimal, date, str]]:
    """
    Splits `total` into `installments` whole-peso amounts over consecutive periods.
    Each installment is ceil(total / n); the last one absorbs the remainder so the
    schedule sums exactly to the total.
    """
    total = to_decimal(total)
    if installments < 1:
        raise ValueError("At least one installment required")
    if total < installments:
        raise ValueError("Total too small to split in installments")

    per = (total / installments).to_integral_value(rounding=ROUND_CEILING)
    schedule = []
    period_date, period_type = normalize_period(*start_period)
    remaining = total
    for number in range(1, installments + 1):
        amount = per if number < installments else remaining
        schedule.append((number, amount, period_date, period_type))
        remaining -= amount
        period_date, period_type = next_period(period_date, period_type)
    return schedule


def pending_installments_total(db: Session, model_id: str, period_date: date) -> Decimal:
    total = db.query(func.coalesce(func.sum(FinancingInstallment.amount), 0)).join(
        Financing, Financing.id == FinancingInstallment.financing_id
    ).filter(
        Financing.model_id == model_id,
        Financing.status.in_(ACTIVE_FINANCING),
        FinancingInstallment.status == InstallmentStatus.PENDING,
        FinancingInstallment.period_date == period_date,
    ).scalar()
    return to_decimal(total)


def available_net(db: Session, model: User, today: date) -> Decimal:
    """Current period COP earnings minus installments already due this period."""
    period_date, _ = normalize_period(today)
    totals = compute_model_totals(db, model, period_date=period_date)
    return totals.total_cop_modelo - pending_installments_total(db, model.id, period_date)


def has_active_multi_financing(db: Session, model_id: str) -> bool:
    return db.query(Financing.id).filter(
        Financing.model_id == model_id,
        Financing.status.in_(ACTIVE_FINANCING),
        Financing.installments > 1,
    ).first() is not None


# Checkout

def checkout(
    db: Session,
    model: User,
    data: CheckoutRequest,
    today: date,
    now: Optional[datetime] = None,
) -> Order:
    """
    Places an order for a model.

    1q orders need available earnings of at least 90% of the total and are
    approved immediately. Multi-quincena orders reserve stock for 48 hours
    and wait for an admin to approve the financing.
    """
    now = now or utcnow()
    n = data.payment_mode.installments

    product_ids = [item.product_id for item in data.items]
    products: Dict[str, Product] = {
        p.id: p for p in db.query(Product).filter(Product.id.in_(product_ids)).all()
    }

    total = Decimal(0)
    for item in data.items:
        product = products.get(item.product_id)
        if not product or not product.is_active:
            raise NotFoundError(f"Product {item.product_id} not available")
        if product.affiliate_studio_id != model.affiliate_studio_id:
            raise ScopeError("Product belongs to another studio")
        if n > 1 and not product.allow_financing:
            raise ValueError(f"Product {product.name} cannot be financed")
        total += to_decimal(product.base_price) * item.quantity

    if n > 1 and has_active_multi_financing(db, model.id):
        raise ValueError("An active multi-quincena financing already exists")

    if n == 1:
        neto = available_net(db, model, today)
        required = total * to_decimal(settings.SHOP_FUNDS_RATIO)
        if neto < required:
            raise InsufficientFundsError(
                f"Available earnings {neto.quantize(Decimal('0.01'))} do not cover the purchase"
            )

    schedule = build_installment_schedule(total, n, normalize_period(today))

    for item in data.items:
        updated = db.query(Product).filter(
            Product.id == item.product_id,
            Product.stock >= item.quantity,
        ).update({Product.stock: Product.stock - item.quantity}, synchronize_session=False)
        if not updated:
            db.rollback()
            raise InsufficientStockError(f"Not enough stock for product {item.product_id}")

    order = Order(
        model_id=model.id,
        status=OrderStatus.APPROVED if n == 1 else OrderStatus.RESERVED,
        payment_mode=data.payment_mode,
        subtotal=total,
        total=total,
        notes=data.notes,
        affiliate_studio_id=model.affiliate_studio_id,
        reserved_until=None if n == 1 else now + timedelta(hours=48),
    )
    db.add(order)
    db.flush()

    for item in data.items:
        db.add(OrderItem(
            order_id=order.id,
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price=products[item.product_id].base_price,
        ))

    financing = Financing(
        order_id=order.id,
        model_id=model.id,
        total_amount=total,
        installments=n,
        amount_per_installment=schedule[0][1],
        status=FinancingStatus.APPROVED if n == 1 else FinancingStatus.PENDING,
    )
    db.add(financing)
    db.flush()
    for number, amount, period_date, period_type in schedule:
        db.add(FinancingInstallment(
            financing_id=financing.id,
            installment_no=number,
            amount=amount,
            period_date=period_date,
            period_type=period_type,
        ))
    db.commit()
    db.refresh(order)

    audit_log(
        action="shop_checkout",
        user=model.id,
        resource=f"order_id={order.id}",
        details={"total": str(total), "payment_mode": data.payment_mode.value, "status": order.status.value}
    )
    send_bot_notification(
        db,
        model.id,
        "shop_order",
        f"Tu pedido por COP {total} quedó {order.status.value}."
        + ("" if n == 1 else (
            f" Reservado hasta {format_business_time(order.reserved_until)}; "
            "un administrador revisará la financiación."
        )),
    )
    logger.info(f"Order {order.id} placed by model {model.id}: total={total}, mode={data.payment_mode.value}")
    return order


def get_financing_for_order(db: Session, order_id: str) -> Optional[Financing]:
    return db.query(Financing).filter(Financing.order_id == order_id).first()


def get_schedule(db: Session, financing_id: str) -> List[FinancingInstallment]:
    return db.query(FinancingInstallment).filter(
        FinancingInstallment.financing_id == financing_id
    ).order_by(FinancingInstallment.installment_no).all()


def list_orders(db: Session, actor: User) -> List[Order]:
    query = db.query(Order)
    if actor.role == UserRole.MODEL:
        query = query.filter(Order.model_id == actor.id)
    elif actor.role != UserRole.SUPER_ADMIN:
        query = query.filter(Order.affiliate_studio_id == actor.affiliate_studio_id)
    return query.order_by(Order.created_at.desc()).all()


def _reviewable_financing(db: Session, actor: User, financing_id: str) -> Tuple[Financing, Order]:
    financing = db.query(Financing).filter(Financing.id == financing_id).first()
    if not financing:
        raise NotFoundError("Financing not found")
    order = db.query(Order).filter(Order.id == financing.order_id).first()
    if actor.role != UserRole.SUPER_ADMIN and order.affiliate_studio_id != actor.affiliate_studio_id:
        raise ScopeError("Financing belongs to another studio")
    if financing.status != FinancingStatus.PENDING:
        raise ValueError(f"Financing is {financing.status.value}")
    return financing, order


def approve_financing(db: Session, actor: User, financing_id: str) -> Financing:
    financing, order = _reviewable_financing(db, actor, financing_id)
    financing.status = FinancingStatus.APPROVED
    financing.reviewed_by = actor.id
    order.status = OrderStatus.APPROVED
    order.reserved_until = None
    db.commit()
    db.refresh(financing)

    audit_log(action="financing_approved", user=actor.id, resource=f"financing_id={financing.id}")
    send_bot_notification(
        db,
        financing.model_id,
        "shop_financing",
        f"Tu financiación en {financing.installments} quincenas fue aprobada.",
    )
    return financing


def reject_financing(db: Session, actor: User, financing_id: str) -> Financing:
    financing, order = _reviewable_financing(db, actor, financing_id)
    financing.status = FinancingStatus.REJECTED
    financing.reviewed_by = actor.id
    order.status = OrderStatus.REJECTED
    order.reserved_until = None

    for item in db.query(OrderItem).filter(OrderItem.order_id == order.id).all():
        db.query(Product).filter(Product.id == item.product_id).update(
            {Product.stock: Product.stock + item.quantity}, synchronize_session=False
        )
    db.commit()
    db.refresh(financing)

    audit_log(action="financing_rejected", user=actor.id, resource=f"financing_id={financing.id}")
    send_bot_notification(db, financing.model_id, "shop_financing", "Tu solicitud de financiación fue rechazada.")
    return financing


def archived_net(db: Session, model_id: str, period_date: date, period_type: str) -> Decimal:
    earned = db.query(func.coalesce(func.sum(CalculatorHistory.cop_modelo), 0)).filter(
        CalculatorHistory.model_id == model_id,
        CalculatorHistory.period_date == period_date,
        CalculatorHistory.period_type == period_type,
    ).scalar()
    charged = db.query(func.coalesce(func.sum(FinancingInstallment.amount), 0)).join(
        Financing, Financing.id == FinancingInstallment.financing_id
    ).filter(
        Financing.model_id == model_id,
        FinancingInstallment.status == InstallmentStatus.CHARGED,
        FinancingInstallment.period_date == period_date,
    ).scalar()
    return to_decimal(earned) - to_decimal(charged)


def is_period_closed(db: Session, period_date: date, period_type: str) -> bool:
    return db.query(PeriodClosureStatus.id).filter(
        PeriodClosureStatus.period_date == period_date,
        PeriodClosureStatus.period_type == period_type,
        PeriodClosureStatus.status == ClosureStatus.COMPLETED,
    ).first() is not None


def process_installments(db: Session, period_date: date, period_type: Optional[str] = None) -> Dict[str, int]:
    """
    Charges the period's pending installments of approved financings.

    An installment the archived earnings cannot cover moves to the next period
    and the model is notified. A financing completes when every installment
    has been charged. Re-running for the same period is a no-op. Nothing is
    charged or deferred until the period's closure has completed.
    """
    period_date, period_type = normalize_period(period_date, period_type)
    summary = {"charged": 0, "deferred": 0, "completed": 0}
    if not is_period_closed(db, period_date, period_type):
        logger.warning(f"Installments for {period_date} {period_type} skipped: period not closed")
        return summary

    due =db.query(FinancingInstallment, Financing).join(
        Financing, Financing.id == FinancingInstallment.financing_id
    ).filter(
        Financing.status == FinancingStatus.APPROVED,
        FinancingInstallment.status == InstallmentStatus.PENDING,
        FinancingInstallment.period_date == period_date,
    ).order_by(Financing.created_at, FinancingInstallment.installment_no).all()

    available: Dict[str, Decimal] = {}
    deferred_models: Dict[str, List[FinancingInstallment]] = {}
    touched: Dict[str, Financing] = {}

    for installment, financing in due:
        if financing.model_id not in available:
            available[financing.model_id] = archived_net(db, financing.model_id, period_date, period_type)

        if available[financing.model_id] >= installment.amount:
            installment.status = InstallmentStatus.CHARGED
            installment.deducted_at = utcnow()
            available[financing.model_id] -= installment.amount
            summary["charged"] += 1
            touched[financing.id] = financing
        else:
            installment.period_date, installment.period_type = next_period(period_date, period_type)
            installment.prorogued_count += 1
            summary["deferred"] += 1
            deferred_models.setdefault(financing.model_id, []).append(installment)
    db.flush()

    for financing in touched.values():
        remaining = db.query(FinancingInstallment.id).filter(
            FinancingInstallment.financing_id == financing.id,
            FinancingInstallment.status == InstallmentStatus.PENDING,
        ).first()
        if remaining is None:
            financing.status = FinancingStatus.COMPLETED
            summary["completed"] += 1
    db.commit()

    for model_id, installments in deferred_models.items():
        send_bot_notification(
            db,
            model_id,
            "installment_deferred",
            f"{len(installments)} cuota(s) no pudieron descontarse esta quincena y pasan a la siguiente.",
        )

    audit_log(
        action="installments_processed",
        user="system",
        resource=f"period={period_date.isoformat()}:{period_type}",
        details=summary
    )
    logger.info(f"Installments processed for {period_date} {period_type}: {summary}")
    return summary
