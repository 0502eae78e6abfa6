"""
Shop endpoints: catalog, checkout, orders and financing review.
"""
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import get_current_user, require_admin, require_model
from studio_admin.auth.models import User
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz
from studio_admin.shop import service
from studio_admin.shop.models import Financing, Order
from studio_admin.shop.schemas import (
    CheckoutRequest,
    FinancingResponse,
    InstallmentResponse,
    OrderResponse,
    ProductCreate,
    ProductResponse,
)

router = APIRouter(tags=["Shop"])


def _financing_response(db: Session, financing: Financing) -> FinancingResponse:
    return FinancingResponse(
        id=financing.id,
        order_id=financing.order_id,
        total_amount=financing.total_amount,
        installments=financing.installments,
        amount_per_installment=financing.amount_per_installment,
        status=financing.status,
        schedule=[InstallmentResponse.model_validate(i) for i in service.get_schedule(db, financing.id)],
    )


def _order_response(db: Session, order: Order) -> OrderResponse:
    financing = service.get_financing_for_order(db, order.id)
    return OrderResponse(
        id=order.id,
        model_id=order.model_id,
        status=order.status,
        payment_mode=order.payment_mode,
        subtotal=order.subtotal,
        total=order.total,
        reserved_until=order.reserved_until,
        created_at=order.created_at,
        financing=_financing_response(db, financing) if financing else None,
    )


@router.get("/products", response_model=List[ProductResponse])
def list_products(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return service.list_products(db, current_user, include_inactive and current_user.is_admin)


@router.post("/products", response_model=ProductResponse, status_code=201)
def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.create_product(db, current_user, data)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/checkout", response_model=OrderResponse, status_code=201)
def checkout(
    data: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_model),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Places an order paid from quincena earnings.

    - **1q**: approved at once when available earnings cover 90% of the total
    - **2q-4q**: stock reserved for 48 hours, financing waits for admin review
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        order = service.checkout(db, current_user, data, now_in_business_tz().date())
        logger.info(f"Checkout completed: order={order.id}, status={order.status.value}")
        return _order_response(db, order)
    except DOMAIN_ERRORS as e:
        logger.warning(f"Checkout rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/orders", response_model=List[OrderResponse])
def list_orders(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return [_order_response(db, order) for order in service.list_orders(db, current_user)]


@router.post("/financing/{financing_id}/approve", response_model=FinancingResponse)
def approve_financing(
    financing_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return _financing_response(db, service.approve_financing(db, current_user, financing_id))
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/financing/{financing_id}/reject", response_model=FinancingResponse)
def reject_financing(
    financing_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return _financing_response(db, service.reject_financing(db, current_user, financing_id))
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
