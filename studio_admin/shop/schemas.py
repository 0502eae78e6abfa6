"""
Pydantic schemas for shop input/output validation.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from studio_admin.shop.models import FinancingStatus, InstallmentStatus, OrderStatus, PaymentMode


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150)
    description: Optional[str] = None
    base_price: Decimal = Field(..., gt=0, description="Unit price (COP)")
    allow_financing: bool = False
    stock: int = Field(default=0, ge=0)


class ProductResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    base_price: Decimal
    allow_financing: bool
    is_active: bool
    stock: int
    affiliate_studio_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CheckoutItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1, le=100)


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = Field(..., min_length=1)
    payment_mode: PaymentMode = PaymentMode.ONE
    notes: Optional[str] = Field(default=None, max_length=500)


class InstallmentResponse(BaseModel):
    installment_no: int
    amount: Decimal
    period_date: date
    period_type: str
    status: InstallmentStatus
    prorogued_count: int

    model_config = ConfigDict(from_attributes=True)


class FinancingResponse(BaseModel):
    id: str
    order_id: str
    total_amount: Decimal
    installments: int
    amount_per_installment: Decimal
    status: FinancingStatus
    schedule: List[InstallmentResponse] = []


class OrderResponse(BaseModel):
    id: str
    model_id: str
    status: OrderStatus
    payment_mode: PaymentMode
    subtotal: Decimal
    total: Decimal
    reserved_until: Optional[datetime] = None
    created_at: datetime
    financing: Optional[FinancingResponse] = None
