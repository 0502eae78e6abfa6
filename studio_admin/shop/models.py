"""
Data models for the studio shop: catalog, orders and quincena financing.
Amounts are COP.
"""
import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class PaymentMode(str, enum.Enum):
    ONE = "1q"
    TWO = "2q"
    THREE = "3q"
    FOUR = "4q"

    @property
    def installments(self) -> int:
        return int(self.value[0])


class OrderStatus(str, enum.Enum):
    APPROVED = "aprobado"
    RESERVED = "reservado"
    REJECTED = "rechazado"


class FinancingStatus(str, enum.Enum):
    PENDING = "pendiente"
    APPROVED = "aprobado"
    REJECTED = "rechazado"
    COMPLETED = "completado"


class InstallmentStatus(str, enum.Enum):
    PENDING = "pendiente"
    CHARGED = "cobrada"


class Product(Base):
    __tablename__ = "shop_products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    allow_financing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    affiliate_studio_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name}, stock={self.stock})>"


class Order(Base):
    __tablename__ = "shop_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    model_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, values_callable=get_enum_values),
        nullable=False,
        index=True
    )
    payment_mode: Mapped[PaymentMode] = mapped_column(
        Enum(PaymentMode, values_callable=get_enum_values),
        nullable=False
    )
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    affiliate_studio_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    reserved_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status}, total={self.total})>"


class OrderItem(Base):
    __tablename__ = "shop_order_items"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("shop_orders.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("shop_products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)


class Financing(Base):
    __tablename__ = "shop_financing"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("shop_orders.id"), unique=True, nullable=False)
    model_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    installments: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_per_installment: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[FinancingStatus] = mapped_column(
        Enum(FinancingStatus, values_callable=get_enum_values),
        nullable=False,
        default=FinancingStatus.PENDING,
        index=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Financing(id={self.id}, installments={self.installments}, status={self.status})>"


class FinancingInstallment(Base):
    __tablename__ = "shop_financing_installments"
    __table_args__ = (UniqueConstraint("financing_id", "installment_no", name="uq_installment_no"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    financing_id: Mapped[str] = mapped_column(String(36), ForeignKey("shop_financing.id"), nullable=False, index=True)
    installment_no: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    period_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_type: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[InstallmentStatus] = mapped_column(
        Enum(InstallmentStatus, values_callable=get_enum_values),
        nullable=False,
        default=InstallmentStatus.PENDING,
        index=True
    )
    prorogued_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deducted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self):
        return f"<FinancingInstallment(financing={self.financing_id}, no={self.installment_no}, status={self.status})>"
