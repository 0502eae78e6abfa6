"""
Data models for earnings advances (anticipos). Amounts are COP.
"""
import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import JSON, Date, DateTime, Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class AdvanceStatus(str, enum.Enum):
    PENDING = "pendiente"
    APPROVED = "aprobado"
    REJECTED = "rechazado"
    PAID = "realizado"
    CONFIRMED = "confirmado"
    CANCELLED = "cancelado"


class PayoutMethod(str, enum.Enum):
    NEQUI = "nequi"
    DAVIPLATA = "daviplata"
    BANK_ACCOUNT = "cuenta_bancaria"


class Advance(Base):
    __tablename__ = "advances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    model_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    period_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_type: Mapped[str] = mapped_column(String(5), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    available_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payout_method: Mapped[PayoutMethod] = mapped_column(
        Enum(PayoutMethod, values_callable=get_enum_values),
        nullable=False
    )
    payout_details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[AdvanceStatus] = mapped_column(
        Enum(AdvanceStatus, values_callable=get_enum_values),
        nullable=False,
        default=AdvanceStatus.PENDING,
        index=True
    )
    admin_comment: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    affiliate_studio_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Advance(id={self.id}, amount={self.amount}, status={self.status})>"
