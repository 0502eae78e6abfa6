"""
Data models for the earnings calculator: platform rules, the values models
report each period, per-model configuration and the append-only history
written at period close.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.calculator.engine import ConversionType
from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class CalculatorPlatform(Base):
    __tablename__ = "calculator_platforms"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)  # slug, e.g. "skypvt"
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    conversion_type: Mapped[ConversionType] = mapped_column(
        Enum(ConversionType, values_callable=get_enum_values),
        nullable=False
    )
    discount_factor: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 6), nullable=True)
    tax_factor: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 6), nullable=True)
    token_rate_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 6), nullable=True)
    full_model_share: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<CalculatorPlatform(id={self.id}, conversion={self.conversion_type})>"


class ModelValue(Base):
    """Amount a model reported for a platform in a period, in the platform's currency."""

    __tablename__ = "model_values"
    __table_args__ = (
        UniqueConstraint("model_id", "platform_id", "period_date", name="uq_model_value_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    model_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    platform_id: Mapped[str] = mapped_column(String(50), ForeignKey("calculator_platforms.id"), nullable=False)
    period_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    value: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ModelValue(model={self.model_id}, platform={self.platform_id}, value={self.value})>"


class CalculatorConfig(Base):
    __tablename__ = "calculator_config"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    model_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    enabled_platforms: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    percentage_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    platform_percentages: Mapped[Dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    min_quota_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<CalculatorConfig(model={self.model_id}, platforms={len(self.enabled_platforms or [])})>"


class CalculatorHistory(Base):
    """Archived per-platform result of a closed period. Append-only."""

    __tablename__ = "calculator_history"
    __table_args__ = (
        UniqueConstraint("model_id", "platform_id", "period_date", "period_type", name="uq_history_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    model_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    platform_id: Mapped[str] = mapped_column(String(50), nullable=False)
    period_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_type: Mapped[str] = mapped_column(String(5), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    usd_bruto: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    usd_modelo: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    cop_modelo: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    rate_usd_cop: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    rate_eur_usd: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    rate_gbp_usd: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    original_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archived_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<CalculatorHistory(model={self.model_id}, platform={self.platform_id}, period={self.period_date})>"
