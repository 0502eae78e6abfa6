"""
Data models for period closure: one status row per period and the
per-model platforms frozen ahead of the full close.
"""
import enum
from datetime import date, datetime
from typing import Any, Dict

from sqlalchemy import JSON, Date, DateTime, Enum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class ClosureStatus(str, enum.Enum):
    PENDING = "pending"
    EARLY_FREEZING = "early_freezing"
    CLOSING_CALCULATORS = "closing_calculators"
    WAITING_SUMMARY = "waiting_summary"
    CLOSING_SUMMARY = "closing_summary"
    ARCHIVING = "archiving"
    COMPLETED = "completed"
    FAILED = "failed"


class PeriodClosureStatus(Base):
    __tablename__ = "period_closure_status"
    __table_args__ = (UniqueConstraint("period_date", "period_type", name="uq_closure_period"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    period_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_type: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[ClosureStatus] = mapped_column(
        Enum(ClosureStatus, values_callable=get_enum_values),
        nullable=False,
        default=ClosureStatus.PENDING,
        index=True
    )
    details: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<PeriodClosureStatus(period={self.period_date} {self.period_type}, status={self.status})>"


class EarlyFrozenPlatform(Base):
    """A platform whose value input is read-only for a model until the period closes."""

    __tablename__ = "early_frozen_platforms"
    __table_args__ = (
        UniqueConstraint("period_date", "model_id", "platform_id", name="uq_frozen_platform"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    period_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    model_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    platform_id: Mapped[str] = mapped_column(String(50), nullable=False)
    frozen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<EarlyFrozenPlatform(period={self.period_date}, model={self.model_id}, platform={self.platform_id})>"
