"""
Data models for sedes (groups), rooms and jornada assignments.
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class Jornada(str, enum.Enum):
    """Working shift of a room."""
    MORNING = "MAÑANA"
    AFTERNOON = "TARDE"
    NIGHT = "NOCHE"


class Group(Base):
    """A sede. Carries the default model percentage and minimum quota of its models."""

    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    min_quota_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Group(id={self.id}, name={self.name}, percentage={self.percentage})>"


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (UniqueConstraint("group_id", "name", name="uq_room_group_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    group_id: Mapped[str] = mapped_column(String(36), ForeignKey("groups.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Room(id={self.id}, name={self.name})>"


class Assignment(Base):
    """A model working a room during a jornada. Soft-deleted through is_active."""

    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    model_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
    jornada: Mapped[Jornada] = mapped_column(
        Enum(Jornada, values_callable=get_enum_values),
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    assigned_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Assignment(model={self.model_id}, room={self.room_id}, jornada={self.jornada}, active={self.is_active})>"


# At most one active row per model/jornada and per room/jornada
Index(
    "uq_assignment_active_model_jornada",
    Assignment.model_id,
    Assignment.jornada,
    unique=True,
    sqlite_where=Assignment.is_active == True,  # noqa: E712
    postgresql_where=Assignment.is_active == True,  # noqa: E712
)
Index(
    "uq_assignment_active_room_jornada",
    Assignment.room_id,
    Assignment.jornada,
    unique=True,
    sqlite_where=Assignment.is_active == True,  # noqa: E712
    postgresql_where=Assignment.is_active == True,  # noqa: E712
)
