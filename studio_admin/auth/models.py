"""
Identity data: users, their role and tenant scope, and affiliate studios.
"""
import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class UserRole(str, enum.Enum):
    MODEL = "modelo"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)


class AffiliateStudio(Base):
    """A partner studio operating its own models and shop catalog."""

    __tablename__ = "affiliate_studios"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<AffiliateStudio(id={self.id}, name={self.name})>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=get_enum_values),
        nullable=False,
        default=UserRole.MODEL,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    group_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("groups.id"), nullable=True, index=True)
    affiliate_studio_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("affiliate_studios.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
