"""
Versioned FX rates. A rate is never edited: a new row replaces the active one
by closing its validity window.
"""
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from studio_admin.core.database import Base
from studio_admin.core.utils import get_enum_values, utcnow


class RateKind(str, enum.Enum):
    USD_COP = "USD→COP"
    EUR_USD = "EUR→USD"
    GBP_USD = "GBP→USD"


class RateScope(str, enum.Enum):
    GLOBAL = "global"
    GROUP = "group"


class Rate(Base):
    __tablename__ = "rates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    kind: Mapped[RateKind] = mapped_column(
        Enum(RateKind, values_callable=get_enum_values),
        nullable=False,
        index=True
    )
    value: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    scope: Mapped[RateScope] = mapped_column(
        Enum(RateScope, values_callable=get_enum_values),
        nullable=False,
        default=RateScope.GLOBAL
    )
    scope_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="manual")
    author_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    valid_from: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    @property
    def is_active(self) -> bool:
        return self.valid_to is None

    def __repr__(self):
        return f"<Rate(kind={self.kind}, value={self.value}, scope={self.scope}, scope_id={self.scope_id})>"


# Exactly one open validity window per (kind, scope, scope_id)
Index(
    "uq_rate_active_per_scope",
    Rate.kind,
    Rate.scope,
    func.coalesce(Rate.scope_id, ""),
    unique=True,
    sqlite_where=Rate.valid_to.is_(None),
    postgresql_where=Rate.valid_to.is_(None),
)
