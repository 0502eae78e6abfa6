from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from studio_admin.rates.models import RateKind, RateScope


class RateCreate(BaseModel):
    kind: RateKind
    value: Decimal = Field(..., gt=0, description="Units of the target currency per unit of the source")
    scope: RateScope = RateScope.GLOBAL
    scope_id: Optional[str] = None


class RateResponse(BaseModel):
    id: int
    kind: RateKind
    value: Decimal
    scope: RateScope
    scope_id: Optional[str] = None
    source: str
    author_id: Optional[str] = None
    valid_from: datetime
    valid_to: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EffectiveRatesResponse(BaseModel):
    usd_cop: Decimal
    eur_usd: Decimal
    gbp_usd: Decimal
    group_id: Optional[str] = None
    active: List[RateResponse] = []


class ReferenceRatesResponse(BaseModel):
    usd_cop: Optional[Decimal] = None
    eur_usd: Optional[Decimal] = None
    gbp_usd: Optional[Decimal] = None
    sources: Dict[str, str] = {}
    errors: List[str] = []
