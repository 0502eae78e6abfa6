from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from studio_admin.periods.models import ClosureStatus


class ClosureStatusResponse(BaseModel):
    period_date: date
    period_type: str
    status: ClosureStatus
    details: Dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ClosePeriodRequest(BaseModel):
    period_date: Optional[date] = None
    period_type: Optional[str] = Field(default=None, pattern=r"^(1-15|16-31)$")


class ManualCloseRequest(BaseModel):
    period_date: date
    period_type: Optional[str] = Field(default=None, pattern=r"^(1-15|16-31)$")
    target_status: ClosureStatus = ClosureStatus.COMPLETED
    force: bool = False


class FreezeStatusResponse(BaseModel):
    model_id: str
    period_date: date
    period_type: str
    frozen_platforms: List[str]
    status: str


class FrozenPlatformItem(BaseModel):
    platform_id: str
    period_date: date
    frozen_at: datetime


class UnfreezeResponse(BaseModel):
    success: bool = True
    removed: int
