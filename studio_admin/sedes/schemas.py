from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from studio_admin.sedes.models import Jornada


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    min_quota_usd: Optional[Decimal] = Field(default=None, ge=0)


class GroupUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    min_quota_usd: Optional[Decimal] = Field(default=None, ge=0)


class GroupResponse(BaseModel):
    id: str
    name: str
    percentage: Optional[Decimal] = None
    min_quota_usd: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class RoomCreate(BaseModel):
    group_id: str
    name: str = Field(..., min_length=1, max_length=100)


class RoomResponse(BaseModel):
    id: str
    group_id: str
    name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class AssignmentRequest(BaseModel):
    model_id: str
    room_id: str
    jornada: Jornada
    action: Literal["assign", "move"] = "assign"


class AssignmentResponse(BaseModel):
    id: str
    model_id: str
    room_id: str
    jornada: Jornada
    is_active: bool
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)
