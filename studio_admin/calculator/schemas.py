"""
Pydantic schemas for the calculator API.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from studio_admin.calculator.engine import ConversionType


class PlatformCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_\-]+$")
    name: str = Field(..., min_length=1, max_length=100)
    conversion_type: ConversionType
    discount_factor: Optional[Decimal] = Field(default=None, gt=0, le=1)
    tax_factor: Optional[Decimal] = Field(default=None, gt=0, le=1)
    token_rate_usd: Optional[Decimal] = Field(default=None, gt=0)
    full_model_share: bool = False

    @field_validator("token_rate_usd")
    @classmethod
    def tokens_need_rate(cls, v, info):
        if info.data.get("conversion_type") == ConversionType.TOKENS and v is None:
            raise ValueError("Token platforms need token_rate_usd")
        return v


class PlatformUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    discount_factor: Optional[Decimal] = Field(default=None, gt=0, le=1)
    tax_factor: Optional[Decimal] = Field(default=None, gt=0, le=1)
    token_rate_usd: Optional[Decimal] = Field(default=None, gt=0)
    full_model_share: Optional[bool] = None
    is_active: Optional[bool] = None


class PlatformResponse(BaseModel):
    id: str
    name: str
    conversion_type: ConversionType
    discount_factor: Optional[Decimal] = None
    tax_factor: Optional[Decimal] = None
    token_rate_usd: Optional[Decimal] = None
    full_model_share: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ConfigUpdate(BaseModel):
    enabled_platforms: List[str] = []
    percentage_override: Optional[Decimal] = Field(default=None, ge=0, le=100)
    platform_percentages: Dict[str, Decimal] = {}
    min_quota_override: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("platform_percentages")
    @classmethod
    def percentages_in_range(cls, v: Dict[str, Decimal]) -> Dict[str, Decimal]:
        for platform_id, pct in v.items():
            if pct < 0 or pct > 100:
                raise ValueError(f"Percentage for {platform_id} must be between 0 and 100")
        return v


class ConfigResponse(BaseModel):
    model_id: str
    enabled_platforms: List[str]
    percentage_override: Optional[Decimal] = None
    platform_percentages: Dict[str, Decimal] = {}
    min_quota_override: Optional[Decimal] = None
    group_percentage: Optional[Decimal] = None
    effective_percentage: Decimal


class ValueItem(BaseModel):
    platform_id: str
    value: Decimal = Field(..., ge=0)


class ValuesSaveRequest(BaseModel):
    model_id: Optional[str] = None
    values: List[ValueItem] = Field(..., min_length=1)


class ValueResponse(BaseModel):
    platform_id: str
    value: Decimal
    period_date: date
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ValuesResponse(BaseModel):
    model_id: str
    period_date: date
    period_type: str
    values: List[ValueResponse]
    frozen_platforms: List[str] = []


class HistoryResponse(BaseModel):
    platform_id: str
    period_date: date
    period_type: str
    value: Decimal
    usd_bruto: Decimal
    usd_modelo: Decimal
    cop_modelo: Decimal
    percentage: Decimal
    rate_usd_cop: Decimal
    archived_at: datetime

    model_config = ConfigDict(from_attributes=True)
