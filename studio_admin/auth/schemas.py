from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from studio_admin.auth.models import UserRole


class UserCreate(BaseModel):
    name: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.MODEL
    group_id: Optional[str] = None
    affiliate_studio_id: Optional[str] = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    group_id: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)


class UserLogin(BaseModel):
    email: EmailStr
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    is_active: bool
    group_id: Optional[str] = None
    affiliate_studio_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    name: str
    role: UserRole


class AffiliateCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)


class AffiliateResponse(BaseModel):
    id: str
    name: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
