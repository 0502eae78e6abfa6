"""
Pydantic schemas for advance requests and their review.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from studio_admin.advances.models import AdvanceStatus, PayoutMethod


class PayoutDetails(BaseModel):
    beneficiary_name: Optional[str] = Field(default=None, max_length=150)
    phone_number: Optional[str] = Field(default=None, max_length=20)
    account_holder: Optional[str] = Field(default=None, max_length=150)
    bank: Optional[str] = Field(default=None, max_length=100)
    account_type: Optional[str] = Field(default=None, max_length=20)
    account_number: Optional[str] = Field(default=None, max_length=30)
    holder_document: Optional[str] = Field(default=None, max_length=20)


WALLET_FIELDS = ("beneficiary_name", "phone_number")
BANK_FIELDS = ("account_holder", "bank", "account_type", "account_number", "holder_document")


class AdvanceRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Requested amount (COP)")
    payout_method: PayoutMethod
    payout: PayoutDetails = Field(default_factory=PayoutDetails)

    @model_validator(mode="after")
    def check_payout_fields(self):
        required = BANK_FIELDS if self.payout_method == PayoutMethod.BANK_ACCOUNT else WALLET_FIELDS
        missing = [name for name in required if not getattr(self.payout, name)]
        if missing:
            raise ValueError(f"Missing payout fields for {self.payout_method.value}: {', '.join(missing)}")
        return self


class AdvanceReview(BaseModel):
    comment: Optional[str] = Field(default=None, max_length=500)


class AdvanceResponse(BaseModel):
    id: str
    model_id: str
    period_date: date
    period_type: str
    amount: Decimal
    available_amount: Decimal
    payout_method: PayoutMethod
    status: AdvanceStatus
    admin_comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
