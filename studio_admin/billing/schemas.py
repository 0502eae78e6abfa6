"""
Pydantic schemas for the billing summary.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class BillingFigures(BaseModel):
    usd_bruto: Decimal
    usd_modelo: Decimal
    usd_sede: Decimal
    cop_modelo: Decimal
    cop_sede: Decimal
    advances_cop: Decimal
    net_cop: Decimal


class ModelBilling(BillingFigures):
    model_id: str
    name: str
    username: str
    source: str


class BillingTotals(BillingFigures):
    total_models: int


class BillingSummaryResponse(BaseModel):
    period_date: date
    period_type: str
    group_id: Optional[str] = None
    models: List[ModelBilling]
    summary: BillingTotals
