from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from brokerdesk.models.grid import ProductType


class ComplianceRuleCreate(BaseModel):
    product_category: ProductType
    channel: Optional[str] = None
    max_allowed_rate: Decimal = Field(..., ge=0, le=100)
    effective_from: date
    effective_to: Optional[date] = None


class ComplianceRuleInDB(BaseModel):
    id: int
    org_id: Optional[str] = None  # None = regulator-wide
    product_category: str
    channel: Optional[str] = None
    max_allowed_rate: Decimal
    effective_from: date
    effective_to: Optional[date] = None

    class Config:
        from_attributes = True


class ComplianceAlertInDB(BaseModel):
    id: int
    policy_id: Optional[int] = None
    policy_number: Optional[str] = None
    provider_name: Optional[str] = None
    product_name: Optional[str] = None
    current_rate: Decimal
    max_allowed: Decimal
    excess_amount: Decimal
    severity: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
