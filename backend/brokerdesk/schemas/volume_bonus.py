from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from brokerdesk.models.grid import ProductType


class BusinessBonusSlabCreate(BaseModel):
    min_gwp: Decimal = Field(..., ge=0)
    max_gwp: Optional[Decimal] = Field(None, ge=0)  # None = no upper limit
    bonus_rate: Decimal = Field(..., ge=0, le=100)
    product_type: Optional[ProductType] = None
    provider: Optional[str] = None


class BusinessBonusSlabInDB(BusinessBonusSlabCreate):
    id: int
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VolumeTierCreate(BaseModel):
    tier_name: str
    min_business: Decimal = Field(..., ge=0)
    max_business: Optional[Decimal] = Field(None, ge=0)
    extra_bonus: Decimal = Field(..., ge=0, le=100)
    product_type: Optional[ProductType] = None


class VolumeTierInDB(VolumeTierCreate):
    id: int
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
