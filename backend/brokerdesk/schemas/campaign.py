from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from brokerdesk.models.grid import ProductType


class CampaignBase(BaseModel):
    campaign_name: str
    bonus_rate: Decimal = Field(..., ge=0, le=100)
    valid_from: date
    valid_to: date  # inclusive
    product_type: Optional[ProductType] = None  # None = every line of business
    provider: Optional[str] = None
    is_exclusive: bool = False
    description: Optional[str] = None


class CampaignCreate(CampaignBase):
    pass


class CampaignUpdate(BaseModel):
    campaign_name: Optional[str] = None
    bonus_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    product_type: Optional[ProductType] = None
    provider: Optional[str] = None
    is_exclusive: Optional[bool] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None


class CampaignInDB(CampaignBase):
    id: int
    is_active: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
