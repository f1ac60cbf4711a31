from pydantic import BaseModel, Field
from typing import Optional, Any, Dict
from datetime import date, datetime
from decimal import Decimal


class GridEntryBase(BaseModel):
    provider: str
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None
    commission_rate: Decimal = Field(..., ge=0, le=100)  # percentage
    reward_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    valid_from: date
    valid_to: Optional[date] = None
    is_active: bool = True

    # Motor
    vehicle_make: Optional[str] = None
    fuel_type: Optional[str] = None
    # Health
    sum_insured_min: Optional[Decimal] = Field(None, ge=0)
    sum_insured_max: Optional[Decimal] = Field(None, ge=0)
    # Life
    premium_start_price: Optional[Decimal] = Field(None, ge=0)
    premium_end_price: Optional[Decimal] = Field(None, ge=0)
    ppt: Optional[int] = Field(None, ge=0)
    pt: Optional[int] = Field(None, ge=0)


class GridEntryCreate(GridEntryBase):
    pass


class GridEntryUpdate(BaseModel):
    """Edit payload. provider and commission_rate are checked by the service."""
    provider: Optional[str] = None
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    reward_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: Optional[bool] = None
    vehicle_make: Optional[str] = None
    fuel_type: Optional[str] = None
    sum_insured_min: Optional[Decimal] = Field(None, ge=0)
    sum_insured_max: Optional[Decimal] = Field(None, ge=0)
    premium_start_price: Optional[Decimal] = Field(None, ge=0)
    premium_end_price: Optional[Decimal] = Field(None, ge=0)
    ppt: Optional[int] = Field(None, ge=0)
    pt: Optional[int] = Field(None, ge=0)


class GridEntryInDB(GridEntryBase):
    id: int
    org_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GridAuditLogInDB(BaseModel):
    id: int
    grid_type: str
    grid_id: int
    action: str
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    changed_by: Optional[str] = None
    changed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
