from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import date, datetime
from decimal import Decimal
from brokerdesk.models.grid import ProductType
from brokerdesk.models.policy import SourceType


class CommissionCalculationRequest(BaseModel):
    """Ad-hoc commission preview; nothing is persisted."""
    product_type: ProductType
    provider: str
    premium: Decimal = Field(..., ge=0)
    evaluation_date: Optional[date] = None  # defaults to today
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None

    vehicle_make: Optional[str] = None
    fuel_type: Optional[str] = None
    sum_insured: Optional[Decimal] = None
    ppt: Optional[int] = None
    pt: Optional[int] = None

    # Optional split preview
    source_type: Optional[SourceType] = None
    agent_share_pct: Decimal = Field(Decimal("0"), ge=0)
    misp_share_pct: Decimal = Field(Decimal("0"), ge=0)
    employee_incentive_pct: Decimal = Field(Decimal("0"), ge=0)
    reporting_override_pct: Optional[Decimal] = Field(None, ge=0)

    # Volume inputs for the business (GWP slab) and tier bonuses
    gwp_to_date: Optional[Decimal] = Field(None, ge=0)
    business_volume: Optional[Decimal] = Field(None, ge=0)


class CommissionActionRequest(BaseModel):
    action: Literal["GET_DASHBOARD_DATA", "GET_COMPLIANCE_ALERTS", "CALCULATE_COMMISSION"]
    tenantId: Optional[str] = None
    calculation: Optional[CommissionCalculationRequest] = None


class PolicyCommissionInDB(BaseModel):
    id: int
    policy_id: int
    matched_entry_id: Optional[str] = None
    base_rate: Decimal
    reward_rate: Decimal
    bonus_rate: Decimal
    pre_cap_rate: Decimal
    total_rate: Decimal
    premium: Decimal
    insurer_commission: Decimal
    needs_manual_review: bool
    error_message: Optional[str] = None
    calculated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
