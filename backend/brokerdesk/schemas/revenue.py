from pydantic import BaseModel
from typing import Optional, List, Dict
from datetime import date, datetime
from decimal import Decimal
from brokerdesk.models.revenue import CommissionStatus


class RevenueRow(BaseModel):
    """One revenue line, whichever source it was read from"""
    id: Optional[int] = None  # None when the revenue table has not been synced yet
    policy_id: int
    revision: Optional[int] = None
    version_id: Optional[int] = None

    policy_number: str
    provider: str
    product_type: str
    source_type: str
    branch_name: Optional[str] = None
    customer_name: Optional[str] = None
    agent_name: Optional[str] = None
    employee_name: Optional[str] = None
    misp_name: Optional[str] = None
    reporting_employee_name: Optional[str] = None

    premium: Decimal
    base_rate: Decimal
    reward_rate: Decimal
    bonus_rate: Decimal
    pre_cap_rate: Decimal
    total_rate: Decimal

    insurer_commission: Decimal
    agent_commission: Decimal
    employee_commission: Decimal
    reporting_employee_commission: Decimal
    broker_share: Decimal

    commission_status: str
    calc_date: date


class RevenueList(BaseModel):
    source: str  # "report" | "table"
    count: int
    rows: List[RevenueRow]


class RevenueTotals(BaseModel):
    total_commission: Decimal
    total_insurer: Decimal
    total_agent: Decimal
    total_employee: Decimal
    total_reporting_employee: Decimal
    total_broker: Decimal
    total_premium: Decimal
    avg_base_rate: Decimal
    count: int


class RevenueBreakdown(BaseModel):
    dimension: str
    groups: Dict[str, RevenueTotals]


class RevenueStatusUpdate(BaseModel):
    commission_status: CommissionStatus
    version_id: int


class RevenueRecordInDB(RevenueRow):
    id: int
    revision: int
    version_id: int
    status_changed_by: Optional[str] = None
    status_changed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BatchError(BaseModel):
    row: int
    policy_number: Optional[str] = None
    error: str


class BatchResultOut(BaseModel):
    total: int
    successful: int
    failed: int
    errors: List[BatchError]
