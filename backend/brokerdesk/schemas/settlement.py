from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal


class SettlementCreate(BaseModel):
    insurer: str
    period: str = Field(..., pattern=r"^\d{4}-\d{2}$")  # "2024-01"
    received: Decimal
    expected: Optional[Decimal] = None  # computed from the revenue ledger when omitted
    notes: Optional[str] = None


class SettlementTransition(BaseModel):
    version_id: Optional[int] = None
    note: Optional[str] = None


class SettlementResubmit(SettlementTransition):
    received: Decimal
    expected: Optional[Decimal] = None


class SettlementEventInDB(BaseModel):
    id: int
    action: str
    from_status: Optional[str] = None
    to_status: str
    received: Optional[Decimal] = None
    variance: Optional[Decimal] = None
    actor: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SettlementInDB(BaseModel):
    id: int
    period: str
    insurer: str
    expected: Decimal
    received: Decimal
    variance: Decimal
    status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    statement_filename: Optional[str] = None
    statement_rows: Optional[int] = 0
    statement_error_rows: Optional[int] = 0
    notes: Optional[str] = None
    version_id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReconcileOut(BaseModel):
    variance: Decimal
    suggested_status: str
    within_tolerance: bool


class StatementError(BaseModel):
    row: int
    policy_number: Optional[str] = None
    error: str


class StatementUploadOut(BaseModel):
    settlement: SettlementInDB
    rows_parsed: int
    errors: List[StatementError]
