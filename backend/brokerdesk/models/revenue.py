from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, Boolean, Text, UniqueConstraint
from sqlalchemy.sql import func
from brokerdesk.core.database import Base
import enum


class CommissionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    DISPUTED = "disputed"
    SUPERSEDED = "superseded"


class PolicyCommission(Base):
    """Per-policy rate resolution result ("comprehensive commission")"""
    __tablename__ = "policy_commissions"
    __table_args__ = (
        UniqueConstraint("org_id", "policy_id", name="uq_policy_commissions_org_policy"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    policy_id = Column(Integer, ForeignKey("policies.id"), nullable=False, index=True)

    matched_entry_id = Column(String, nullable=True)  # e.g. "motor:12"

    # Percentages
    base_rate = Column(Numeric(5, 2), nullable=False, default=0)
    reward_rate = Column(Numeric(5, 2), nullable=False, default=0)
    bonus_rate = Column(Numeric(5, 2), nullable=False, default=0)
    pre_cap_rate = Column(Numeric(6, 2), nullable=False, default=0)
    total_rate = Column(Numeric(5, 2), nullable=False, default=0)

    premium = Column(Numeric(14, 2), nullable=False, default=0)
    insurer_commission = Column(Numeric(14, 2), nullable=False, default=0)

    # Set when no grid entry resolved; rates stay zero until someone looks at it
    needs_manual_review = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)

    calculated_at = Column(DateTime(timezone=True), nullable=True)


class RevenueRecord(Base):
    """One commission calculation for one policy, split across parties.

    Pending rows may be refreshed by a sync. Once a row moves past pending it
    is frozen; a changed calculation is appended as the next revision.
    """
    __tablename__ = "revenue_records"
    __table_args__ = (
        UniqueConstraint("org_id", "policy_id", "revision", name="uq_revenue_records_policy_revision"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    policy_id = Column(Integer, ForeignKey("policies.id"), nullable=False, index=True)
    revision = Column(Integer, nullable=False, default=1)

    # Denormalized for reporting/export
    policy_number = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, index=True)
    product_type = Column(String, nullable=False, index=True)
    source_type = Column(String, nullable=False, index=True)
    branch_name = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    agent_name = Column(String, nullable=True)
    employee_name = Column(String, nullable=True)
    misp_name = Column(String, nullable=True)
    reporting_employee_name = Column(String, nullable=True)

    premium = Column(Numeric(14, 2), nullable=False)

    # Percentages
    base_rate = Column(Numeric(5, 2), nullable=False)
    reward_rate = Column(Numeric(5, 2), nullable=False)
    bonus_rate = Column(Numeric(5, 2), nullable=False)
    pre_cap_rate = Column(Numeric(6, 2), nullable=False)
    total_rate = Column(Numeric(5, 2), nullable=False)  # after compliance cap

    # Amounts
    insurer_commission = Column(Numeric(14, 2), nullable=False)
    agent_commission = Column(Numeric(14, 2), nullable=False, default=0)
    employee_commission = Column(Numeric(14, 2), nullable=False, default=0)
    reporting_employee_commission = Column(Numeric(14, 2), nullable=False, default=0)
    broker_share = Column(Numeric(14, 2), nullable=False, default=0)

    commission_status = Column(String, default=CommissionStatus.PENDING.value, nullable=False, index=True)
    calc_date = Column(Date, nullable=False, index=True)  # policy issue date the calculation applies to

    status_changed_by = Column(String, nullable=True)
    status_changed_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency for status writes
    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version_id}
