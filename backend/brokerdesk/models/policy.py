from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from brokerdesk.core.database import Base
import enum


class SourceType(str, enum.Enum):
    AGENT = "agent"
    EMPLOYEE = "employee"
    MISP = "misp"
    DIRECT = "direct"


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)

    # Share of insurer commission when the employee sources the policy
    incentive_share_pct = Column(Numeric(5, 2), default=0, nullable=False)
    # Share of insurer commission when an agent/MISP reporting to them sources it
    override_pct = Column(Numeric(5, 2), default=0, nullable=False)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)

    commission_share_pct = Column(Numeric(5, 2), default=0, nullable=False)
    reporting_employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    reporting_employee = relationship("Employee", foreign_keys=[reporting_employee_id])


class Misp(Base):
    """Motor Insurance Service Provider (dealer channel)"""
    __tablename__ = "misps"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)

    commission_share_pct = Column(Numeric(5, 2), default=0, nullable=False)
    reporting_employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    reporting_employee = relationship("Employee", foreign_keys=[reporting_employee_id])


class Policy(Base):
    """Normalized policy row as handed over by the import tooling"""
    __tablename__ = "policies"
    __table_args__ = (
        UniqueConstraint("org_id", "policy_number", name="uq_policies_org_policy_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    policy_number = Column(String, nullable=False, index=True)
    customer_name = Column(String, nullable=True)
    branch_name = Column(String, nullable=True, index=True)

    provider = Column(String, nullable=False, index=True)
    product_type = Column(String, nullable=False, index=True)  # motor / health / life
    product_sub_type = Column(String, nullable=True)
    plan_name = Column(String, nullable=True)

    premium = Column(Numeric(14, 2), nullable=False)
    issue_date = Column(Date, nullable=False)

    # Sourcing channel
    source_type = Column(String, default=SourceType.DIRECT.value, nullable=False)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    misp_id = Column(Integer, ForeignKey("misps.id"), nullable=True, index=True)

    # Motor discriminators
    vehicle_make = Column(String, nullable=True)
    fuel_type = Column(String, nullable=True)
    # Health discriminators
    sum_insured = Column(Numeric(14, 2), nullable=True)
    # Life discriminators
    ppt = Column(Integer, nullable=True)
    pt = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    agent = relationship("Agent", foreign_keys=[agent_id])
    employee = relationship("Employee", foreign_keys=[employee_id])
    misp = relationship("Misp", foreign_keys=[misp_id])
