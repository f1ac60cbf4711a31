from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime
from sqlalchemy.sql import func
from brokerdesk.core.database import Base
import enum


class AlertSeverity(str, enum.Enum):
    MEDIUM = "medium"
    HIGH = "high"


class ComplianceRule(Base):
    """Regulatory (IRDAI) commission cap per product category"""
    __tablename__ = "compliance_rules"

    id = Column(Integer, primary_key=True, index=True)

    # Null org_id = regulator-wide cap, shared by every tenant
    org_id = Column(String, nullable=True, index=True)
    product_category = Column(String, nullable=False, index=True)  # motor / health / life
    channel = Column(String, nullable=True)
    max_allowed_rate = Column(Numeric(5, 2), nullable=False)  # percentage

    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ComplianceAlert(Base):
    """A cap breach seen during a commission calculation.

    The calculation still completes with the capped rate; the alert is what
    compliance dashboards read.
    """
    __tablename__ = "compliance_alerts"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    policy_id = Column(Integer, nullable=True, index=True)
    policy_number = Column(String, nullable=True)
    provider_name = Column(String, nullable=True)
    product_name = Column(String, nullable=True)

    current_rate = Column(Numeric(6, 2), nullable=False)  # pre-cap total
    max_allowed = Column(Numeric(5, 2), nullable=False)
    excess_amount = Column(Numeric(6, 2), nullable=False)
    severity = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
