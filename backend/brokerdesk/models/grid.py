from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Boolean, JSON
from sqlalchemy.sql import func
from brokerdesk.core.database import Base
import enum


class ProductType(str, enum.Enum):
    MOTOR = "motor"
    HEALTH = "health"
    LIFE = "life"


class PayoutGridMixin:
    """Columns shared by every line-of-business payout grid."""

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    provider = Column(String, nullable=False, index=True)
    product_sub_type = Column(String, nullable=True)
    plan_name = Column(String, nullable=True)

    # Percentages: 10.00 = 10%
    commission_rate = Column(Numeric(5, 2), nullable=False)
    reward_rate = Column(Numeric(5, 2), default=0, nullable=False)

    valid_from = Column(Date, nullable=False)
    valid_to = Column(Date, nullable=True)  # null = open-ended
    # Entries are deactivated, never deleted, so old policies still resolve
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class MotorPayoutGrid(PayoutGridMixin, Base):
    __tablename__ = "motor_payout_grid"

    vehicle_make = Column(String, nullable=True)
    fuel_type = Column(String, nullable=True)


class HealthPayoutGrid(PayoutGridMixin, Base):
    __tablename__ = "health_payout_grid"

    sum_insured_min = Column(Numeric(14, 2), nullable=True)
    sum_insured_max = Column(Numeric(14, 2), nullable=True)


class LifePayoutGrid(PayoutGridMixin, Base):
    __tablename__ = "life_payout_grid"

    premium_start_price = Column(Numeric(14, 2), nullable=True)
    premium_end_price = Column(Numeric(14, 2), nullable=True)
    ppt = Column(Integer, nullable=True)  # premium paying term (years)
    pt = Column(Integer, nullable=True)  # policy term (years)


GRID_MODELS = {
    ProductType.MOTOR: MotorPayoutGrid,
    ProductType.HEALTH: HealthPayoutGrid,
    ProductType.LIFE: LifePayoutGrid,
}

# Product-specific columns per grid, in display order
GRID_DIMENSIONS = {
    ProductType.MOTOR: ("vehicle_make", "fuel_type"),
    ProductType.HEALTH: ("sum_insured_min", "sum_insured_max"),
    ProductType.LIFE: ("premium_start_price", "premium_end_price", "ppt", "pt"),
}


class GridAuditLog(Base):
    """Who changed which grid entry, and what it looked like before/after"""
    __tablename__ = "grid_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    grid_type = Column(String, nullable=False)  # motor / health / life
    grid_id = Column(Integer, nullable=False, index=True)
    action = Column(String, nullable=False)  # CREATE / UPDATE / DEACTIVATE

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    changed_by = Column(String, nullable=True)
    changed_at = Column(DateTime(timezone=True), server_default=func.now())
