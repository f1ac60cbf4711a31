from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean
from sqlalchemy.sql import func
from brokerdesk.core.database import Base


class BusinessBonusSlab(Base):
    """Insurer bonus earned once the gross written premium to date reaches a slab"""
    __tablename__ = "business_bonus_slabs"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    # Eligibility (null = any)
    product_type = Column(String, nullable=True, index=True)
    provider = Column(String, nullable=True)

    min_gwp = Column(Numeric(16, 2), nullable=False)
    max_gwp = Column(Numeric(16, 2), nullable=True)  # null = no limit
    bonus_rate = Column(Numeric(5, 2), nullable=False)  # percentage points

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class VolumeTier(Base):
    """Extra rate for the sourcing party's monthly business volume"""
    __tablename__ = "volume_tiers"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    tier_name = Column(String, nullable=False)
    product_type = Column(String, nullable=True, index=True)  # null = any

    min_business = Column(Numeric(16, 2), nullable=False)  # monthly premium sourced
    max_business = Column(Numeric(16, 2), nullable=True)  # null = no limit
    extra_bonus = Column(Numeric(5, 2), nullable=False)  # percentage points

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
