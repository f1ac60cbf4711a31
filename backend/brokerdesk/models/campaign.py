from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Boolean, Text
from sqlalchemy.sql import func
from brokerdesk.core.database import Base


class CampaignBonus(Base):
    """Time-bounded bonus layered on top of the grid rate.

    Expired or deactivated campaigns are kept for audit and simply stop
    qualifying.
    """
    __tablename__ = "campaign_bonuses"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    campaign_name = Column(String, nullable=False)
    bonus_rate = Column(Numeric(5, 2), nullable=False)  # percentage points, never negative

    valid_from = Column(Date, nullable=False)
    valid_to = Column(Date, nullable=False)  # inclusive

    # Eligibility (null = any)
    product_type = Column(String, nullable=True, index=True)
    provider = Column(String, nullable=True)

    # Exclusive campaigns do not stack; the highest one wins alone
    is_exclusive = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    description = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
