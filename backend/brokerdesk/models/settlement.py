from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from brokerdesk.core.database import Base
import enum


class SettlementStatus(str, enum.Enum):
    PENDING = "Pending"
    RECONCILED = "Reconciled"  # terminal
    DISPUTED = "Disputed"      # open exception, back to Pending on resubmission


class SettlementAction(str, enum.Enum):
    CREATE = "create"
    APPROVE = "approve"
    DISPUTE = "dispute"
    RESUBMIT = "resubmit"


class Settlement(Base):
    """Insurer's periodic payment statement vs. what our records expect"""
    __tablename__ = "settlements"
    __table_args__ = (
        UniqueConstraint("org_id", "insurer", "period", name="uq_settlements_org_insurer_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String, nullable=False, index=True)

    period = Column(String, nullable=False, index=True)  # "2024-01"
    insurer = Column(String, nullable=False, index=True)

    expected = Column(Numeric(14, 2), nullable=False)  # sum of revenue records
    received = Column(Numeric(14, 2), nullable=False)  # insurer-reported
    variance = Column(Numeric(14, 2), nullable=False)  # received - expected

    status = Column(String, default=SettlementStatus.PENDING.value, nullable=False, index=True)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    # Source statement
    statement_filename = Column(String, nullable=True)
    statement_rows = Column(Integer, default=0)
    statement_error_rows = Column(Integer, default=0)

    notes = Column(Text, nullable=True)

    version_id = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    events = relationship(
        "SettlementEvent",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementEvent.id",
    )

    __mapper_args__ = {"version_id_col": version_id}


class SettlementEvent(Base):
    """Audit trail: who moved a settlement between states, and when"""
    __tablename__ = "settlement_events"

    id = Column(Integer, primary_key=True, index=True)
    settlement_id = Column(Integer, ForeignKey("settlements.id"), nullable=False, index=True)

    action = Column(String, nullable=False)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=False)

    received = Column(Numeric(14, 2), nullable=True)
    variance = Column(Numeric(14, 2), nullable=True)

    actor = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    settlement = relationship("Settlement", back_populates="events")
