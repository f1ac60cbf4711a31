from brokerdesk.models.grid import (
    ProductType, MotorPayoutGrid, HealthPayoutGrid, LifePayoutGrid,
    GridAuditLog, GRID_MODELS, GRID_DIMENSIONS,
)
from brokerdesk.models.campaign import CampaignBonus
from brokerdesk.models.volume_bonus import BusinessBonusSlab, VolumeTier
from brokerdesk.models.compliance import ComplianceRule, ComplianceAlert, AlertSeverity
from brokerdesk.models.policy import Policy, Agent, Employee, Misp, SourceType
from brokerdesk.models.revenue import PolicyCommission, RevenueRecord, CommissionStatus
from brokerdesk.models.settlement import (
    Settlement, SettlementEvent, SettlementStatus, SettlementAction,
)

__all__ = [
    "ProductType",
    "MotorPayoutGrid",
    "HealthPayoutGrid",
    "LifePayoutGrid",
    "GridAuditLog",
    "GRID_MODELS",
    "GRID_DIMENSIONS",
    "CampaignBonus",
    "BusinessBonusSlab",
    "VolumeTier",
    "ComplianceRule",
    "ComplianceAlert",
    "AlertSeverity",
    "Policy",
    "Agent",
    "Employee",
    "Misp",
    "SourceType",
    "PolicyCommission",
    "RevenueRecord",
    "CommissionStatus",
    "Settlement",
    "SettlementEvent",
    "SettlementStatus",
    "SettlementAction",
]
