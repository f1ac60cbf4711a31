"""Campaign bonus selection and campaign admin.

Stacking rule: every qualifying non-exclusive campaign adds its bonus. If any
exclusive campaign qualifies, the single highest exclusive one applies on its
own and nothing else is added.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from brokerdesk.core.cache import get_cache
from brokerdesk.models.campaign import CampaignBonus
from brokerdesk.models.grid import ProductType

logger = logging.getLogger(__name__)


@dataclass
class BonusSelection:
    bonus_rate: Decimal = Decimal("0")
    campaign_ids: List[int] = field(default_factory=list)
    exclusive: bool = False


def _matches(campaign, policy_date: date, product_type: str, provider: Optional[str]) -> bool:
    if not campaign.is_active:
        return False
    if policy_date < campaign.valid_from or policy_date > campaign.valid_to:
        return False
    if campaign.product_type and campaign.product_type.lower() != (product_type or "").lower():
        return False
    if campaign.provider and campaign.provider.strip().lower() != (provider or "").strip().lower():
        return False
    return True


def select_campaigns(
    campaigns: Iterable,
    policy_date: date,
    product_type,
    provider: Optional[str] = None,
) -> BonusSelection:
    product_type = ProductType(product_type).value
    qualifying = [c for c in campaigns if _matches(c, policy_date, product_type, provider)]
    if not qualifying:
        return BonusSelection()

    exclusive = [c for c in qualifying if c.is_exclusive]
    if exclusive:
        # Highest bonus wins; ties go to the earliest-starting campaign, then lowest id
        best = sorted(exclusive, key=lambda c: (-Decimal(str(c.bonus_rate)), c.valid_from, c.id or 0))[0]
        return BonusSelection(Decimal(str(best.bonus_rate)), [best.id], exclusive=True)

    total = sum((Decimal(str(c.bonus_rate)) for c in qualifying), Decimal("0"))
    return BonusSelection(total, [c.id for c in qualifying])


def apply_campaign_bonus(
    base_resolution,
    policy_date: date,
    product_type,
    provider: Optional[str] = None,
    campaigns: Iterable = (),
) -> Decimal:
    """Bonus percentage to add on top of the resolved grid rate (0 when none)."""
    selection = select_campaigns(campaigns, policy_date, product_type, provider)
    if selection.campaign_ids:
        logger.debug(
            f"Campaigns {selection.campaign_ids} add {selection.bonus_rate}% "
            f"on {getattr(base_resolution, 'matched_entry_id', None)}"
        )
    return selection.bonus_rate


class CampaignService:
    """Campaign CRUD plus loading the campaigns a calculation can see."""

    def __init__(self, db: Session):
        self.db = db

    def active_campaigns(self, org_id: str, on: date) -> List[CampaignBonus]:
        return (
            self.db.query(CampaignBonus)
            .filter(
                CampaignBonus.org_id == org_id,
                CampaignBonus.is_active == True,
                CampaignBonus.valid_from <= on,
                CampaignBonus.valid_to >= on,
            )
            .all()
        )

    def bonus_for(self, org_id: str, base_resolution, policy_date: date, product_type, provider: str) -> Decimal:
        return apply_campaign_bonus(
            base_resolution,
            policy_date,
            product_type,
            provider,
            campaigns=self.active_campaigns(org_id, policy_date),
        )

    def list_campaigns(self, org_id: str, include_inactive: bool = False) -> List[CampaignBonus]:
        query = self.db.query(CampaignBonus).filter(CampaignBonus.org_id == org_id)
        if not include_inactive:
            query = query.filter(CampaignBonus.is_active == True)
        return query.order_by(CampaignBonus.valid_from.desc(), CampaignBonus.id).all()

    def upcoming(self, org_id: str, today: Optional[date] = None) -> List[CampaignBonus]:
        """Active campaigns that have not ended yet"""
        today = today or date.today()
        return (
            self.db.query(CampaignBonus)
            .filter(
                CampaignBonus.org_id == org_id,
                CampaignBonus.is_active == True,
                CampaignBonus.valid_to >= today,
            )
            .order_by(CampaignBonus.valid_from)
            .all()
        )

    def get(self, org_id: str, campaign_id: int) -> CampaignBonus:
        campaign = (
            self.db.query(CampaignBonus)
            .filter(CampaignBonus.id == campaign_id, CampaignBonus.org_id == org_id)
            .first()
        )
        if not campaign:
            raise ValueError("Campaign not found")
        return campaign

    @staticmethod
    def _validate(bonus_rate, valid_from: date, valid_to: date):
        if bonus_rate is None or Decimal(str(bonus_rate)) < 0:
            raise ValueError("Campaign bonus rate cannot be negative")
        if valid_to < valid_from:
            raise ValueError("Campaign valid_to is before valid_from")

    def create(self, org_id: str, data: dict, created_by: Optional[str] = None) -> CampaignBonus:
        self._validate(data.get("bonus_rate"), data["valid_from"], data["valid_to"])
        if data.get("product_type"):
            data["product_type"] = ProductType(data["product_type"]).value
        campaign = CampaignBonus(org_id=org_id, created_by=created_by, **data)
        self.db.add(campaign)
        self.db.commit()
        self.db.refresh(campaign)
        get_cache().invalidate_tenant(org_id)
        logger.info(f"Campaign '{campaign.campaign_name}' created for org {org_id}: +{campaign.bonus_rate}%")
        return campaign

    def update(self, org_id: str, campaign_id: int, data: dict) -> CampaignBonus:
        campaign = self.get(org_id, campaign_id)
        bonus = data.get("bonus_rate", campaign.bonus_rate)
        valid_from = data.get("valid_from", campaign.valid_from)
        valid_to = data.get("valid_to", campaign.valid_to)
        self._validate(bonus, valid_from, valid_to)
        if data.get("product_type"):
            data["product_type"] = ProductType(data["product_type"]).value
        for key, value in data.items():
            setattr(campaign, key, value)
        campaign.updated_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(campaign)
        get_cache().invalidate_tenant(org_id)
        return campaign

    def deactivate(self, org_id: str, campaign_id: int) -> CampaignBonus:
        campaign = self.get(org_id, campaign_id)
        campaign.is_active = False
        self.db.commit()
        self.db.refresh(campaign)
        get_cache().invalidate_tenant(org_id)
        logger.info(f"Campaign {campaign_id} deactivated for org {org_id}")
        return campaign
