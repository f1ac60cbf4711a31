"""Volume-based bonuses layered on the grid rate before the cap.

Business bonus: every active slab whose GWP band contains the insurer's gross
written premium for the financial year to date adds its rate.
Tier bonus: the sourcing party's business for the month picks one tier (the
highest band it reaches) and that tier's extra rate is added.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from brokerdesk.core.cache import get_cache
from brokerdesk.models.grid import ProductType
from brokerdesk.models.policy import Policy, SourceType
from brokerdesk.models.volume_bonus import BusinessBonusSlab, VolumeTier

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Sourcing channel -> Policy column identifying the party whose business counts
_PARTY_COLUMNS = {
    SourceType.AGENT.value: Policy.agent_id,
    SourceType.EMPLOYEE.value: Policy.employee_id,
    SourceType.MISP.value: Policy.misp_id,
}


@dataclass
class VolumeBonus:
    business_bonus_rate: Decimal = ZERO
    tier_bonus_rate: Decimal = ZERO
    tier_name: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.business_bonus_rate + self.tier_bonus_rate


def financial_year_start(on: date) -> date:
    """April 1 of the financial year containing ``on``"""
    return date(on.year if on.month >= 4 else on.year - 1, 4, 1)


def _in_band(value: Decimal, low, high) -> bool:
    if value < Decimal(str(low)):
        return False
    return high is None or value <= Decimal(str(high))


def _eligible(row, product_type: str, provider: Optional[str] = None) -> bool:
    if not row.is_active:
        return False
    if row.product_type and row.product_type.lower() != product_type:
        return False
    provider_filter = getattr(row, "provider", None)
    if provider_filter and provider_filter.strip().lower() != (provider or "").strip().lower():
        return False
    return True


def business_bonus(slabs: Iterable, gwp_to_date, product_type, provider: Optional[str] = None) -> Decimal:
    if gwp_to_date is None:
        return ZERO
    gwp = Decimal(str(gwp_to_date))
    product_type = ProductType(product_type).value
    return sum(
        (
            Decimal(str(s.bonus_rate))
            for s in slabs
            if _eligible(s, product_type, provider) and _in_band(gwp, s.min_gwp, s.max_gwp)
        ),
        ZERO,
    )


def select_tier(tiers: Iterable, business, product_type):
    """Highest tier whose band contains ``business``, or None"""
    if business is None:
        return None
    business = Decimal(str(business))
    product_type = ProductType(product_type).value
    reached = [
        t for t in tiers
        if _eligible(t, product_type) and _in_band(business, t.min_business, t.max_business)
    ]
    if not reached:
        return None
    return sorted(reached, key=lambda t: (-Decimal(str(t.min_business)), t.id or 0))[0]


def volume_bonus(slabs: Iterable, tiers: Iterable, product_type, provider, gwp_to_date=None, business=None) -> VolumeBonus:
    tier = select_tier(tiers, business, product_type)
    return VolumeBonus(
        business_bonus_rate=business_bonus(slabs, gwp_to_date, product_type, provider),
        tier_bonus_rate=Decimal(str(tier.extra_bonus)) if tier is not None else ZERO,
        tier_name=tier.tier_name if tier is not None else None,
    )


class VolumeBonusService:
    """Volume lookups from the policy book plus slab and tier admin"""

    def __init__(self, db: Session):
        self.db = db

    # ── Volumes ─────────────────────────────────────────────────────

    def gwp_to_date(self, org_id: str, provider: str, product_type, on: date) -> Decimal:
        """Premium written with the insurer for the product since the financial year began"""
        total = (
            self.db.query(func.coalesce(func.sum(Policy.premium), 0))
            .filter(
                Policy.org_id == org_id,
                func.lower(Policy.provider) == (provider or "").strip().lower(),
                Policy.product_type == ProductType(product_type).value,
                Policy.issue_date >= financial_year_start(on),
                Policy.issue_date <= on,
            )
            .scalar()
        )
        return Decimal(str(total))

    def party_business(self, policy: Policy) -> Optional[Decimal]:
        """Premium sourced by the policy's agent/employee/MISP in its issue month, up to the issue date.

        Direct business has no party and earns no tier bonus.
        """
        column = _PARTY_COLUMNS.get(policy.source_type)
        party_id = getattr(policy, column.key) if column is not None else None
        if party_id is None:
            return None
        total = (
            self.db.query(func.coalesce(func.sum(Policy.premium), 0))
            .filter(
                Policy.org_id == policy.org_id,
                Policy.source_type == policy.source_type,
                column == party_id,
                Policy.issue_date >= policy.issue_date.replace(day=1),
                Policy.issue_date <= policy.issue_date,
            )
            .scalar()
        )
        return Decimal(str(total))

    def bonus_for(self, org_id: str, product_type, provider: str, gwp_to_date=None, business=None) -> VolumeBonus:
        if gwp_to_date is None and business is None:
            return VolumeBonus()
        return volume_bonus(
            self.list_slabs(org_id) if gwp_to_date is not None else [],
            self.list_tiers(org_id) if business is not None else [],
            product_type,
            provider,
            gwp_to_date=gwp_to_date,
            business=business,
        )

    # ── Slab and tier admin ─────────────────────────────────────────

    @staticmethod
    def _validate_band(rate, low, high, label: str):
        if rate is None or Decimal(str(rate)) < 0:
            raise ValueError(f"{label} rate cannot be negative")
        if low is None or Decimal(str(low)) < 0:
            raise ValueError(f"{label} lower bound cannot be negative")
        if high is not None and Decimal(str(high)) < Decimal(str(low)):
            raise ValueError(f"{label} upper bound is below the lower bound")

    def list_slabs(self, org_id: str, include_inactive: bool = False) -> List[BusinessBonusSlab]:
        query = self.db.query(BusinessBonusSlab).filter(BusinessBonusSlab.org_id == org_id)
        if not include_inactive:
            query = query.filter(BusinessBonusSlab.is_active == True)
        return query.order_by(BusinessBonusSlab.min_gwp, BusinessBonusSlab.id).all()

    def create_slab(self, org_id: str, data: dict) -> BusinessBonusSlab:
        self._validate_band(data.get("bonus_rate"), data.get("min_gwp"), data.get("max_gwp"), "Business bonus")
        if data.get("product_type"):
            data["product_type"] = ProductType(data["product_type"]).value
        slab = BusinessBonusSlab(org_id=org_id, **data)
        self.db.add(slab)
        self.db.commit()
        self.db.refresh(slab)
        get_cache().invalidate_tenant(org_id)
        logger.info(f"Business bonus slab from GWP {slab.min_gwp} created for org {org_id}: +{slab.bonus_rate}%")
        return slab

    def deactivate_slab(self, org_id: str, slab_id: int) -> BusinessBonusSlab:
        slab = (
            self.db.query(BusinessBonusSlab)
            .filter(BusinessBonusSlab.id == slab_id, BusinessBonusSlab.org_id == org_id)
            .first()
        )
        if not slab:
            raise ValueError("Business bonus slab not found")
        slab.is_active = False
        self.db.commit()
        self.db.refresh(slab)
        get_cache().invalidate_tenant(org_id)
        return slab

    def list_tiers(self, org_id: str, include_inactive: bool = False) -> List[VolumeTier]:
        query = self.db.query(VolumeTier).filter(VolumeTier.org_id == org_id)
        if not include_inactive:
            query = query.filter(VolumeTier.is_active == True)
        return query.order_by(VolumeTier.min_business, VolumeTier.id).all()

    def create_tier(self, org_id: str, data: dict) -> VolumeTier:
        self._validate_band(data.get("extra_bonus"), data.get("min_business"), data.get("max_business"), "Tier")
        if data.get("product_type"):
            data["product_type"] = ProductType(data["product_type"]).value
        tier = VolumeTier(org_id=org_id, **data)
        self.db.add(tier)
        self.db.commit()
        self.db.refresh(tier)
        get_cache().invalidate_tenant(org_id)
        logger.info(f"Tier '{tier.tier_name}' created for org {org_id}: +{tier.extra_bonus}%")
        return tier

    def deactivate_tier(self, org_id: str, tier_id: int) -> VolumeTier:
        tier = (
            self.db.query(VolumeTier)
            .filter(VolumeTier.id == tier_id, VolumeTier.org_id == org_id)
            .first()
        )
        if not tier:
            raise ValueError("Tier not found")
        tier.is_active = False
        self.db.commit()
        self.db.refresh(tier)
        get_cache().invalidate_tenant(org_id)
        return tier
