import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from brokerdesk.core.cache import get_cache
from brokerdesk.models.grid import ProductType
from brokerdesk.models.policy import Policy
from brokerdesk.models.revenue import PolicyCommission
from brokerdesk.services.batch import BatchResult
from brokerdesk.services.campaign_bonus import CampaignService
from brokerdesk.services.commission_split import (
    SplitParties, SplitResult, split_commission, to_money, CENT, HUNDRED,
)
from brokerdesk.services.compliance import ComplianceGuard, CapBreach
from brokerdesk.services.errors import RateNotFoundError, AmbiguousRateError
from brokerdesk.services.rate_resolver import (
    RateResolver, MotorContext, HealthContext, LifeContext, PolicyContext, context_for_policy,
)
from brokerdesk.services.volume_bonus import VolumeBonusService

logger = logging.getLogger(__name__)


def _rate(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


@dataclass
class CommissionBreakdown:
    matched_entry_id: str
    base_rate: Decimal
    reward_rate: Decimal
    bonus_rate: Decimal  # campaign + business + tier
    business_bonus_rate: Decimal
    tier_bonus_rate: Decimal
    pre_cap_rate: Decimal
    total_rate: Decimal  # after the compliance cap
    max_allowed: Decimal
    premium: Decimal
    insurer_commission: Decimal
    alert: Optional[CapBreach] = None
    split: Optional[SplitResult] = None
    tier_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["compliance_status"] = "Within Limit" if self.alert is None else "Exceeds Limit"
        if self.alert is not None:
            data["alert"]["severity"] = self.alert.severity.value
        return data


def build_context(product_type, evaluation_date: date, data: Dict[str, Any]) -> PolicyContext:
    """Resolver context from loose request fields"""
    product_type = ProductType(product_type)
    common = dict(
        evaluation_date=evaluation_date,
        product_sub_type=data.get("product_sub_type"),
        plan_name=data.get("plan_name"),
    )
    if product_type == ProductType.MOTOR:
        return MotorContext(vehicle_make=data.get("vehicle_make"), fuel_type=data.get("fuel_type"), **common)
    if product_type == ProductType.HEALTH:
        si = data.get("sum_insured")
        return HealthContext(sum_insured=Decimal(str(si)) if si is not None else None, **common)
    premium = data.get("premium")
    return LifeContext(
        premium=Decimal(str(premium)) if premium is not None else None,
        ppt=data.get("ppt"),
        pt=data.get("pt"),
        **common,
    )


class CommissionCalculationService:
    """
    Per-policy commission pipeline:
    1. Base + reward rate from the payout grid
    2. Campaign, business (GWP slab) and tier bonuses on top
    3. IRDAI cap on the total (breach = alert, calculation continues)
    4. Insurer commission = premium x capped rate
    5. Optional split across agent / employee / MISP / broker
    """

    def __init__(self, db: Session):
        self.db = db
        self.resolver = RateResolver(db)
        self.campaigns = CampaignService(db)
        self.compliance = ComplianceGuard(db)
        self.volume = VolumeBonusService(db)

    def calculate(
        self,
        org_id: str,
        product_type,
        provider: str,
        context: PolicyContext,
        premium,
        source_type: Optional[str] = None,
        parties: Optional[SplitParties] = None,
        channel: Optional[str] = None,
        gwp_to_date=None,
        business_volume=None,
    ) -> CommissionBreakdown:
        """
        ``channel`` selects channel-specific caps and defaults to ``source_type``.
        ``gwp_to_date`` and ``business_volume`` feed the business and tier
        bonuses; either bonus is 0 when its volume is not given.
        """
        product_type = ProductType(product_type)
        resolution = self.resolver.resolve(org_id, product_type, provider, context)
        campaign_bonus = self.campaigns.bonus_for(org_id, resolution, context.evaluation_date, product_type, provider)
        volume = self.volume.bonus_for(
            org_id, product_type, provider, gwp_to_date=gwp_to_date, business=business_volume,
        )
        bonus = campaign_bonus + volume.total

        pre_cap = resolution.rate + resolution.reward_rate + bonus
        result = self.compliance.check(
            org_id, pre_cap, product_type.value, context.evaluation_date, channel=channel or source_type,
        )

        premium = to_money(premium)
        insurer_commission = to_money(premium * result.capped_rate / HUNDRED)

        split = None
        if source_type is not None:
            split = split_commission(insurer_commission, source_type, parties)

        return CommissionBreakdown(
            matched_entry_id=resolution.matched_entry_id,
            base_rate=_rate(resolution.rate),
            reward_rate=_rate(resolution.reward_rate),
            bonus_rate=_rate(bonus),
            business_bonus_rate=_rate(volume.business_bonus_rate),
            tier_bonus_rate=_rate(volume.tier_bonus_rate),
            pre_cap_rate=_rate(pre_cap),
            total_rate=_rate(result.capped_rate),
            max_allowed=_rate(result.max_allowed),
            premium=premium,
            insurer_commission=insurer_commission,
            alert=result.alert,
            split=split,
            tier_name=volume.tier_name,
        )

    def calculate_for_policy(self, policy: Policy, with_split: bool = True) -> CommissionBreakdown:
        return self.calculate(
            policy.org_id,
            policy.product_type,
            policy.provider,
            context_for_policy(policy),
            policy.premium,
            source_type=policy.source_type if with_split else None,
            parties=SplitParties.from_policy(policy) if with_split else None,
            channel=policy.source_type,
            gwp_to_date=self.volume.gwp_to_date(policy.org_id, policy.provider, policy.product_type, policy.issue_date),
            business_volume=self.volume.party_business(policy),
        )

    # ── Sync comprehensive commissions ──────────────────────────────

    def sync_comprehensive_commissions(self, org_id: str) -> BatchResult:
        """
        Recompute PolicyCommission for every policy of a tenant.

        Unresolvable policies are kept with zero rates and flagged for manual
        review. Unchanged results are left untouched, so re-running is a no-op.
        Everything commits once at the end.
        """
        result = BatchResult()
        policies = (
            self.db.query(Policy)
            .filter(Policy.org_id == org_id)
            .order_by(Policy.id)
            .all()
        )
        existing = {
            pc.policy_id: pc
            for pc in self.db.query(PolicyCommission).filter(PolicyCommission.org_id == org_id).all()
        }
        changed = 0

        for row, policy in enumerate(policies, start=1):
            alert = None
            try:
                breakdown = self.calculate_for_policy(policy, with_split=False)
                values = {
                    "matched_entry_id": breakdown.matched_entry_id,
                    "base_rate": breakdown.base_rate,
                    "reward_rate": breakdown.reward_rate,
                    "bonus_rate": breakdown.bonus_rate,
                    "pre_cap_rate": breakdown.pre_cap_rate,
                    "total_rate": breakdown.total_rate,
                    "premium": breakdown.premium,
                    "insurer_commission": breakdown.insurer_commission,
                    "needs_manual_review": False,
                    "error_message": None,
                }
                alert = breakdown.alert
                result.ok()
            except (RateNotFoundError, AmbiguousRateError, ValueError) as e:
                logger.warning(f"Policy {policy.policy_number}: {e}")
                values = {
                    "matched_entry_id": None,
                    "base_rate": _rate(0),
                    "reward_rate": _rate(0),
                    "bonus_rate": _rate(0),
                    "pre_cap_rate": _rate(0),
                    "total_rate": _rate(0),
                    "premium": to_money(policy.premium),
                    "insurer_commission": to_money(0),
                    "needs_manual_review": True,
                    "error_message": str(e),
                }
                result.fail(row, policy.policy_number, str(e))

            pc = existing.get(policy.id)
            if pc is None:
                pc = PolicyCommission(org_id=org_id, policy_id=policy.id)
                self.db.add(pc)
                existing[policy.id] = pc
            elif not self._differs(pc, values):
                continue

            for key, value in values.items():
                setattr(pc, key, value)
            pc.calculated_at = datetime.now(timezone.utc)
            changed += 1

            # One alert per new or changed breaching calculation
            self.compliance.record_alert(org_id, alert, policy)

        self.db.commit()
        get_cache().invalidate_tenant(org_id)
        logger.info(
            f"Comprehensive commissions synced for org {org_id}: "
            f"{result.successful}/{result.total} resolved, {changed} changed"
        )
        return result

    @staticmethod
    def _differs(pc: PolicyCommission, values: Dict[str, Any]) -> bool:
        for key, value in values.items():
            current = getattr(pc, key)
            if isinstance(value, Decimal):
                if current is None or Decimal(str(current)).quantize(CENT) != value:
                    return True
            elif current != value:
                return True
        return False
