"""IRDAI commission cap enforcement.

A breach never blocks a calculation: the rate is capped, the breach is
reported as an alert, and the pipeline carries on.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from brokerdesk.core.cache import get_cache
from brokerdesk.core.config import settings
from brokerdesk.models.compliance import ComplianceRule, ComplianceAlert, AlertSeverity
from brokerdesk.models.grid import ProductType, GRID_MODELS

logger = logging.getLogger(__name__)

# Seeded regulator-wide caps (percent of premium)
DEFAULT_IRDAI_CAPS = {
    ProductType.MOTOR: Decimal("20"),
    ProductType.HEALTH: Decimal("20"),
    ProductType.LIFE: Decimal("35"),
}


@dataclass(frozen=True)
class SeverityPolicy:
    high_excess_points: Decimal = Decimal("5")
    high_excess_ratio: Optional[Decimal] = None

    @classmethod
    def from_settings(cls) -> "SeverityPolicy":
        return cls(
            high_excess_points=settings.COMPLIANCE_HIGH_EXCESS_POINTS,
            high_excess_ratio=settings.COMPLIANCE_HIGH_EXCESS_RATIO,
        )

    def severity(self, rate: Decimal, max_allowed: Decimal) -> AlertSeverity:
        excess = rate - max_allowed
        if excess > self.high_excess_points:
            return AlertSeverity.HIGH
        if self.high_excess_ratio is not None and rate > max_allowed * self.high_excess_ratio:
            return AlertSeverity.HIGH
        return AlertSeverity.MEDIUM


@dataclass(frozen=True)
class CapBreach:
    severity: AlertSeverity
    excess_amount: Decimal
    current_rate: Decimal
    max_allowed: Decimal


@dataclass(frozen=True)
class ComplianceResult:
    capped_rate: Decimal
    max_allowed: Decimal
    alert: Optional[CapBreach] = None

    @property
    def is_compliant(self) -> bool:
        return self.alert is None


def check_compliance(
    total_rate_before_cap,
    product_category,
    max_allowed: Optional[Decimal] = None,
    severity_policy: Optional[SeverityPolicy] = None,
) -> ComplianceResult:
    """Cap a pre-cap rate at the category's maximum.

    ``max_allowed`` is the cap already looked up for ``product_category``;
    None means no rule exists and the configured default applies.
    """
    rate = Decimal(str(total_rate_before_cap))
    cap = Decimal(str(max_allowed)) if max_allowed is not None else settings.DEFAULT_COMPLIANCE_CAP
    if rate <= cap:
        return ComplianceResult(capped_rate=rate, max_allowed=cap)

    policy = severity_policy or SeverityPolicy.from_settings()
    breach = CapBreach(
        severity=policy.severity(rate, cap),
        excess_amount=rate - cap,
        current_rate=rate,
        max_allowed=cap,
    )
    logger.warning(
        f"{product_category} rate {rate}% exceeds cap {cap}% by {breach.excess_amount} "
        f"({breach.severity.value})"
    )
    return ComplianceResult(capped_rate=cap, max_allowed=cap, alert=breach)


class ComplianceGuard:
    """Cap lookup, alert persistence and IRDAI rule admin"""

    def __init__(self, db: Session, severity_policy: Optional[SeverityPolicy] = None):
        self.db = db
        self.severity_policy = severity_policy or SeverityPolicy.from_settings()

    def _rules_query(self, org_id: str, on: date):
        return self.db.query(ComplianceRule).filter(
            or_(ComplianceRule.org_id == org_id, ComplianceRule.org_id.is_(None)),
            ComplianceRule.effective_from <= on,
            or_(ComplianceRule.effective_to.is_(None), ComplianceRule.effective_to >= on),
        )

    def get_cap(
        self,
        org_id: str,
        product_category: str,
        on: Optional[date] = None,
        channel: Optional[str] = None,
    ) -> Optional[Decimal]:
        """
        Cap in force on ``on`` for a sourcing channel.

        A rule for the same channel beats a channel-less one, and a tenant
        rule beats a regulator-wide one. Rules for another channel never apply.
        """
        on = on or date.today()
        channel = str(channel).lower() if channel else None
        rules = [
            r for r in (
                self._rules_query(org_id, on)
                .filter(ComplianceRule.product_category == str(product_category).lower())
                .all()
            )
            if r.channel is None or (channel is not None and r.channel.lower() == channel)
        ]
        if not rules:
            return None
        rules.sort(key=lambda r: (r.channel is not None, r.org_id is not None, r.effective_from, r.id), reverse=True)
        return Decimal(str(rules[0].max_allowed_rate))

    def caps_by_category(self, org_id: str, on: Optional[date] = None) -> Dict[str, Decimal]:
        on = on or date.today()
        caps = {}
        for pt in ProductType:
            cap = self.get_cap(org_id, pt.value, on)
            if cap is not None:
                caps[pt.value] = cap
        return caps

    def check(
        self,
        org_id: str,
        total_rate_before_cap,
        product_category: str,
        on: Optional[date] = None,
        channel: Optional[str] = None,
    ) -> ComplianceResult:
        cap = self.get_cap(org_id, product_category, on, channel)
        return check_compliance(total_rate_before_cap, product_category, cap, self.severity_policy)

    def record_alert(self, org_id: str, breach: Optional[CapBreach], policy=None, commit: bool = False) -> Optional[ComplianceAlert]:
        """Persist one alert for a breaching calculation. No-op when compliant."""
        if breach is None:
            return None
        alert = ComplianceAlert(
            org_id=org_id,
            policy_id=getattr(policy, "id", None),
            policy_number=getattr(policy, "policy_number", None),
            provider_name=getattr(policy, "provider", None),
            product_name=getattr(policy, "plan_name", None) or getattr(policy, "product_type", None),
            current_rate=breach.current_rate,
            max_allowed=breach.max_allowed,
            excess_amount=breach.excess_amount,
            severity=breach.severity.value,
        )
        self.db.add(alert)
        if commit:
            self.db.commit()
        return alert

    def list_alerts(self, org_id: str, severity: Optional[str] = None, limit: int = 100) -> List[ComplianceAlert]:
        query = self.db.query(ComplianceAlert).filter(ComplianceAlert.org_id == org_id)
        if severity:
            query = query.filter(ComplianceAlert.severity == severity)
        return query.order_by(ComplianceAlert.created_at.desc(), ComplianceAlert.id.desc()).limit(limit).all()

    def rule_level_alerts(self, org_id: str, on: Optional[date] = None) -> List[dict]:
        """Active grid entries whose commission + reward already exceeds the cap"""
        on = on or date.today()
        caps = self.caps_by_category(org_id, on)
        alerts = []
        for product_type, model in GRID_MODELS.items():
            cap = caps.get(product_type.value)
            if cap is None:
                continue
            entries = (
                self.db.query(model)
                .filter(model.org_id == org_id, model.is_active == True)
                .order_by(model.id)
                .all()
            )
            for entry in entries:
                rate = Decimal(str(entry.commission_rate or 0)) + Decimal(str(entry.reward_rate or 0))
                if rate <= cap:
                    continue
                alerts.append({
                    "rule_id": f"{product_type.value}:{entry.id}",
                    "provider_name": entry.provider,
                    "product_name": entry.plan_name or entry.product_sub_type or product_type.value,
                    "lob_name": product_type.value,
                    "current_rate": float(rate),
                    "max_allowed": float(cap),
                    "excess_amount": float(rate - cap),
                    "severity": self.severity_policy.severity(rate, cap).value,
                })
        return alerts

    # ── IRDAI cap admin ─────────────────────────────────────────────

    def list_caps(self, org_id: str, product_category: Optional[str] = None, channel: Optional[str] = None) -> List[ComplianceRule]:
        query = self.db.query(ComplianceRule).filter(
            or_(ComplianceRule.org_id == org_id, ComplianceRule.org_id.is_(None))
        )
        if product_category:
            query = query.filter(ComplianceRule.product_category == product_category.lower())
        if channel:
            query = query.filter(ComplianceRule.channel == channel)
        return query.order_by(ComplianceRule.product_category, ComplianceRule.effective_from).all()

    def create_rule(self, org_id: Optional[str], data: dict) -> ComplianceRule:
        if Decimal(str(data["max_allowed_rate"])) < 0:
            raise ValueError("max_allowed_rate cannot be negative")
        effective_to = data.get("effective_to")
        if effective_to and effective_to < data["effective_from"]:
            raise ValueError("effective_to is before effective_from")
        data["product_category"] = ProductType(data["product_category"]).value
        rule = ComplianceRule(org_id=org_id, **data)
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        if org_id:
            get_cache().invalidate_tenant(org_id)
        else:
            get_cache().clear()
        logger.info(f"Compliance cap {rule.max_allowed_rate}% set for {rule.product_category} (org {org_id or 'all'})")
        return rule

    def delete_rule(self, org_id: str, rule_id: int):
        rule = (
            self.db.query(ComplianceRule)
            .filter(ComplianceRule.id == rule_id, ComplianceRule.org_id == org_id)
            .first()
        )
        if not rule:
            raise ValueError("Compliance rule not found")
        self.db.delete(rule)
        self.db.commit()
        get_cache().invalidate_tenant(org_id)


def seed_default_caps(db: Session, effective_from: Optional[date] = None) -> int:
    """Insert regulator-wide caps for any category that has none. Returns rows added."""
    effective_from = effective_from or date(2023, 4, 1)
    added = 0
    for product_type, cap in DEFAULT_IRDAI_CAPS.items():
        exists = (
            db.query(ComplianceRule)
            .filter(
                ComplianceRule.org_id.is_(None),
                ComplianceRule.product_category == product_type.value,
            )
            .first()
        )
        if exists:
            continue
        db.add(ComplianceRule(
            org_id=None,
            product_category=product_type.value,
            max_allowed_rate=cap,
            effective_from=effective_from,
        ))
        added += 1
    if added:
        db.commit()
        logger.info(f"Seeded {added} default IRDAI caps")
    return added
