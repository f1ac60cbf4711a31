import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from brokerdesk.core.cache import get_cache, make_key
from brokerdesk.models.grid import GRID_MODELS
from brokerdesk.services.campaign_bonus import CampaignService
from brokerdesk.services.compliance import ComplianceGuard

logger = logging.getLogger(__name__)


class DashboardService:
    def __init__(self, db: Session):
        self.db = db

    def get_dashboard_data(self, org_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Commission dashboard payload:
        - lobPerformance: average active grid rate per line of business
        - rulesCount: active grid entries per line of business
        - complianceAlerts: active grid entries already above the IRDAI cap
        - upcomingCampaigns: active campaigns that have not ended
        """
        today = today or date.today()
        key = make_key("dashboard", org_id, {"today": today.isoformat()})
        return get_cache().get_or_load(key, lambda: self._build(org_id, today))

    def _build(self, org_id: str, today: date) -> Dict[str, Any]:
        lob_performance = []
        rules_count = {}
        for product_type, model in GRID_MODELS.items():
            avg_rate, count = (
                self.db.query(func.avg(model.commission_rate), func.count(model.id))
                .filter(model.org_id == org_id, model.is_active == True)
                .one()
            )
            if not count:
                continue
            lob_performance.append({
                "name": product_type.value,
                "avgRate": round(float(Decimal(str(avg_rate))), 2),
                "count": count,
            })
            rules_count[product_type.value] = count

        campaigns = CampaignService(self.db).upcoming(org_id, today)
        alerts = ComplianceGuard(self.db).rule_level_alerts(org_id, today)

        logger.debug(f"Dashboard built for org {org_id}: {sum(rules_count.values())} rules, {len(alerts)} alerts")
        return {
            "lobPerformance": lob_performance,
            "rulesCount": rules_count,
            "complianceAlerts": alerts,
            "upcomingCampaigns": [
                {
                    "id": c.id,
                    "campaign_name": c.campaign_name,
                    "bonus_rate": float(c.bonus_rate),
                    "valid_from": c.valid_from.isoformat(),
                    "valid_to": c.valid_to.isoformat(),
                    "is_exclusive": c.is_exclusive,
                }
                for c in campaigns
            ],
        }
