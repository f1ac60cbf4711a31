import pytest
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from brokerdesk.services.campaign_bonus import CampaignService, apply_campaign_bonus, select_campaigns
from brokerdesk.services.rate_resolver import RateResolution
from conftest import ORG


@dataclass
class Campaign:
    id: int
    bonus_rate: Decimal
    valid_from: date
    valid_to: date
    is_exclusive: bool = False
    is_active: bool = True
    product_type: Optional[str] = None
    provider: Optional[str] = None


BASE = RateResolution(rate=Decimal("10"), reward_rate=Decimal("2"), matched_entry_id="motor:1")


class TestCampaignWindow:

    def test_valid_to_is_inclusive(self):
        c = Campaign(1, Decimal("1"), date(2024, 1, 1), date(2024, 1, 31))
        assert apply_campaign_bonus(BASE, date(2024, 1, 31), "motor", campaigns=[c]) == Decimal("1")

    def test_day_after_valid_to_gets_nothing(self):
        c = Campaign(1, Decimal("1"), date(2024, 1, 1), date(2024, 1, 31))
        assert apply_campaign_bonus(BASE, date(2024, 2, 1), "motor", campaigns=[c]) == Decimal("0")

    def test_valid_from_is_inclusive(self):
        c = Campaign(1, Decimal("1.5"), date(2024, 1, 1), date(2024, 1, 31))
        assert apply_campaign_bonus(BASE, date(2024, 1, 1), "motor", campaigns=[c]) == Decimal("1.5")

    def test_inactive_campaign_is_ignored(self):
        c = Campaign(1, Decimal("1"), date(2024, 1, 1), date(2024, 1, 31), is_active=False)
        assert apply_campaign_bonus(BASE, date(2024, 1, 15), "motor", campaigns=[c]) == Decimal("0")

    def test_product_and_provider_scoping(self):
        health_only = Campaign(1, Decimal("2"), date(2024, 1, 1), date(2024, 12, 31), product_type="health")
        icici_only = Campaign(2, Decimal("1"), date(2024, 1, 1), date(2024, 12, 31), provider="ICICI Lombard")
        on = date(2024, 6, 1)
        assert apply_campaign_bonus(BASE, on, "motor", "icici lombard", [health_only, icici_only]) == Decimal("1")
        assert apply_campaign_bonus(BASE, on, "motor", "Bajaj Allianz", [health_only, icici_only]) == Decimal("0")


class TestStacking:

    def test_non_exclusive_campaigns_add_up(self):
        campaigns = [
            Campaign(1, Decimal("1"), date(2024, 1, 1), date(2024, 12, 31)),
            Campaign(2, Decimal("0.5"), date(2024, 6, 1), date(2024, 6, 30)),
        ]
        selection = select_campaigns(campaigns, date(2024, 6, 15), "motor")
        assert selection.bonus_rate == Decimal("1.5")
        assert selection.campaign_ids == [1, 2]
        assert not selection.exclusive

    def test_exclusive_campaign_applies_alone(self):
        campaigns = [
            Campaign(1, Decimal("1"), date(2024, 1, 1), date(2024, 12, 31)),
            Campaign(2, Decimal("2"), date(2024, 1, 1), date(2024, 12, 31), is_exclusive=True),
            Campaign(3, Decimal("3"), date(2024, 1, 1), date(2024, 12, 31), is_exclusive=True),
        ]
        selection = select_campaigns(campaigns, date(2024, 6, 15), "motor")
        assert selection.bonus_rate == Decimal("3")
        assert selection.campaign_ids == [3]
        assert selection.exclusive

    def test_exclusive_tie_goes_to_earliest_start(self):
        campaigns = [
            Campaign(7, Decimal("2"), date(2024, 3, 1), date(2024, 12, 31), is_exclusive=True),
            Campaign(8, Decimal("2"), date(2024, 1, 1), date(2024, 12, 31), is_exclusive=True),
        ]
        assert select_campaigns(campaigns, date(2024, 6, 15), "motor").campaign_ids == [8]

    def test_no_campaigns_means_zero(self):
        assert apply_campaign_bonus(BASE, date(2024, 6, 15), "motor") == Decimal("0")


class TestCampaignService:

    def _data(self, **overrides):
        data = {
            "campaign_name": "Monsoon motor",
            "bonus_rate": Decimal("1"),
            "valid_from": date(2024, 6, 1),
            "valid_to": date(2024, 8, 31),
            "product_type": "motor",
        }
        data.update(overrides)
        return data

    def test_create_and_bonus_for(self, db):
        service = CampaignService(db)
        created = service.create(ORG, self._data(), created_by="Asha Admin")
        assert created.id is not None
        assert created.created_by == "Asha Admin"
        bonus = service.bonus_for(ORG, BASE, date(2024, 8, 31), "motor", "ICICI Lombard")
        assert bonus == Decimal("1")

    def test_negative_bonus_rejected(self, db):
        with pytest.raises(ValueError, match="negative"):
            CampaignService(db).create(ORG, self._data(bonus_rate=Decimal("-1")))

    def test_reversed_window_rejected(self, db):
        with pytest.raises(ValueError):
            CampaignService(db).create(ORG, self._data(valid_from=date(2024, 9, 1)))

    def test_update_cannot_make_bonus_negative(self, db):
        service = CampaignService(db)
        created = service.create(ORG, self._data())
        with pytest.raises(ValueError):
            service.update(ORG, created.id, {"bonus_rate": Decimal("-0.5")})

    def test_deactivated_campaign_stops_applying(self, db):
        service = CampaignService(db)
        created = service.create(ORG, self._data())
        service.deactivate(ORG, created.id)
        assert service.bonus_for(ORG, BASE, date(2024, 7, 1), "motor", "ICICI Lombard") == Decimal("0")

    def test_upcoming_lists_campaigns_not_yet_ended(self, db, campaign):
        campaign(name="Ended", valid_from=date(2024, 1, 1), valid_to=date(2024, 1, 31))
        campaign(name="Running", valid_from=date(2024, 6, 1), valid_to=date(2024, 6, 30))
        names = [c.campaign_name for c in CampaignService(db).upcoming(ORG, date(2024, 6, 30))]
        assert names == ["Running"]

    def test_unknown_campaign_raises(self, db):
        with pytest.raises(ValueError, match="Campaign not found"):
            CampaignService(db).get(ORG, 999)
