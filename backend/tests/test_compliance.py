from datetime import date
from decimal import Decimal

from brokerdesk.models.compliance import AlertSeverity, ComplianceAlert, ComplianceRule
from brokerdesk.services.compliance import (
    ComplianceGuard, SeverityPolicy, check_compliance, seed_default_caps,
)
from conftest import ORG


class TestCheckCompliance:

    def test_within_cap_is_untouched(self):
        result = check_compliance(Decimal("12"), "motor", Decimal("20"))
        assert result.capped_rate == Decimal("12")
        assert result.is_compliant

    def test_exactly_at_cap_is_compliant(self):
        assert check_compliance(Decimal("20"), "motor", Decimal("20")).is_compliant

    def test_small_excess_is_medium(self):
        result = check_compliance(Decimal("13"), "motor", Decimal("12"))
        assert result.capped_rate == Decimal("12")
        assert result.alert.severity == AlertSeverity.MEDIUM
        assert result.alert.excess_amount == Decimal("1")
        assert result.alert.current_rate == Decimal("13")

    def test_five_points_over_is_still_medium(self):
        assert check_compliance(Decimal("25"), "motor", Decimal("20")).alert.severity == AlertSeverity.MEDIUM

    def test_more_than_five_points_over_is_high(self):
        assert check_compliance(Decimal("25.5"), "motor", Decimal("20")).alert.severity == AlertSeverity.HIGH

    def test_ratio_policy_escalates_to_high(self):
        policy = SeverityPolicy(high_excess_points=Decimal("5"), high_excess_ratio=Decimal("1.1"))
        result = check_compliance(Decimal("11.5"), "health", Decimal("10"), policy)
        assert result.alert.severity == AlertSeverity.HIGH

    def test_missing_cap_falls_back_to_default(self):
        result = check_compliance(Decimal("45"), "life", None)
        assert result.max_allowed == Decimal("100")
        assert result.is_compliant


class TestComplianceGuard:

    def test_seeded_caps(self, db):
        assert seed_default_caps(db) == 3
        assert seed_default_caps(db) == 0
        guard = ComplianceGuard(db)
        assert guard.caps_by_category(ORG, date(2024, 6, 1)) == {
            "motor": Decimal("20"), "health": Decimal("20"), "life": Decimal("35"),
        }

    def test_tenant_rule_overrides_regulator_rule(self, db, cap):
        cap("motor", "20")
        cap("motor", "15", org_id=ORG)
        guard = ComplianceGuard(db)
        assert guard.get_cap(ORG, "motor", date(2024, 6, 1)) == Decimal("15")
        assert guard.get_cap("org-b", "motor", date(2024, 6, 1)) == Decimal("20")

    def test_rule_not_yet_effective_is_ignored(self, db, cap):
        cap("health", "18", effective_from=date(2025, 1, 1))
        assert ComplianceGuard(db).get_cap(ORG, "health", date(2024, 6, 1)) is None

    def test_channel_rule_only_applies_to_its_channel(self, db, cap):
        cap("motor", "20")
        cap("motor", "5", org_id=ORG, channel="misp")
        guard = ComplianceGuard(db)
        on = date(2024, 6, 1)
        assert guard.get_cap(ORG, "motor", on, channel="misp") == Decimal("5")
        assert guard.get_cap(ORG, "motor", on, channel="MISP") == Decimal("5")
        assert guard.get_cap(ORG, "motor", on, channel="agent") == Decimal("20")
        assert guard.get_cap(ORG, "motor", on) == Decimal("20")

    def test_channel_rule_beats_tenant_wide_rule(self, db, cap):
        cap("motor", "15", org_id=ORG)
        cap("motor", "18", channel="agent")
        guard = ComplianceGuard(db)
        assert guard.get_cap(ORG, "motor", date(2024, 6, 1), channel="agent") == Decimal("18")
        assert guard.get_cap(ORG, "motor", date(2024, 6, 1), channel="direct") == Decimal("15")

    def test_only_other_channel_rules_means_no_cap(self, db, cap):
        cap("life", "30", channel="misp")
        assert ComplianceGuard(db).get_cap(ORG, "life", date(2024, 6, 1), channel="agent") is None

    def test_record_alert_once_per_breach(self, db):
        guard = ComplianceGuard(db)
        result = check_compliance(Decimal("13"), "motor", Decimal("12"))
        guard.record_alert(ORG, result.alert, commit=True)
        guard.record_alert(ORG, check_compliance(Decimal("10"), "motor", Decimal("12")).alert, commit=True)
        alerts = db.query(ComplianceAlert).all()
        assert len(alerts) == 1
        assert alerts[0].severity == "medium"
        assert alerts[0].excess_amount == Decimal("1")

    def test_rule_level_alerts_flag_grid_entries_above_cap(self, db, cap, motor_entry):
        cap("motor", "12")
        motor_entry(commission_rate="10", reward_rate="1")
        over = motor_entry(provider="Bajaj Allianz", commission_rate="15", reward_rate="4")
        alerts = ComplianceGuard(db).rule_level_alerts(ORG, date(2024, 6, 1))
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert["rule_id"] == f"motor:{over.id}"
        assert alert["provider_name"] == "Bajaj Allianz"
        assert alert["current_rate"] == 19.0
        assert alert["excess_amount"] == 7.0
        assert alert["severity"] == "high"

    def test_create_rule_validates_window(self, db):
        guard = ComplianceGuard(db)
        rule = guard.create_rule(ORG, {
            "product_category": "life",
            "max_allowed_rate": Decimal("30"),
            "effective_from": date(2024, 1, 1),
        })
        assert db.query(ComplianceRule).filter(ComplianceRule.id == rule.id).one().org_id == ORG
