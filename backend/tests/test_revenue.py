import pytest
from datetime import date
from decimal import Decimal

from brokerdesk.models.grid import HealthPayoutGrid, MotorPayoutGrid
from brokerdesk.models.revenue import PolicyCommission, RevenueRecord
from brokerdesk.services.commission import CommissionCalculationService
from brokerdesk.services.errors import InvalidTransitionError, StaleRecordError
from brokerdesk.services.revenue import (
    EXPORT_COLUMNS, RevenueFilters, RevenueService, aggregate, aggregate_by,
)
from conftest import ORG


def sync_all(db):
    CommissionCalculationService(db).sync_comprehensive_commissions(ORG)
    return RevenueService(db).sync_revenue_table(ORG)


@pytest.fixture
def ledger(db, motor_entry, health_entry, cap, agent_with_manager, policy):
    """Two motor policies (agent + direct) and one health policy, all synced"""
    cap("motor", "20")
    cap("health", "20")
    motor_entry(commission_rate="10", reward_rate="2")
    health_entry(commission_rate="15")
    agent = agent_with_manager(share="70", override="5")
    policies = [
        policy(premium="50000", source_type="agent", agent_id=agent.id, customer_name="Meera Iyer"),
        policy(premium="20000", issue_date=date(2024, 7, 2), customer_name="Kabir Shah"),
        policy(product_type="health", provider="Star Health", premium="30000", sum_insured=Decimal("500000"),
               customer_name="Anil Rao", branch_name="Pune"),
    ]
    sync_all(db)
    return policies


class TestAggregate:

    def test_empty_set_has_zero_average(self):
        totals = aggregate([])
        assert totals.count == 0
        assert totals.avg_base_rate == Decimal("0.00")
        assert totals.total_commission == Decimal("0.00")

    def test_total_commission_is_sum_of_shares(self):
        rows = [
            {"agent_commission": "4200", "employee_commission": "0", "reporting_employee_commission": "300",
             "broker_share": "1500", "insurer_commission": "6000", "premium": "50000", "base_rate": "10"},
            {"agent_commission": "0", "employee_commission": "0", "reporting_employee_commission": "0",
             "broker_share": "2400", "insurer_commission": "2400", "premium": "20000", "base_rate": "11"},
        ]
        totals = aggregate(rows)
        assert totals.total_commission == Decimal("8400")
        assert totals.total_insurer == Decimal("8400")
        assert totals.total_agent == Decimal("4200")
        assert totals.avg_base_rate == Decimal("10.50")
        assert totals.count == 2

    def test_aggregate_by_unknown_dimension(self):
        with pytest.raises(ValueError):
            aggregate_by([], "colour")

    def test_aggregate_by_branch_and_period(self):
        rows = [
            {"branch_name": "Pune", "calc_date": date(2024, 6, 1), "broker_share": "10"},
            {"branch_name": None, "calc_date": date(2024, 7, 1), "broker_share": "5"},
        ]
        assert set(aggregate_by(rows, "branch")) == {"Pune", "Unassigned"}
        assert set(aggregate_by(rows, "period")) == {"2024-06", "2024-07"}


class TestSyncRevenueTable:

    def test_creates_one_record_per_policy(self, db, ledger):
        records = db.query(RevenueRecord).order_by(RevenueRecord.policy_id).all()
        assert len(records) == 3
        agent_row = records[0]
        assert agent_row.insurer_commission == Decimal("6000.00")
        assert agent_row.agent_commission == Decimal("4200.00")
        assert agent_row.reporting_employee_commission == Decimal("300.00")
        assert agent_row.broker_share == Decimal("1500.00")
        assert agent_row.agent_name == "Rahul Verma"
        assert agent_row.reporting_employee_name == "Priya Sharma"
        assert agent_row.revision == 1
        assert agent_row.commission_status == "pending"

    def test_rerun_changes_nothing(self, db, ledger):
        before = {(r.id, r.version_id) for r in db.query(RevenueRecord).all()}
        result = RevenueService(db).sync_revenue_table(ORG)
        assert result.successful == 3
        assert {(r.id, r.version_id) for r in db.query(RevenueRecord).all()} == before

    def test_pending_record_is_refreshed_in_place(self, db, ledger):
        db.query(MotorPayoutGrid).update({"commission_rate": Decimal("8")})
        db.commit()

        sync_all(db)

        records = db.query(RevenueRecord).filter(RevenueRecord.product_type == "motor").all()
        assert len(records) == 2
        assert {r.revision for r in records} == {1}
        assert sorted(r.insurer_commission for r in records) == [Decimal("2000.00"), Decimal("5000.00")]

    def test_frozen_record_gets_a_new_revision(self, db, ledger):
        service = RevenueService(db)
        first = db.query(RevenueRecord).filter(RevenueRecord.policy_id == ledger[0].id).one()
        service.update_status(ORG, first.id, "approved", first.version_id, "Asha Admin")

        db.query(MotorPayoutGrid).update({"commission_rate": Decimal("8")})
        db.commit()
        sync_all(db)

        revisions = (
            db.query(RevenueRecord)
            .filter(RevenueRecord.policy_id == ledger[0].id)
            .order_by(RevenueRecord.revision)
            .all()
        )
        assert [(r.revision, r.commission_status) for r in revisions] == [(1, "superseded"), (2, "pending")]
        assert revisions[0].insurer_commission == Decimal("6000.00")
        assert revisions[1].insurer_commission == Decimal("5000.00")
        assert revisions[0].status_changed_by == "revenue-sync"

    def test_manual_review_policies_are_reported_not_written(self, db, ledger, policy):
        stray = policy(provider="Unknown Insurer")
        result = sync_all(db)
        assert result.failed == 1
        assert result.errors[0]["policy_number"] == stray.policy_number
        assert db.query(RevenueRecord).filter(RevenueRecord.policy_id == stray.id).count() == 0


class TestRevenueViews:

    def test_rows_come_from_the_report(self, db, ledger):
        view = RevenueService(db).get_revenue_rows(ORG)
        assert view.source == "report"
        assert len(view.rows) == 3
        assert all(r["id"] is not None for r in view.rows)

    def test_falls_back_to_table_when_report_is_empty(self, db, ledger):
        db.query(PolicyCommission).update({"needs_manual_review": True})
        db.commit()
        view = RevenueService(db).get_revenue_rows(ORG)
        assert view.source == "table"
        assert len(view.rows) == 3

    def test_filters_and_search(self, db, ledger):
        service = RevenueService(db)
        assert len(service.get_revenue_rows(ORG, RevenueFilters(product_type="health")).rows) == 1
        assert len(service.get_revenue_rows(ORG, RevenueFilters(search="kabir")).rows) == 1
        july = RevenueFilters(date_from=date(2024, 7, 1), date_to=date(2024, 7, 31))
        assert [r["customer_name"] for r in service.get_revenue_rows(ORG, july).rows] == ["Kabir Shah"]

    def test_narrower_filter_is_served_from_cached_view(self, db, ledger, policy):
        service = RevenueService(db)
        service.get_revenue_rows(ORG, RevenueFilters())

        # Written behind the service's back, so the cache does not know about it
        late = policy(premium="10000")
        db.add(PolicyCommission(org_id=ORG, policy_id=late.id, base_rate=Decimal("10"), total_rate=Decimal("10"),
                                premium=Decimal("10000"), insurer_commission=Decimal("1000")))
        db.commit()

        motor = service.get_revenue_rows(ORG, RevenueFilters(product_type="motor"))
        assert len(motor.rows) == 2

        service.cache.invalidate_tenant(ORG)
        assert len(service.get_revenue_rows(ORG, RevenueFilters(product_type="motor")).rows) == 3

    def test_empty_narrowing_of_report_view_falls_back_to_table(self, db, ledger):
        # Health loses its grid entry, so its commission goes to manual review
        # while the revenue record from the earlier sync stays
        db.query(HealthPayoutGrid).update({"is_active": False})
        db.commit()
        CommissionCalculationService(db).sync_comprehensive_commissions(ORG)

        service = RevenueService(db)
        everything = service.get_revenue_rows(ORG, RevenueFilters())
        assert everything.source == "report"
        assert {r["product_type"] for r in everything.rows} == {"motor"}

        health = service.get_revenue_rows(ORG, RevenueFilters(product_type="health"))
        assert health.source == "table"
        assert [r["customer_name"] for r in health.rows] == ["Anil Rao"]

    def test_tenants_never_share_cached_views(self, db, ledger):
        service = RevenueService(db)
        service.get_revenue_rows(ORG)
        assert service.get_revenue_rows("org-b").rows == []

    def test_totals_and_breakdown(self, db, ledger):
        service = RevenueService(db)
        totals = service.get_totals(ORG)
        # 6000 + 2400 + 4500
        assert totals.total_insurer == Decimal("12900.00")
        assert totals.total_commission == totals.total_insurer
        groups = service.get_breakdown(ORG, "product_type")
        assert groups["motor"].count == 2
        assert groups["health"].total_broker == Decimal("4500.00")

    def test_export_has_fixed_columns(self, db, ledger):
        csv = RevenueService(db).export_csv(ORG)
        lines = csv.strip().splitlines()
        assert lines[0] == ",".join(header for header, _ in EXPORT_COLUMNS)
        assert lines[0].startswith("Policy Number,Provider,Product Type,Source Type")
        assert lines[0].endswith("Broker Share,Status,Calc Date")
        assert len(lines) == 4

    def test_expected_for_period(self, db, ledger):
        service = RevenueService(db)
        assert service.expected_for_period(ORG, "icici lombard", "2024-06") == Decimal("6000.00")
        assert service.expected_for_period(ORG, "ICICI Lombard", "2024-07") == Decimal("2400.00")
        assert service.expected_for_period(ORG, "ICICI Lombard", "2024-08") == Decimal("0.00")


class TestStatusWorkflow:

    def test_approve_then_pay(self, db, ledger):
        service = RevenueService(db)
        record = db.query(RevenueRecord).first()
        approved = service.update_status(ORG, record.id, "approved", record.version_id, "Asha Admin")
        paid = service.update_status(ORG, record.id, "paid", approved.version_id, "Asha Admin")
        assert paid.commission_status == "paid"
        assert paid.status_changed_by == "Asha Admin"

    def test_stale_version_is_rejected(self, db, ledger):
        service = RevenueService(db)
        record = db.query(RevenueRecord).first()
        stale = record.version_id
        service.update_status(ORG, record.id, "approved", stale, "Asha Admin")
        with pytest.raises(StaleRecordError):
            service.update_status(ORG, record.id, "disputed", stale, "Someone Else")

    def test_paid_is_terminal(self, db, ledger):
        service = RevenueService(db)
        record = db.query(RevenueRecord).first()
        record = service.update_status(ORG, record.id, "approved", record.version_id, "a")
        record = service.update_status(ORG, record.id, "paid", record.version_id, "a")
        with pytest.raises(InvalidTransitionError):
            service.update_status(ORG, record.id, "disputed", record.version_id, "a")

    def test_pending_cannot_jump_to_paid(self, db, ledger):
        record = db.query(RevenueRecord).first()
        with pytest.raises(InvalidTransitionError):
            RevenueService(db).update_status(ORG, record.id, "paid", record.version_id, "a")
