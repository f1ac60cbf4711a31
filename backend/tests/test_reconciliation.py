import pytest
from decimal import Decimal
from types import SimpleNamespace

from brokerdesk.models.settlement import SettlementStatus
from brokerdesk.services.errors import InvalidTransitionError, StaleRecordError
from brokerdesk.services.reconciliation import SettlementService, is_within_tolerance, reconcile
from conftest import ORG

INSURER = "ICICI Lombard"
PERIOD = "2024-01"


def open_settlement(db, expected, received):
    return SettlementService(db).create(ORG, INSURER, PERIOD, Decimal(received), "Asha Admin",
                                        expected=Decimal(expected))


class TestTolerance:

    def test_half_percent_default(self):
        assert is_within_tolerance(Decimal("200000"), Decimal("199000"))
        assert not is_within_tolerance(Decimal("200000"), Decimal("198999"))

    def test_reconcile_is_pure(self):
        s = SimpleNamespace(expected=Decimal("150000"), received=Decimal("148500"),
                            status=SettlementStatus.PENDING.value)
        result = reconcile(s)
        assert result.variance == Decimal("-1500.00")
        assert result.suggested_status == SettlementStatus.DISPUTED
        assert not result.within_tolerance
        assert s.status == "Pending"


class TestSettlementWorkflow:

    def test_short_payment_stays_pending_until_reviewed(self, db):
        s = open_settlement(db, "150000", "148500")
        assert s.status == "Pending"
        assert s.variance == Decimal("-1500.00")
        assert SettlementService(db).reconcile(ORG, s.id).suggested_status == SettlementStatus.DISPUTED

    def test_cannot_approve_outside_tolerance(self, db):
        s = open_settlement(db, "150000", "148500")
        with pytest.raises(InvalidTransitionError):
            SettlementService(db).approve(ORG, s.id, "Asha Admin")

    def test_dispute_and_resubmit(self, db):
        service = SettlementService(db)
        s = open_settlement(db, "150000", "148500")
        disputed = service.dispute(ORG, s.id, "Asha Admin", note="Short by 1500")
        assert disputed.status == "Disputed"

        corrected = service.resubmit(ORG, s.id, Decimal("150000"), "Asha Admin")
        assert corrected.status == "Pending"
        assert corrected.variance == Decimal("0.00")

        approved = service.approve(ORG, s.id, "Asha Admin")
        assert approved.status == "Reconciled"
        assert [e.action for e in service.events(ORG, s.id)] == ["create", "dispute", "resubmit", "approve"]

    def test_exact_match_is_approved_and_terminal(self, db):
        service = SettlementService(db)
        s = open_settlement(db, "200000", "200000")
        approved = service.approve(ORG, s.id, "Asha Admin")
        assert approved.status == "Reconciled"
        assert approved.approved_by == "Asha Admin"
        assert approved.approved_at is not None

        with pytest.raises(InvalidTransitionError):
            service.dispute(ORG, s.id, "Asha Admin")
        with pytest.raises(InvalidTransitionError):
            service.resubmit(ORG, s.id, Decimal("1"), "Asha Admin")
        with pytest.raises(InvalidTransitionError):
            open_settlement(db, "200000", "150000")

    def test_cannot_dispute_within_tolerance(self, db):
        s = open_settlement(db, "200000", "199500")
        with pytest.raises(InvalidTransitionError):
            SettlementService(db).dispute(ORG, s.id, "Asha Admin")

    def test_resubmit_requires_dispute(self, db):
        s = open_settlement(db, "200000", "150000")
        with pytest.raises(InvalidTransitionError):
            SettlementService(db).resubmit(ORG, s.id, Decimal("200000"), "Asha Admin")

    def test_second_statement_for_open_period_resubmits(self, db):
        first = open_settlement(db, "150000", "148500")
        second = open_settlement(db, "150000", "149900")
        assert second.id == first.id
        assert second.received == Decimal("149900.00")
        assert [e.action for e in second.events] == ["create", "resubmit"]

    def test_stale_version_is_rejected(self, db):
        s = open_settlement(db, "200000", "200000")
        with pytest.raises(StaleRecordError):
            SettlementService(db).approve(ORG, s.id, "Asha Admin", version_id=s.version_id + 5)

    def test_bad_period_is_rejected(self, db):
        with pytest.raises(ValueError):
            SettlementService(db).create(ORG, INSURER, "2024-13", Decimal("1"), "Asha Admin",
                                         expected=Decimal("1"))

    def test_expected_defaults_to_ledger(self, db):
        s = SettlementService(db).create(ORG, INSURER, PERIOD, Decimal("500"), "Asha Admin")
        assert s.expected == Decimal("0.00")
        assert s.variance == Decimal("500.00")

    def test_other_tenant_cannot_see_settlement(self, db):
        s = open_settlement(db, "1", "1")
        with pytest.raises(ValueError, match="Settlement not found"):
            SettlementService(db).get("org-b", s.id)
