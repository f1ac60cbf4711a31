"""Settlement reconciliation.

Workflow:
1. Insurer statement uploaded for a period -> received = sum of commission lines
2. Expected = our insurer commission for that insurer/period
3. ``reconcile`` suggests a status from the variance; nothing changes yet
4. A person approves (within tolerance) or disputes (outside tolerance)
5. A disputed settlement goes back to Pending on a corrected statement

Reconciled is terminal. Every transition writes a SettlementEvent.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from brokerdesk.core.config import settings
from brokerdesk.models.settlement import Settlement, SettlementEvent, SettlementStatus, SettlementAction
from brokerdesk.services.commission_split import to_money
from brokerdesk.services.errors import InvalidTransitionError, StaleRecordError
from brokerdesk.services.revenue import RevenueService
from brokerdesk.services.statement_parser import parse_statement, ParsedStatement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    variance: Decimal
    suggested_status: SettlementStatus
    within_tolerance: bool


def is_within_tolerance(expected, received, tolerance: Optional[Decimal] = None) -> bool:
    tolerance = settings.SETTLEMENT_VARIANCE_TOLERANCE if tolerance is None else tolerance
    expected = to_money(expected)
    variance = to_money(received) - expected
    return abs(variance) <= abs(expected) * tolerance


def reconcile(settlement, tolerance: Optional[Decimal] = None) -> ReconcileResult:
    """Variance and the status a reviewer would most likely pick. Pure."""
    variance = to_money(settlement.received) - to_money(settlement.expected)
    within = is_within_tolerance(settlement.expected, settlement.received, tolerance)
    if settlement.status == SettlementStatus.RECONCILED.value:
        suggested = SettlementStatus.RECONCILED
    elif within:
        suggested = SettlementStatus.RECONCILED
    else:
        suggested = SettlementStatus.DISPUTED
    return ReconcileResult(variance=variance, suggested_status=suggested, within_tolerance=within)


class SettlementService:
    def __init__(self, db: Session, tolerance: Optional[Decimal] = None):
        self.db = db
        self.tolerance = settings.SETTLEMENT_VARIANCE_TOLERANCE if tolerance is None else tolerance

    # ── Lookup ───────────────────────────────────────────────────────

    def get(self, org_id: str, settlement_id: int) -> Settlement:
        settlement = (
            self.db.query(Settlement)
            .filter(Settlement.id == settlement_id, Settlement.org_id == org_id)
            .first()
        )
        if not settlement:
            raise ValueError("Settlement not found")
        return settlement

    def list_settlements(self, org_id: str, status: Optional[str] = None, insurer: Optional[str] = None,
                         period: Optional[str] = None) -> List[Settlement]:
        query = self.db.query(Settlement).filter(Settlement.org_id == org_id)
        if status:
            query = query.filter(Settlement.status == status)
        if insurer:
            query = query.filter(Settlement.insurer == insurer)
        if period:
            query = query.filter(Settlement.period == period)
        return query.order_by(Settlement.period.desc(), Settlement.insurer).all()

    def events(self, org_id: str, settlement_id: int) -> List[SettlementEvent]:
        return list(self.get(org_id, settlement_id).events)

    def compute_expected(self, org_id: str, insurer: str, period: str) -> Decimal:
        return RevenueService(self.db).expected_for_period(org_id, insurer, period)

    def reconcile(self, org_id: str, settlement_id: int) -> ReconcileResult:
        return reconcile(self.get(org_id, settlement_id), self.tolerance)

    # ── Create ───────────────────────────────────────────────────────

    def create(
        self,
        org_id: str,
        insurer: str,
        period: str,
        received,
        actor: str,
        expected=None,
        statement_filename: Optional[str] = None,
        statement_rows: int = 0,
        statement_error_rows: int = 0,
        notes: Optional[str] = None,
    ) -> Settlement:
        """New Pending settlement; a corrected statement for an open one resubmits it."""
        datetime.strptime(period, "%Y-%m")  # raises ValueError on a bad period
        if expected is None:
            expected = self.compute_expected(org_id, insurer, period)

        existing = (
            self.db.query(Settlement)
            .filter(Settlement.org_id == org_id, Settlement.insurer == insurer, Settlement.period == period)
            .first()
        )
        if existing:
            if existing.status == SettlementStatus.RECONCILED.value:
                raise InvalidTransitionError(f"Settlement for {insurer} {period} is already reconciled")
            existing.statement_filename = statement_filename or existing.statement_filename
            existing.statement_rows = statement_rows
            existing.statement_error_rows = statement_error_rows
            return self._resubmit(existing, received, actor, expected=expected, note=notes)

        expected = to_money(expected)
        received = to_money(received)
        settlement = Settlement(
            org_id=org_id,
            insurer=insurer,
            period=period,
            expected=expected,
            received=received,
            variance=received - expected,
            status=SettlementStatus.PENDING.value,
            statement_filename=statement_filename,
            statement_rows=statement_rows,
            statement_error_rows=statement_error_rows,
            notes=notes,
        )
        self.db.add(settlement)
        self._record(settlement, SettlementAction.CREATE, None, actor, notes)
        self.db.commit()
        self.db.refresh(settlement)
        logger.info(
            f"Settlement {settlement.id} created: {insurer} {period} "
            f"expected={expected} received={received} variance={settlement.variance}"
        )
        return settlement

    def create_from_statement(
        self,
        org_id: str,
        insurer: str,
        period: str,
        file_bytes: bytes,
        filename: str,
        actor: str,
    ) -> Tuple[Settlement, ParsedStatement]:
        parsed = parse_statement(file_bytes, filename)
        settlement = self.create(
            org_id,
            insurer,
            period,
            received=parsed.total_commission,
            actor=actor,
            statement_filename=filename,
            statement_rows=len(parsed.rows),
            statement_error_rows=len(parsed.errors),
        )
        return settlement, parsed

    # ── Transitions ──────────────────────────────────────────────────

    def approve(self, org_id: str, settlement_id: int, actor: str,
                version_id: Optional[int] = None, note: Optional[str] = None) -> Settlement:
        settlement = self._load_for_write(org_id, settlement_id, version_id)
        if settlement.status != SettlementStatus.PENDING.value:
            raise InvalidTransitionError(f"Only Pending settlements can be approved (is {settlement.status})")
        if not is_within_tolerance(settlement.expected, settlement.received, self.tolerance):
            raise InvalidTransitionError(
                f"Variance {settlement.variance} is outside tolerance of "
                f"{self.tolerance * 100}% on expected {settlement.expected}"
            )
        from_status = settlement.status
        settlement.status = SettlementStatus.RECONCILED.value
        settlement.approved_by = actor
        settlement.approved_at = datetime.now(timezone.utc)
        self._record(settlement, SettlementAction.APPROVE, from_status, actor, note)
        return self._commit(settlement)

    def dispute(self, org_id: str, settlement_id: int, actor: str,
                version_id: Optional[int] = None, note: Optional[str] = None) -> Settlement:
        settlement = self._load_for_write(org_id, settlement_id, version_id)
        if settlement.status != SettlementStatus.PENDING.value or settlement.approved_by:
            raise InvalidTransitionError(f"Only unapproved Pending settlements can be disputed (is {settlement.status})")
        if is_within_tolerance(settlement.expected, settlement.received, self.tolerance):
            raise InvalidTransitionError(
                f"Variance {settlement.variance} is within tolerance; approve instead"
            )
        from_status = settlement.status
        settlement.status = SettlementStatus.DISPUTED.value
        self._record(settlement, SettlementAction.DISPUTE, from_status, actor, note)
        return self._commit(settlement)

    def resubmit(self, org_id: str, settlement_id: int, received, actor: str,
                 expected=None, version_id: Optional[int] = None, note: Optional[str] = None) -> Settlement:
        settlement = self._load_for_write(org_id, settlement_id, version_id)
        if settlement.status != SettlementStatus.DISPUTED.value:
            raise InvalidTransitionError(f"Only Disputed settlements can be resubmitted (is {settlement.status})")
        return self._resubmit(settlement, received, actor, expected=expected, note=note)

    # ── internals ────────────────────────────────────────────────────

    def _resubmit(self, settlement: Settlement, received, actor: str, expected=None, note=None) -> Settlement:
        from_status = settlement.status
        if expected is not None:
            settlement.expected = to_money(expected)
        settlement.received = to_money(received)
        settlement.variance = settlement.received - to_money(settlement.expected)
        settlement.status = SettlementStatus.PENDING.value
        self._record(settlement, SettlementAction.RESUBMIT, from_status, actor, note)
        return self._commit(settlement)

    def _load_for_write(self, org_id: str, settlement_id: int, version_id: Optional[int]) -> Settlement:
        settlement = self.get(org_id, settlement_id)
        if version_id is not None and settlement.version_id != version_id:
            raise StaleRecordError(
                f"Settlement {settlement_id} is at version {settlement.version_id}, not {version_id}"
            )
        return settlement

    def _record(self, settlement: Settlement, action: SettlementAction, from_status: Optional[str],
                actor: str, note: Optional[str] = None):
        settlement.events.append(SettlementEvent(
            action=action.value,
            from_status=from_status,
            to_status=settlement.status,
            received=settlement.received,
            variance=settlement.variance,
            actor=actor,
            note=note,
        ))

    def _commit(self, settlement: Settlement) -> Settlement:
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise StaleRecordError(f"Settlement {settlement.id} was modified concurrently") from e
        self.db.refresh(settlement)
        logger.info(
            f"Settlement {settlement.id} ({settlement.insurer} {settlement.period}) "
            f"-> {settlement.status}, variance {settlement.variance}"
        )
        return settlement
