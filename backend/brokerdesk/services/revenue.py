"""Revenue ledger: sync, filtered views, roll-ups and export.

Views are read through a per-tenant cache. A request whose filters are a
narrowing of an already cached view is answered by filtering that view in
memory; anything else is loaded fresh. Every write drops the tenant's cache.
"""
import logging
from dataclasses import dataclass, asdict, fields
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from brokerdesk.core.cache import get_cache, make_key
from brokerdesk.models.policy import Policy
from brokerdesk.models.revenue import PolicyCommission, RevenueRecord, CommissionStatus
from brokerdesk.services.batch import BatchResult
from brokerdesk.services.commission_split import SplitParties, split_commission, to_money, CENT
from brokerdesk.services.errors import NegativeShareError, InvalidTransitionError, StaleRecordError

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "revenue"

# Fixed export layout: (header, row key)
EXPORT_COLUMNS = [
    ("Policy Number", "policy_number"),
    ("Provider", "provider"),
    ("Product Type", "product_type"),
    ("Source Type", "source_type"),
    ("Customer Name", "customer_name"),
    ("Agent Name", "agent_name"),
    ("Employee Name", "employee_name"),
    ("MISP Name", "misp_name"),
    ("Premium", "premium"),
    ("Base Rate %", "base_rate"),
    ("Reward Rate %", "reward_rate"),
    ("Total Rate %", "total_rate"),
    ("Insurer Commission", "insurer_commission"),
    ("Agent Commission", "agent_commission"),
    ("Employee Commission", "employee_commission"),
    ("Broker Share", "broker_share"),
    ("Status", "commission_status"),
    ("Calc Date", "calc_date"),
]

ALLOWED_STATUS_TRANSITIONS = {
    CommissionStatus.PENDING.value: {CommissionStatus.APPROVED.value, CommissionStatus.DISPUTED.value},
    CommissionStatus.APPROVED.value: {CommissionStatus.PAID.value, CommissionStatus.DISPUTED.value},
    CommissionStatus.DISPUTED.value: {CommissionStatus.PENDING.value, CommissionStatus.APPROVED.value},
    CommissionStatus.PAID.value: set(),
    CommissionStatus.SUPERSEDED.value: set(),
}

# Fields compared to decide whether a recalculation changed a record
_CALC_FIELDS = (
    "policy_number", "provider", "product_type", "source_type", "branch_name",
    "customer_name", "agent_name", "employee_name", "misp_name", "reporting_employee_name",
    "premium", "base_rate", "reward_rate", "bonus_rate", "pre_cap_rate", "total_rate",
    "insurer_commission", "agent_commission", "employee_commission",
    "reporting_employee_commission", "broker_share", "calc_date",
)

_SEARCH_FIELDS = ("policy_number", "customer_name", "provider", "agent_name", "employee_name", "misp_name")


def _get(row, name, default=None):
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def _dec(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


# ── Filters ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RevenueFilters:
    product_type: Optional[str] = None
    source_type: Optional[str] = None
    provider: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def as_params(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, "")}

    def matches(self, row) -> bool:
        if self.product_type and (_get(row, "product_type") or "").lower() != self.product_type.lower():
            return False
        if self.source_type and (_get(row, "source_type") or "").lower() != self.source_type.lower():
            return False
        if self.provider and (_get(row, "provider") or "").lower() != self.provider.lower():
            return False
        calc_date = _get(row, "calc_date")
        if self.date_from and (calc_date is None or calc_date < self.date_from):
            return False
        if self.date_to and (calc_date is None or calc_date > self.date_to):
            return False
        if self.search:
            needle = self.search.lower()
            if not any(needle in str(_get(row, f) or "").lower() for f in _SEARCH_FIELDS):
                return False
        return True

    def is_within(self, broader: "RevenueFilters") -> bool:
        """True when every row matching self also matches ``broader``."""
        for name in ("product_type", "source_type", "provider"):
            theirs = getattr(broader, name)
            if theirs and (getattr(self, name) or "").lower() != theirs.lower():
                return False
        if broader.search:
            if not self.search or broader.search.lower() not in self.search.lower():
                return False
        if broader.date_from and (self.date_from is None or self.date_from < broader.date_from):
            return False
        if broader.date_to and (self.date_to is None or self.date_to > broader.date_to):
            return False
        return True


# ── Aggregation ─────────────────────────────────────────────────────

@dataclass
class Totals:
    total_commission: Decimal = Decimal("0.00")  # sum of the distributed shares
    total_insurer: Decimal = Decimal("0.00")
    total_agent: Decimal = Decimal("0.00")
    total_employee: Decimal = Decimal("0.00")
    total_reporting_employee: Decimal = Decimal("0.00")
    total_broker: Decimal = Decimal("0.00")
    total_premium: Decimal = Decimal("0.00")
    avg_base_rate: Decimal = Decimal("0.00")
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def aggregate(records: Iterable) -> Totals:
    totals = Totals()
    base_rate_sum = Decimal("0")
    for r in records:
        agent = _dec(_get(r, "agent_commission"))
        employee = _dec(_get(r, "employee_commission"))
        reporting = _dec(_get(r, "reporting_employee_commission"))
        broker = _dec(_get(r, "broker_share"))
        totals.total_insurer += _dec(_get(r, "insurer_commission"))
        totals.total_agent += agent
        totals.total_employee += employee
        totals.total_reporting_employee += reporting
        totals.total_broker += broker
        totals.total_commission += agent + employee + reporting + broker
        totals.total_premium += _dec(_get(r, "premium"))
        base_rate_sum += _dec(_get(r, "base_rate"))
        totals.count += 1
    if totals.count:
        totals.avg_base_rate = (base_rate_sum / totals.count).quantize(CENT)
    return totals


AGGREGATE_DIMENSIONS = {
    "product_type": lambda r: _get(r, "product_type"),
    "provider": lambda r: _get(r, "provider"),
    "source_type": lambda r: _get(r, "source_type"),
    "branch": lambda r: _get(r, "branch_name") or "Unassigned",
    "period": lambda r: _get(r, "calc_date").strftime("%Y-%m") if _get(r, "calc_date") else "Unknown",
}


def aggregate_by(records: Iterable, dimension: str) -> Dict[str, Totals]:
    if dimension not in AGGREGATE_DIMENSIONS:
        raise ValueError(f"Unknown dimension '{dimension}'. Use one of: {', '.join(AGGREGATE_DIMENSIONS)}")
    key_fn = AGGREGATE_DIMENSIONS[dimension]
    groups: Dict[str, list] = {}
    for r in records:
        groups.setdefault(key_fn(r), []).append(r)
    return {k: aggregate(v) for k, v in sorted(groups.items(), key=lambda kv: str(kv[0]))}


# ── Row shape ───────────────────────────────────────────────────────

@dataclass
class RevenueView:
    rows: List[Dict[str, Any]]
    source: str  # "report" | "table"


def record_to_row(record: RevenueRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "policy_id": record.policy_id,
        "revision": record.revision,
        "version_id": record.version_id,
        "commission_status": record.commission_status,
        **{name: getattr(record, name) for name in _CALC_FIELDS},
    }


def _party_names(policy: Policy) -> Dict[str, Optional[str]]:
    reporting = None
    if policy.agent is not None and policy.agent.reporting_employee is not None:
        reporting = policy.agent.reporting_employee.name
    elif policy.misp is not None and policy.misp.reporting_employee is not None:
        reporting = policy.misp.reporting_employee.name
    return {
        "agent_name": policy.agent.name if policy.agent is not None else None,
        "employee_name": policy.employee.name if policy.employee is not None else None,
        "misp_name": policy.misp.name if policy.misp is not None else None,
        "reporting_employee_name": reporting,
    }


def build_revenue_values(policy: Policy, pc: PolicyCommission) -> Dict[str, Any]:
    """Calculated RevenueRecord fields for a policy. Raises NegativeShareError."""
    insurer_commission = to_money(pc.insurer_commission)
    split = split_commission(insurer_commission, policy.source_type, SplitParties.from_policy(policy))
    return {
        "policy_number": policy.policy_number,
        "provider": policy.provider,
        "product_type": policy.product_type,
        "source_type": policy.source_type,
        "branch_name": policy.branch_name,
        "customer_name": policy.customer_name,
        **_party_names(policy),
        "premium": to_money(policy.premium),
        "base_rate": _dec(pc.base_rate).quantize(CENT),
        "reward_rate": _dec(pc.reward_rate).quantize(CENT),
        "bonus_rate": _dec(pc.bonus_rate).quantize(CENT),
        "pre_cap_rate": _dec(pc.pre_cap_rate).quantize(CENT),
        "total_rate": _dec(pc.total_rate).quantize(CENT),
        "insurer_commission": insurer_commission,
        "agent_commission": split.agent_commission,
        "employee_commission": split.employee_commission,
        "reporting_employee_commission": split.reporting_employee_commission,
        "broker_share": split.broker_share,
        "calc_date": policy.issue_date,
    }


def _values_differ(record: RevenueRecord, values: Dict[str, Any]) -> bool:
    for key, value in values.items():
        current = getattr(record, key)
        if isinstance(value, Decimal):
            if current is None or Decimal(str(current)).quantize(CENT) != value.quantize(CENT):
                return True
        elif current != value:
            return True
    return False


class RevenueService:
    def __init__(self, db: Session):
        self.db = db
        self.cache = get_cache()

    # ── Sync revenue table ──────────────────────────────────────────

    def sync_revenue_table(self, org_id: str) -> BatchResult:
        """
        Build RevenueRecords from the synced policy commissions.

        - unchanged calculation: nothing is written (re-running is a no-op)
        - changed, latest revision still pending: refreshed in place
        - changed, latest revision past pending: frozen row is superseded and
          the new figures go in as the next revision
        Commits once at the end.
        """
        result = BatchResult()
        pairs = (
            self.db.query(PolicyCommission, Policy)
            .join(Policy, Policy.id == PolicyCommission.policy_id)
            .filter(PolicyCommission.org_id == org_id, Policy.org_id == org_id)
            .order_by(Policy.id)
            .all()
        )

        latest: Dict[int, RevenueRecord] = {}
        for rec in (
            self.db.query(RevenueRecord)
            .filter(RevenueRecord.org_id == org_id)
            .order_by(RevenueRecord.policy_id, RevenueRecord.revision)
            .all()
        ):
            latest[rec.policy_id] = rec

        created = updated = revised = 0
        for row, (pc, policy) in enumerate(pairs, start=1):
            if pc.needs_manual_review:
                result.fail(row, policy.policy_number, pc.error_message or "Commission needs manual review")
                continue
            try:
                values = build_revenue_values(policy, pc)
            except (NegativeShareError, ValueError) as e:
                logger.warning(f"Revenue sync skipped policy {policy.policy_number}: {e}")
                result.fail(row, policy.policy_number, str(e))
                continue

            current = latest.get(policy.id)
            if current is None:
                self.db.add(RevenueRecord(org_id=org_id, policy_id=policy.id, revision=1, **values))
                created += 1
            elif not _values_differ(current, values):
                pass
            elif current.commission_status == CommissionStatus.PENDING.value:
                for key, value in values.items():
                    setattr(current, key, value)
                updated += 1
            else:
                current.commission_status = CommissionStatus.SUPERSEDED.value
                current.status_changed_by = "revenue-sync"
                current.status_changed_at = datetime.now(timezone.utc)
                self.db.add(RevenueRecord(
                    org_id=org_id, policy_id=policy.id, revision=current.revision + 1, **values
                ))
                revised += 1
            result.ok()

        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise StaleRecordError("Revenue records changed during sync; retry") from e

        self.cache.invalidate_tenant(org_id)
        logger.info(
            f"Revenue table synced for org {org_id}: {created} created, {updated} refreshed, "
            f"{revised} revised, {result.failed} failed"
        )
        return result

    # ── Views ───────────────────────────────────────────────────────

    def _report_rows(self, org_id: str) -> List[Dict[str, Any]]:
        """Current calculation per policy from the comprehensive commissions"""
        pairs = (
            self.db.query(PolicyCommission, Policy)
            .join(Policy, Policy.id == PolicyCommission.policy_id)
            .filter(
                PolicyCommission.org_id == org_id,
                PolicyCommission.needs_manual_review == False,
            )
            .order_by(Policy.issue_date.desc(), Policy.id.desc())
            .all()
        )
        current = {}
        for rec in (
            self.db.query(RevenueRecord)
            .filter(
                RevenueRecord.org_id == org_id,
                RevenueRecord.commission_status != CommissionStatus.SUPERSEDED.value,
            )
            .all()
        ):
            prev = current.get(rec.policy_id)
            if prev is None or rec.revision > prev.revision:
                current[rec.policy_id] = rec

        rows = []
        for pc, policy in pairs:
            try:
                values = build_revenue_values(policy, pc)
            except NegativeShareError as e:
                logger.warning(f"Report row skipped for policy {policy.policy_number}: {e}")
                continue
            rec = current.get(policy.id)
            rows.append({
                "id": rec.id if rec else None,
                "policy_id": policy.id,
                "revision": rec.revision if rec else None,
                "version_id": rec.version_id if rec else None,
                "commission_status": rec.commission_status if rec else CommissionStatus.PENDING.value,
                **values,
            })
        return rows

    def _table_rows(self, org_id: str, filters: RevenueFilters) -> List[Dict[str, Any]]:
        query = self.db.query(RevenueRecord).filter(
            RevenueRecord.org_id == org_id,
            RevenueRecord.commission_status != CommissionStatus.SUPERSEDED.value,
        )
        if filters.product_type:
            query = query.filter(func.lower(RevenueRecord.product_type) == filters.product_type.lower())
        if filters.source_type:
            query = query.filter(func.lower(RevenueRecord.source_type) == filters.source_type.lower())
        if filters.provider:
            query = query.filter(func.lower(RevenueRecord.provider) == filters.provider.lower())
        if filters.date_from:
            query = query.filter(RevenueRecord.calc_date >= filters.date_from)
        if filters.date_to:
            query = query.filter(RevenueRecord.calc_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search.lower()}%"
            query = query.filter(or_(*[
                func.lower(getattr(RevenueRecord, f)).like(pattern) for f in _SEARCH_FIELDS
            ]))
        records = query.order_by(RevenueRecord.calc_date.desc(), RevenueRecord.id.desc()).all()
        return [record_to_row(r) for r in records]

    def _load(self, org_id: str, filters: RevenueFilters) -> RevenueView:
        rows = [r for r in self._report_rows(org_id) if filters.matches(r)]
        if rows:
            return RevenueView(rows=rows, source="report")
        return RevenueView(rows=self._table_rows(org_id, filters), source="table")

    def get_revenue_rows(self, org_id: str, filters: Optional[RevenueFilters] = None) -> RevenueView:
        filters = filters or RevenueFilters()
        key = make_key(CACHE_NAMESPACE, org_id, filters.as_params())
        hit = self.cache.get(key)
        if hit is not None:
            return hit[1]

        for _, (cached_filters, view) in self.cache.items_with_prefix(f"{CACHE_NAMESPACE}:{org_id}:"):
            if not filters.is_within(cached_filters):
                continue
            narrowed = RevenueView(rows=[r for r in view.rows if filters.matches(r)], source=view.source)
            # An empty slice of a report view still has to try the flat table
            if narrowed.rows or view.source == "table":
                self.cache.set(key, (filters, narrowed))
                return narrowed
            break

        view = self._load(org_id, filters)
        self.cache.set(key, (filters, view))
        return view

    def get_totals(self, org_id: str, filters: Optional[RevenueFilters] = None) -> Totals:
        return aggregate(self.get_revenue_rows(org_id, filters).rows)

    def get_breakdown(self, org_id: str, dimension: str, filters: Optional[RevenueFilters] = None) -> Dict[str, Totals]:
        return aggregate_by(self.get_revenue_rows(org_id, filters).rows, dimension)

    def export_csv(self, org_id: str, filters: Optional[RevenueFilters] = None) -> str:
        rows = self.get_revenue_rows(org_id, filters).rows
        df = pd.DataFrame(
            [[r.get(key) for _, key in EXPORT_COLUMNS] for r in rows],
            columns=[header for header, _ in EXPORT_COLUMNS],
        )
        return df.to_csv(index=False)

    # ── Status workflow ─────────────────────────────────────────────

    def get_record(self, org_id: str, record_id: int) -> RevenueRecord:
        record = (
            self.db.query(RevenueRecord)
            .filter(RevenueRecord.id == record_id, RevenueRecord.org_id == org_id)
            .first()
        )
        if not record:
            raise ValueError("Revenue record not found")
        return record

    def update_status(self, org_id: str, record_id: int, new_status: str, version_id: int, actor: str) -> RevenueRecord:
        """Conditional status write; ``version_id`` must match what the caller last read."""
        record = self.get_record(org_id, record_id)
        new_status = CommissionStatus(new_status).value

        if record.version_id != version_id:
            raise StaleRecordError(
                f"Revenue record {record_id} is at version {record.version_id}, not {version_id}"
            )
        if new_status not in ALLOWED_STATUS_TRANSITIONS.get(record.commission_status, set()):
            raise InvalidTransitionError(
                f"Cannot move revenue record from {record.commission_status} to {new_status}"
            )

        old_status = record.commission_status
        record.commission_status = new_status
        record.status_changed_by = actor
        record.status_changed_at = datetime.now(timezone.utc)
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise StaleRecordError(f"Revenue record {record_id} was modified concurrently") from e

        self.db.refresh(record)
        self.cache.invalidate_tenant(org_id)
        logger.info(f"Revenue record {record_id}: {old_status} -> {new_status} by {actor}")
        return record

    # ── Settlement support ──────────────────────────────────────────

    def expected_for_period(self, org_id: str, insurer: str, period: str) -> Decimal:
        """Sum of insurer commission for an insurer's live records in YYYY-MM"""
        start = datetime.strptime(period, "%Y-%m").date()
        end = start + relativedelta(months=1)
        total = (
            self.db.query(func.coalesce(func.sum(RevenueRecord.insurer_commission), 0))
            .filter(
                RevenueRecord.org_id == org_id,
                func.lower(RevenueRecord.provider) == insurer.strip().lower(),
                RevenueRecord.commission_status != CommissionStatus.SUPERSEDED.value,
                RevenueRecord.calc_date >= start,
                RevenueRecord.calc_date < end,
            )
            .scalar()
        )
        return to_money(total)
