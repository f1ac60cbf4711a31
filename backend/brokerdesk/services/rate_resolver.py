"""Base commission rate resolution against the line-of-business payout grids.

Resolution:
1. Keep active entries for the product type + provider whose validity window
   contains the evaluation date (both ends inclusive, open ``valid_to``).
2. Drop entries with a populated dimension that does not match the policy.
3. Rank by specificity (number of populated, matching dimensions), then by
   most recent ``valid_from``.
4. A tie on both is an error; we never pick an arbitrary row.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import ClassVar, Iterable, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from brokerdesk.models.grid import ProductType, GRID_MODELS
from brokerdesk.models.policy import Policy
from brokerdesk.services.errors import RateNotFoundError, AmbiguousRateError

logger = logging.getLogger(__name__)


def _norm(val) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip().casefold()
    return s or None


def _to_decimal(val) -> Optional[Decimal]:
    if val is None or val == "":
        return None
    return val if isinstance(val, Decimal) else Decimal(str(val))


# ── Policy context (one variant per product type) ───────────────────

@dataclass(frozen=True)
class MotorContext:
    evaluation_date: date
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None
    vehicle_make: Optional[str] = None
    fuel_type: Optional[str] = None

    product_type: ClassVar[ProductType] = ProductType.MOTOR


@dataclass(frozen=True)
class HealthContext:
    evaluation_date: date
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None
    sum_insured: Optional[Decimal] = None

    product_type: ClassVar[ProductType] = ProductType.HEALTH


@dataclass(frozen=True)
class LifeContext:
    evaluation_date: date
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None
    premium: Optional[Decimal] = None
    ppt: Optional[int] = None
    pt: Optional[int] = None

    product_type: ClassVar[ProductType] = ProductType.LIFE


PolicyContext = Union[MotorContext, HealthContext, LifeContext]


def context_for_policy(policy: Policy) -> PolicyContext:
    """Build the resolver context from a stored policy row."""
    product_type = ProductType(policy.product_type)
    common = dict(
        evaluation_date=policy.issue_date,
        product_sub_type=policy.product_sub_type,
        plan_name=policy.plan_name,
    )
    if product_type == ProductType.MOTOR:
        return MotorContext(vehicle_make=policy.vehicle_make, fuel_type=policy.fuel_type, **common)
    if product_type == ProductType.HEALTH:
        return HealthContext(sum_insured=_to_decimal(policy.sum_insured), **common)
    return LifeContext(premium=_to_decimal(policy.premium), ppt=policy.ppt, pt=policy.pt, **common)


# ── Grid entries (one variant per product type) ─────────────────────

@dataclass(frozen=True)
class GridEntry:
    id: int
    provider: str
    commission_rate: Decimal
    reward_rate: Decimal
    valid_from: date
    valid_to: Optional[date]
    is_active: bool
    product_sub_type: Optional[str] = None
    plan_name: Optional[str] = None

    product_type: ClassVar[ProductType]

    @property
    def entry_key(self) -> str:
        return f"{self.product_type.value}:{self.id}"

    def is_valid_on(self, on: date) -> bool:
        return self.valid_from <= on and (self.valid_to is None or on <= self.valid_to)

    def _common_score(self, ctx) -> Optional[int]:
        score = 0
        for field in ("product_sub_type", "plan_name"):
            want = _norm(getattr(self, field))
            if want is None:
                continue
            if want != _norm(getattr(ctx, field)):
                return None
            score += 1
        return score

    def _dimension_score(self, ctx) -> Optional[int]:
        raise NotImplementedError

    def specificity(self, ctx: PolicyContext) -> Optional[int]:
        """Number of populated dimensions matching ``ctx``; None when one mismatches."""
        common = self._common_score(ctx)
        if common is None:
            return None
        dims = self._dimension_score(ctx)
        if dims is None:
            return None
        return common + dims

    @classmethod
    def _base_kwargs(cls, row) -> dict:
        return dict(
            id=row.id,
            provider=row.provider,
            commission_rate=_to_decimal(row.commission_rate) or Decimal("0"),
            reward_rate=_to_decimal(row.reward_rate) or Decimal("0"),
            valid_from=row.valid_from,
            valid_to=row.valid_to,
            is_active=bool(row.is_active),
            product_sub_type=row.product_sub_type,
            plan_name=row.plan_name,
        )


def _in_band(value: Optional[Decimal], low: Optional[Decimal], high: Optional[Decimal]) -> Optional[int]:
    if low is None and high is None:
        return 0
    if value is None:
        return None
    if low is not None and value < low:
        return None
    if high is not None and value > high:
        return None
    return 1


@dataclass(frozen=True)
class MotorGridEntry(GridEntry):
    vehicle_make: Optional[str] = None
    fuel_type: Optional[str] = None

    product_type: ClassVar[ProductType] = ProductType.MOTOR

    def _dimension_score(self, ctx: MotorContext) -> Optional[int]:
        score = 0
        for field in ("vehicle_make", "fuel_type"):
            want = _norm(getattr(self, field))
            if want is None:
                continue
            if want != _norm(getattr(ctx, field)):
                return None
            score += 1
        return score

    @classmethod
    def from_row(cls, row) -> "MotorGridEntry":
        return cls(vehicle_make=row.vehicle_make, fuel_type=row.fuel_type, **cls._base_kwargs(row))


@dataclass(frozen=True)
class HealthGridEntry(GridEntry):
    sum_insured_min: Optional[Decimal] = None
    sum_insured_max: Optional[Decimal] = None

    product_type: ClassVar[ProductType] = ProductType.HEALTH

    def _dimension_score(self, ctx: HealthContext) -> Optional[int]:
        return _in_band(ctx.sum_insured, self.sum_insured_min, self.sum_insured_max)

    @classmethod
    def from_row(cls, row) -> "HealthGridEntry":
        return cls(
            sum_insured_min=_to_decimal(row.sum_insured_min),
            sum_insured_max=_to_decimal(row.sum_insured_max),
            **cls._base_kwargs(row),
        )


@dataclass(frozen=True)
class LifeGridEntry(GridEntry):
    premium_start_price: Optional[Decimal] = None
    premium_end_price: Optional[Decimal] = None
    ppt: Optional[int] = None
    pt: Optional[int] = None

    product_type: ClassVar[ProductType] = ProductType.LIFE

    def _dimension_score(self, ctx: LifeContext) -> Optional[int]:
        score = _in_band(ctx.premium, self.premium_start_price, self.premium_end_price)
        if score is None:
            return None
        for field in ("ppt", "pt"):
            want = getattr(self, field)
            if want is None:
                continue
            if want != getattr(ctx, field):
                return None
            score += 1
        return score

    @classmethod
    def from_row(cls, row) -> "LifeGridEntry":
        return cls(
            premium_start_price=_to_decimal(row.premium_start_price),
            premium_end_price=_to_decimal(row.premium_end_price),
            ppt=row.ppt,
            pt=row.pt,
            **cls._base_kwargs(row),
        )


ENTRY_TYPES = {
    ProductType.MOTOR: MotorGridEntry,
    ProductType.HEALTH: HealthGridEntry,
    ProductType.LIFE: LifeGridEntry,
}


@dataclass(frozen=True)
class RateResolution:
    rate: Decimal
    reward_rate: Decimal
    matched_entry_id: str
    specificity: int = 0


# ── Resolution ──────────────────────────────────────────────────────

def resolve_base_rate(
    product_type: ProductType,
    provider: str,
    context: PolicyContext,
    entries: Iterable[GridEntry],
) -> RateResolution:
    """Pick the single applicable grid entry for a policy.

    Raises:
        RateNotFoundError: nothing matches
        AmbiguousRateError: best candidates tie on specificity and valid_from
    """
    product_type = ProductType(product_type)
    if context.product_type != product_type:
        raise ValueError(
            f"Context for {context.product_type.value} passed to a {product_type.value} resolution"
        )

    on = context.evaluation_date
    want_provider = _norm(provider)

    ranked: List[tuple] = []
    for entry in entries:
        if entry.product_type != product_type:
            continue
        if not entry.is_active or _norm(entry.provider) != want_provider:
            continue
        if not entry.is_valid_on(on):
            continue
        score = entry.specificity(context)
        if score is None:
            continue
        ranked.append((score, entry.valid_from, entry))

    if not ranked:
        raise RateNotFoundError(
            f"No active {product_type.value} grid entry for provider '{provider}' on {on.isoformat()}"
        )

    ranked.sort(key=lambda r: (r[0], r[1]), reverse=True)
    best_score, best_from, best = ranked[0]
    tied = [r[2] for r in ranked if r[0] == best_score and r[1] == best_from]
    if len(tied) > 1:
        ids = sorted(e.entry_key for e in tied)
        raise AmbiguousRateError(
            f"{len(tied)} {product_type.value} grid entries for '{provider}' are equally specific "
            f"and valid from {best_from.isoformat()}: {', '.join(ids)}",
            entry_ids=ids,
        )

    return RateResolution(
        rate=best.commission_rate,
        reward_rate=best.reward_rate,
        matched_entry_id=best.entry_key,
        specificity=best_score,
    )


class RateResolver:
    """Loads grid candidates for a tenant and resolves against them."""

    def __init__(self, db: Session):
        self.db = db

    def load_entries(self, org_id: str, product_type: ProductType, provider: str, on: date) -> List[GridEntry]:
        product_type = ProductType(product_type)
        model = GRID_MODELS[product_type]
        rows = (
            self.db.query(model)
            .filter(
                model.org_id == org_id,
                func.lower(model.provider) == (provider or "").strip().lower(),
                model.is_active == True,
                model.valid_from <= on,
                or_(model.valid_to.is_(None), model.valid_to >= on),
            )
            .all()
        )
        entry_cls = ENTRY_TYPES[product_type]
        return [entry_cls.from_row(r) for r in rows]

    def resolve(self, org_id: str, product_type: ProductType, provider: str, context: PolicyContext) -> RateResolution:
        entries = self.load_entries(org_id, product_type, provider, context.evaluation_date)
        return resolve_base_rate(product_type, provider, context, entries)

    def resolve_for_policy(self, policy: Policy) -> RateResolution:
        return self.resolve(policy.org_id, policy.product_type, policy.provider, context_for_policy(policy))
