"""Splitting an insurer commission between the parties on a policy."""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from brokerdesk.models.policy import SourceType
from brokerdesk.services.errors import NegativeShareError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SplitParties:
    """Contracted percentages of the insurer commission.

    ``reporting_override_pct`` is None when the agent/MISP has no reporting
    employee.
    """
    agent_share_pct: Decimal = Decimal("0")
    misp_share_pct: Decimal = Decimal("0")
    employee_incentive_pct: Decimal = Decimal("0")
    reporting_override_pct: Optional[Decimal] = None

    @classmethod
    def from_policy(cls, policy) -> "SplitParties":
        source = SourceType(policy.source_type)
        if source == SourceType.AGENT and policy.agent is not None:
            rep = policy.agent.reporting_employee
            return cls(
                agent_share_pct=Decimal(str(policy.agent.commission_share_pct or 0)),
                reporting_override_pct=Decimal(str(rep.override_pct or 0)) if rep is not None else None,
            )
        if source == SourceType.MISP and policy.misp is not None:
            rep = policy.misp.reporting_employee
            return cls(
                misp_share_pct=Decimal(str(policy.misp.commission_share_pct or 0)),
                reporting_override_pct=Decimal(str(rep.override_pct or 0)) if rep is not None else None,
            )
        if source == SourceType.EMPLOYEE and policy.employee is not None:
            return cls(employee_incentive_pct=Decimal(str(policy.employee.incentive_share_pct or 0)))
        return cls()


@dataclass(frozen=True)
class SplitResult:
    agent_commission: Decimal
    employee_commission: Decimal
    reporting_employee_commission: Decimal
    broker_share: Decimal

    @property
    def total(self) -> Decimal:
        return (
            self.agent_commission
            + self.employee_commission
            + self.reporting_employee_commission
            + self.broker_share
        )


def _pct_of(amount: Decimal, pct) -> Decimal:
    return to_money(amount * Decimal(str(pct or 0)) / HUNDRED)


def split_commission(insurer_commission, source_type, parties: Optional[SplitParties] = None) -> SplitResult:
    """Split ``insurer_commission`` by sourcing channel.

    agent/misp: intermediary share + reporting employee override, broker keeps
    the rest. employee: incentive, broker keeps the rest. direct: all broker.
    The MISP payout is carried in ``agent_commission``. broker_share is
    computed last so the four parts always add back to the total.

    Raises:
        NegativeShareError: any part comes out below zero
    """
    total = to_money(insurer_commission)
    source = SourceType(source_type)
    parties = parties or SplitParties()

    agent = employee = reporting = Decimal("0.00")
    if source == SourceType.AGENT:
        agent = _pct_of(total, parties.agent_share_pct)
        if parties.reporting_override_pct is not None:
            reporting = _pct_of(total, parties.reporting_override_pct)
    elif source == SourceType.MISP:
        agent = _pct_of(total, parties.misp_share_pct)
        if parties.reporting_override_pct is not None:
            reporting = _pct_of(total, parties.reporting_override_pct)
    elif source == SourceType.EMPLOYEE:
        employee = _pct_of(total, parties.employee_incentive_pct)

    broker = total - agent - employee - reporting
    result = SplitResult(
        agent_commission=agent,
        employee_commission=employee,
        reporting_employee_commission=reporting,
        broker_share=broker,
    )

    negatives = {
        name: value for name, value in (
            ("agent_commission", agent),
            ("employee_commission", employee),
            ("reporting_employee_commission", reporting),
            ("broker_share", broker),
        ) if value < 0
    }
    if negatives:
        detail = ", ".join(f"{k}={v}" for k, v in negatives.items())
        raise NegativeShareError(f"Negative {source.value} split of {total}: {detail}")

    return result
