"""
Renewal domain -- rules, proposals and the pure selection logic.

Responsibility:
    - RenewalRule / RenewalProposal types and the proposal state machine.
    - Rule matching against a contract's type and attributes.
    - Trigger window check (end_date - trigger_days has been reached).
    - Deterministic rule selection: lowest priority number wins, ties go
      to the rule created first.
    - Successor date and price computation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

from contract_kernel.domain.contract import Contract, ContractStatus, ContractType


class RenewalAction(str, Enum):
    AUTO_RENEW = "auto_renew"
    PROPOSE = "propose"
    NOTIFY_ONLY = "notify_only"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


PROPOSAL_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.PENDING: frozenset({
        ProposalStatus.ACCEPTED,
        ProposalStatus.REJECTED,
        ProposalStatus.EXPIRED,
    }),
    ProposalStatus.ACCEPTED: frozenset(),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.EXPIRED: frozenset(),
}


class ProposalDecision(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PriceAdjustmentType(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


MIN_TRIGGER_DAYS = 1
MAX_TRIGGER_DAYS = 365
MIN_RENEWAL_MONTHS = 1
MAX_RENEWAL_MONTHS = 120
MIN_PERCENTAGE = Decimal("-50")
MAX_PERCENTAGE = Decimal("100")

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceAdjustment:
    adjustment_type: PriceAdjustmentType = PriceAdjustmentType.NONE
    value: Decimal = Decimal("0")

    def describe(self) -> str:
        if self.adjustment_type is PriceAdjustmentType.PERCENTAGE:
            return f"{self.value}% adjustment"
        if self.adjustment_type is PriceAdjustmentType.FIXED_AMOUNT:
            return f"fixed adjustment of {self.value}"
        return "no price adjustment"


@dataclass(frozen=True)
class RenewalCriteria:
    """Which contracts a rule applies to.  Empty contract_types means all."""

    contract_types: tuple[ContractType, ...] = ()
    min_contract_value: Decimal | None = None
    max_contract_value: Decimal | None = None
    exclude_client_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class NotificationSettings:
    enabled: bool = True
    recipients: tuple[str, ...] = ()


@dataclass(frozen=True)
class RenewalRuleSpec:
    name: str
    action: RenewalAction
    trigger_days: int
    renewal_period_months: int
    criteria: RenewalCriteria = field(default_factory=RenewalCriteria)
    price_adjustment: PriceAdjustment = field(default_factory=PriceAdjustment)
    notification: NotificationSettings = field(default_factory=NotificationSettings)
    priority: int = 100
    is_active: bool = True
    description: str | None = None


@dataclass(frozen=True)
class RenewalRuleUpdate:
    name: str | None = None
    description: str | None = None
    action: RenewalAction | None = None
    trigger_days: int | None = None
    renewal_period_months: int | None = None
    criteria: RenewalCriteria | None = None
    price_adjustment: PriceAdjustment | None = None
    notification: NotificationSettings | None = None
    priority: int | None = None
    is_active: bool | None = None

    def changed_fields(self) -> list[str]:
        return [name for name, value in vars(self).items() if value is not None]


@dataclass(frozen=True)
class RenewalRule:
    id: UUID
    tenant_id: UUID
    name: str
    action: RenewalAction
    trigger_days: int
    renewal_period_months: int
    criteria: RenewalCriteria
    price_adjustment: PriceAdjustment
    notification: NotificationSettings
    priority: int
    is_active: bool
    creation_seq: int
    created_at: datetime
    description: str | None = None


@dataclass(frozen=True)
class RenewalProposal:
    id: UUID
    tenant_id: UUID
    source_contract_id: UUID
    status: ProposalStatus
    cycle_key: str
    proposed_start_date: date
    proposed_end_date: date
    current_value: Decimal
    proposed_value: Decimal
    created_at: datetime
    rule_id: UUID | None = None
    generated_contract_id: UUID | None = None
    adjustment_reason: str | None = None
    auto_approved: bool = False
    decided_at: datetime | None = None
    decided_by_id: UUID | None = None
    decision_notes: str | None = None


@dataclass(frozen=True)
class RenewalOutcome:
    """What one evaluate_contract call did."""

    contract_id: UUID
    action: RenewalAction | None
    rule_id: UUID | None = None
    proposal_id: UUID | None = None
    successor_contract_id: UUID | None = None
    notified: bool = False
    skipped_reason: str | None = None


@dataclass(frozen=True)
class RenewalSweepResult:
    tenant_id: UUID
    evaluated: int = 0
    proposals_created: int = 0
    auto_renewed: int = 0
    notifications: int = 0
    skipped: int = 0
    proposals_expired: int = 0
    failed: int = 0


@dataclass(frozen=True)
class UpcomingRenewal:
    contract_id: UUID
    title: str
    end_date: date
    days_until_expiry: int
    has_active_rule: bool


@dataclass(frozen=True)
class RenewalStats:
    total_proposals: int
    pending: int
    accepted: int
    auto_renewed: int
    rejected: int
    expired: int
    success_rate: Decimal
    upcoming: tuple[UpcomingRenewal, ...]


# =========================================================================
# Validation
# =========================================================================


def validate_price_adjustment(adjustment: PriceAdjustment) -> list[str]:
    if adjustment.adjustment_type is PriceAdjustmentType.PERCENTAGE:
        if not (MIN_PERCENTAGE <= adjustment.value <= MAX_PERCENTAGE):
            return [
                f"percentage adjustment must be between {MIN_PERCENTAGE} and {MAX_PERCENTAGE}"
            ]
    return []


def validate_rule_fields(
    name: str | None,
    trigger_days: int | None,
    renewal_period_months: int | None,
    criteria: RenewalCriteria | None,
    price_adjustment: PriceAdjustment | None,
    priority: int | None,
) -> list[str]:
    """Range checks shared by create and update (None = not supplied)."""
    errors: list[str] = []
    if name is not None and not name.strip():
        errors.append("name is required")
    if trigger_days is not None and not (MIN_TRIGGER_DAYS <= trigger_days <= MAX_TRIGGER_DAYS):
        errors.append(f"trigger_days must be between {MIN_TRIGGER_DAYS} and {MAX_TRIGGER_DAYS}")
    if renewal_period_months is not None and not (
        MIN_RENEWAL_MONTHS <= renewal_period_months <= MAX_RENEWAL_MONTHS
    ):
        errors.append(
            f"renewal_period_months must be between {MIN_RENEWAL_MONTHS} and {MAX_RENEWAL_MONTHS}"
        )
    if priority is not None and priority < 0:
        errors.append("priority must not be negative")
    if price_adjustment is not None:
        errors += validate_price_adjustment(price_adjustment)
    if criteria is not None:
        low, high = criteria.min_contract_value, criteria.max_contract_value
        if low is not None and high is not None and low > high:
            errors.append("min_contract_value is greater than max_contract_value")
    return errors


def validate_rule_spec(spec: RenewalRuleSpec) -> list[str]:
    return validate_rule_fields(
        spec.name,
        spec.trigger_days,
        spec.renewal_period_months,
        spec.criteria,
        spec.price_adjustment,
        spec.priority,
    )


# =========================================================================
# Matching and selection
# =========================================================================


def criteria_match(criteria: RenewalCriteria, contract: Contract) -> bool:
    if criteria.contract_types and contract.contract_type not in criteria.contract_types:
        return False
    if criteria.min_contract_value is not None and contract.value < criteria.min_contract_value:
        return False
    if criteria.max_contract_value is not None and contract.value > criteria.max_contract_value:
        return False
    if criteria.exclude_client_ids:
        client = contract.client
        if client is not None and client.client_id in criteria.exclude_client_ids:
            return False
    return True


def trigger_date(end_date: date, trigger_days: int) -> date:
    return end_date - timedelta(days=trigger_days)


def in_trigger_window(end_date: date | None, trigger_days: int, today: date) -> bool:
    """The window opens ``trigger_days`` before end_date and closes on end_date."""
    if end_date is None:
        return False
    return trigger_date(end_date, trigger_days) <= today <= end_date


def select_rule(
    rules: Iterable[RenewalRule],
    contract: Contract,
    today: date,
) -> RenewalRule | None:
    """
    Pick the rule that governs ``contract`` today, or None.

    Only ACTIVE contracts are renewable.  Among active, matching rules whose
    window has opened, the lowest priority number wins; ties go to the
    lowest creation_seq (the rule created first).
    """
    if contract.status != ContractStatus.ACTIVE:
        return None
    candidates = [
        rule
        for rule in rules
        if rule.is_active
        and criteria_match(rule.criteria, contract)
        and in_trigger_window(contract.end_date, rule.trigger_days, today)
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda r: (r.priority, r.creation_seq))


def cycle_key(contract_id: UUID, end_date: date) -> str:
    """Identifies one renewal cycle: a contract renews at most once per end date."""
    return f"{contract_id}:{end_date.isoformat()}"


# =========================================================================
# Successor terms
# =========================================================================


def add_months(start: date, months: int) -> date:
    """Shift by calendar months, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def adjust_price(value: Decimal, adjustment: PriceAdjustment) -> Decimal:
    """Apply a price adjustment; the result is rounded to cents and never negative."""
    if adjustment.adjustment_type is PriceAdjustmentType.PERCENTAGE:
        new_value = value * (Decimal("1") + adjustment.value / Decimal("100"))
    elif adjustment.adjustment_type is PriceAdjustmentType.FIXED_AMOUNT:
        new_value = value + adjustment.value
    else:
        new_value = value
    return max(Decimal("0"), new_value).quantize(_CENT, rounding=ROUND_HALF_UP)


def successor_dates(source_end_date: date, renewal_period_months: int) -> tuple[date, date]:
    """The successor starts on the source's end date."""
    return source_end_date, add_months(source_end_date, renewal_period_months)
