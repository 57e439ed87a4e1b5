"""
Contract domain types -- lifecycle states, transition table, specs and DTOs.

Responsibility:
    Pure definitions for the contract aggregate: status enum and its
    transition edges, party roles, input specs and frozen read DTOs, and
    the validation rules applied before anything is written.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Status only moves along CONTRACT_TRANSITIONS edges.
    - A contract has at least two parties, exactly one CLIENT and exactly
      one COMPANY, and party emails are unique within the contract.
    - end_date (if present) is on or after start_date.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# =========================================================================
# Lifecycle
# =========================================================================


class ContractStatus(str, Enum):
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    ContractStatus.DRAFT: frozenset({
        ContractStatus.PENDING_SIGNATURE,
        ContractStatus.ACTIVE,
        ContractStatus.CANCELLED,
    }),
    ContractStatus.PENDING_SIGNATURE: frozenset({
        ContractStatus.ACTIVE,
        ContractStatus.CANCELLED,
    }),
    ContractStatus.ACTIVE: frozenset({
        ContractStatus.SUSPENDED,
        ContractStatus.TERMINATED,
        ContractStatus.EXPIRED,
    }),
    ContractStatus.SUSPENDED: frozenset({
        ContractStatus.ACTIVE,
        ContractStatus.TERMINATED,
        ContractStatus.EXPIRED,
    }),
    ContractStatus.TERMINATED: frozenset(),
    ContractStatus.CANCELLED: frozenset(),
    ContractStatus.EXPIRED: frozenset(),
}

TERMINAL_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({
    ContractStatus.TERMINATED,
    ContractStatus.CANCELLED,
    ContractStatus.EXPIRED,
})

# Content (title, body, parties, value, dates) is frozen once signed
EDITABLE_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({
    ContractStatus.DRAFT,
    ContractStatus.PENDING_SIGNATURE,
})


def can_transition(current: ContractStatus, target: ContractStatus) -> bool:
    return target in CONTRACT_TRANSITIONS[current]


class ContractType(str, Enum):
    SERVICE = "service"
    LEASE = "lease"
    MEMBERSHIP = "membership"
    EVENT_SPACE = "event_space"
    MEETING_ROOM = "meeting_room"
    CUSTOM = "custom"


class PartyRole(str, Enum):
    CLIENT = "client"
    COMPANY = "company"
    WITNESS = "witness"
    GUARANTOR = "guarantor"


REQUIRED_PARTY_ROLES: frozenset[PartyRole] = frozenset({
    PartyRole.CLIENT,
    PartyRole.COMPANY,
})


class RenewalStatus(str, Enum):
    """Outcome marker for the contract's current renewal cycle."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    AUTO_RENEWED = "auto_renewed"


# =========================================================================
# Input specs
# =========================================================================


@dataclass(frozen=True)
class PartySpec:
    name: str
    email: str
    role: PartyRole
    user_id: UUID | None = None
    client_id: UUID | None = None


@dataclass(frozen=True)
class TermSpec:
    heading: str
    body: str


@dataclass(frozen=True)
class ContractSpec:
    """Everything needed to create a contract in DRAFT.

    Either ``body`` or ``template_id`` must be given; a template is rendered
    through the injected TemplateRenderer at creation time.
    """

    contract_type: ContractType
    title: str
    start_date: date
    parties: tuple[PartySpec, ...]
    terms: tuple[TermSpec, ...] = ()
    body: str | None = None
    template_id: str | None = None
    template_variables: dict[str, Any] = field(default_factory=dict)
    end_date: date | None = None
    auto_renew: bool = False
    renewal_period_months: int | None = None
    value: Decimal = Decimal("0")
    currency: str = "USD"
    requires_signature: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    source_contract_id: UUID | None = None


@dataclass(frozen=True)
class ContractUpdate:
    """Partial update; None means "leave unchanged"."""

    title: str | None = None
    body: str | None = None
    value: Decimal | None = None
    currency: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    auto_renew: bool | None = None
    renewal_period_months: int | None = None
    terms: tuple[TermSpec, ...] | None = None
    metadata: dict[str, Any] | None = None

    def changed_fields(self) -> list[str]:
        return [name for name, value in vars(self).items() if value is not None]


# =========================================================================
# Read DTOs
# =========================================================================


@dataclass(frozen=True)
class Party:
    id: UUID
    position: int
    name: str
    email: str
    role: PartyRole
    user_id: UUID | None = None
    client_id: UUID | None = None
    signed_at: datetime | None = None


@dataclass(frozen=True)
class Term:
    id: UUID
    position: int
    heading: str
    body: str


@dataclass(frozen=True)
class Contract:
    id: UUID
    tenant_id: UUID
    contract_type: ContractType
    title: str
    body: str
    status: ContractStatus
    start_date: date
    end_date: date | None
    value: Decimal
    currency: str
    auto_renew: bool
    renewal_period_months: int | None
    requires_signature: bool
    renewal_status: RenewalStatus
    parties: tuple[Party, ...]
    terms: tuple[Term, ...]
    metadata: dict[str, Any]
    created_at: datetime
    created_by_id: UUID
    version: int
    source_contract_id: UUID | None = None
    template_id: str | None = None
    activated_at: datetime | None = None
    suspended_at: datetime | None = None
    terminated_at: datetime | None = None
    cancelled_at: datetime | None = None
    expired_at: datetime | None = None
    termination_effective_date: date | None = None
    status_reason: str | None = None
    renewal_notice_cycle: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CONTRACT_STATUSES

    @property
    def client(self) -> Party | None:
        return next((p for p in self.parties if p.role == PartyRole.CLIENT), None)


@dataclass(frozen=True)
class ContractFilter:
    status: ContractStatus | None = None
    contract_type: ContractType | None = None
    client_id: UUID | None = None
    expiring_within_days: int | None = None
    search: str | None = None


@dataclass(frozen=True)
class Page:
    """A page of results plus pagination totals."""

    items: tuple
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class StatusBreakdown:
    status: ContractStatus
    count: int
    percentage: Decimal


@dataclass(frozen=True)
class TypeBreakdown:
    contract_type: ContractType
    count: int
    value: Decimal


@dataclass(frozen=True)
class ContractStats:
    total: int
    active: int
    pending_signature: int
    expiring_this_month: int
    total_value: Decimal
    monthly_value: Decimal
    by_status: tuple[StatusBreakdown, ...]
    by_type: tuple[TypeBreakdown, ...]


@dataclass(frozen=True)
class ContractSweepResult:
    """What one expiration sweep pass did for a tenant."""

    tenant_id: UUID
    expired: int = 0
    terminated: int = 0
    skipped: int = 0
    failed: int = 0


# =========================================================================
# Validation
# =========================================================================

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

MAX_TITLE_LENGTH = 200
MAX_RENEWAL_PERIOD_MONTHS = 120


def validate_parties(parties: tuple[PartySpec, ...] | list[PartySpec]) -> list[str]:
    errors: list[str] = []
    if len(parties) < 2:
        errors.append("a contract requires at least two parties")

    seen_emails: set[str] = set()
    for index, party in enumerate(parties):
        if not party.name or not party.name.strip():
            errors.append(f"party {index}: name is required")
        if not _EMAIL_RE.match(party.email or ""):
            errors.append(f"party {index}: invalid email '{party.email}'")
        email = (party.email or "").strip().lower()
        if email in seen_emails:
            errors.append(f"party {index}: duplicate email '{party.email}'")
        seen_emails.add(email)

    for role in sorted(REQUIRED_PARTY_ROLES, key=lambda r: r.value):
        count = sum(1 for p in parties if p.role == role)
        if count != 1:
            errors.append(f"exactly one {role.value} party is required, found {count}")
    return errors


def validate_dates(start_date: date | None, end_date: date | None) -> list[str]:
    if start_date is None:
        return ["start_date is required"]
    if end_date is not None and end_date < start_date:
        return [f"end_date {end_date} is before start_date {start_date}"]
    return []


def validate_commercials(
    value: Decimal | None,
    currency: str | None,
    renewal_period_months: int | None,
) -> list[str]:
    errors: list[str] = []
    if value is not None and value < 0:
        errors.append("value must not be negative")
    if currency is not None and not _CURRENCY_RE.match(currency):
        errors.append(f"currency '{currency}' is not an ISO 4217 code")
    if renewal_period_months is not None and not (
        1 <= renewal_period_months <= MAX_RENEWAL_PERIOD_MONTHS
    ):
        errors.append(
            f"renewal_period_months must be between 1 and {MAX_RENEWAL_PERIOD_MONTHS}"
        )
    return errors


def validate_title(title: str | None) -> list[str]:
    if title is None or not title.strip():
        return ["title is required"]
    if len(title) > MAX_TITLE_LENGTH:
        return [f"title longer than {MAX_TITLE_LENGTH} characters"]
    return []


def validate_terms(terms: tuple[TermSpec, ...]) -> list[str]:
    return [
        f"term {index}: heading is required"
        for index, term in enumerate(terms)
        if not term.heading or not term.heading.strip()
    ]


def validate_contract_spec(spec: ContractSpec) -> list[str]:
    """Collect every problem with ``spec``; an empty list means valid."""
    errors = validate_title(spec.title)
    errors += validate_parties(spec.parties)
    errors += validate_dates(spec.start_date, spec.end_date)
    errors += validate_commercials(spec.value, spec.currency, spec.renewal_period_months)
    errors += validate_terms(spec.terms)
    if spec.body is None and spec.template_id is None:
        errors.append("either body or template_id is required")
    if spec.auto_renew and spec.end_date is None:
        errors.append("auto_renew requires an end_date")
    return errors
