"""
Signature workflow domain -- states, ordering gate and completion policies.

Responsibility:
    Pure rules of the multi-party signing protocol:
    - workflow and signer state machines,
    - the signing-order gate (equal order = parallel, higher order waits
      for every lower-order required signer),
    - pluggable completion policies (all required signers, quorum, first
      signer),
    - input specs and frozen read DTOs.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

# =========================================================================
# Workflow lifecycle
# =========================================================================


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


WORKFLOW_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.DRAFT: frozenset({
        WorkflowStatus.SENT,
        WorkflowStatus.CANCELLED,
    }),
    WorkflowStatus.SENT: frozenset({
        WorkflowStatus.IN_PROGRESS,
        WorkflowStatus.DECLINED,
        WorkflowStatus.CANCELLED,
        WorkflowStatus.EXPIRED,
    }),
    WorkflowStatus.IN_PROGRESS: frozenset({
        WorkflowStatus.COMPLETED,
        WorkflowStatus.DECLINED,
        WorkflowStatus.CANCELLED,
        WorkflowStatus.EXPIRED,
    }),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.DECLINED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
    WorkflowStatus.EXPIRED: frozenset(),
}

TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.DECLINED,
    WorkflowStatus.CANCELLED,
    WorkflowStatus.EXPIRED,
})

SIGNABLE_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.SENT,
    WorkflowStatus.IN_PROGRESS,
})


class SignerStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"


SIGNER_TRANSITIONS: dict[SignerStatus, frozenset[SignerStatus]] = {
    SignerStatus.PENDING: frozenset({SignerStatus.SIGNED, SignerStatus.DECLINED}),
    SignerStatus.SIGNED: frozenset(),
    SignerStatus.DECLINED: frozenset(),
}


class SignatureEventType(str, Enum):
    SENT = "sent"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SignatureType(str, Enum):
    SIMPLE = "simple"
    DRAWN = "drawn"
    TYPED = "typed"
    CERTIFICATE = "certificate"


# =========================================================================
# Input specs
# =========================================================================


@dataclass(frozen=True)
class SignerSpec:
    """A signer to invite.  ``key`` links fields to the signer before ids exist."""

    key: str
    name: str
    email: str
    order: int = 1
    required: bool = True
    role: str | None = None
    user_id: UUID | None = None
    client_id: UUID | None = None


@dataclass(frozen=True)
class SignatureFieldSpec:
    signer_key: str
    page: int = 1
    x: float = 0.0
    y: float = 0.0
    width: float = 200.0
    height: float = 50.0
    signature_type: SignatureType = SignatureType.SIMPLE
    required: bool = True
    label: str | None = None


@dataclass(frozen=True)
class SignerDetails:
    """Where a signing or viewing action came from."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class WorkflowUpdate:
    title: str | None = None
    message: str | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] | None = None

    def changed_fields(self) -> list[str]:
        return [name for name, value in vars(self).items() if value is not None]


# =========================================================================
# Read DTOs
# =========================================================================


@dataclass(frozen=True)
class Signer:
    id: UUID
    workflow_id: UUID
    name: str
    email: str
    signing_order: int
    required: bool
    status: SignerStatus
    position: int
    role: str | None = None
    user_id: UUID | None = None
    client_id: UUID | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    decline_reason: str | None = None


@dataclass(frozen=True)
class SignatureField:
    id: UUID
    workflow_id: UUID
    signer_id: UUID
    page: int
    x: float
    y: float
    width: float
    height: float
    signature_type: SignatureType
    required: bool
    label: str | None = None
    signed_at: datetime | None = None
    signature_event_id: UUID | None = None

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None


@dataclass(frozen=True)
class SignatureEvent:
    id: UUID
    workflow_id: UUID
    seq: int
    event_type: SignatureEventType
    occurred_at: datetime
    signer_id: UUID | None = None
    field_id: UUID | None = None
    signature_type: SignatureType | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    payload_hash: str | None = None
    document_hash: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class SignatureWorkflow:
    id: UUID
    tenant_id: UUID
    contract_id: UUID
    title: str
    status: WorkflowStatus
    require_all_signers: bool
    completion_policy: str
    document_hash: str
    signers: tuple[Signer, ...]
    fields: tuple[SignatureField, ...]
    created_at: datetime
    created_by_id: UUID
    version: int
    quorum: int | None = None
    message: str | None = None
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    closed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES

    def signer(self, signer_id: UUID) -> Signer | None:
        return next((s for s in self.signers if s.id == signer_id), None)

    def fields_for(self, signer_id: UUID) -> tuple[SignatureField, ...]:
        return tuple(f for f in self.fields if f.signer_id == signer_id)


@dataclass(frozen=True)
class SignerView:
    """The part of a workflow one signer is allowed to see."""

    workflow_id: UUID
    contract_id: UUID
    title: str
    message: str | None
    status: WorkflowStatus
    expires_at: datetime | None
    signer: Signer
    fields: tuple[SignatureField, ...]
    can_sign: bool
    is_expired: bool
    blocked_by_order: bool


@dataclass(frozen=True)
class SignatureVerification:
    signature_event_id: UUID
    is_valid: bool
    payload_hash_matches: bool
    document_hash_matches: bool
    expected_payload_hash: str
    actual_payload_hash: str
    expected_document_hash: str
    actual_document_hash: str
    verified_at: datetime


@dataclass(frozen=True)
class WorkflowSweepResult:
    tenant_id: UUID
    expired: int = 0
    skipped: int = 0
    failed: int = 0


# =========================================================================
# Ordering gate
# =========================================================================


def blocking_signers(signer: Signer, signers: Iterable[Signer]) -> list[Signer]:
    """
    Required signers with a strictly lower order that have not signed yet.

    Signers with the same order never block each other.  Optional signers
    never block anyone.
    """
    return [
        other
        for other in signers
        if other.id != signer.id
        and other.required
        and other.signing_order < signer.signing_order
        and other.status != SignerStatus.SIGNED
    ]


def signers_to_invite(signers: Sequence[Signer]) -> list[Signer]:
    """Pending signers whose turn it currently is."""
    return [
        s for s in signers
        if s.status == SignerStatus.PENDING and not blocking_signers(s, signers)
    ]


def signer_completes_with(
    signer_fields: Iterable[SignatureField],
    newly_signed_field_id: UUID,
) -> bool:
    """
    True when signing ``newly_signed_field_id`` leaves no required field open.

    A signer without required fields is complete after any signature.
    """
    fields = list(signer_fields)
    required = [f for f in fields if f.required]
    if not required:
        return True
    return all(f.is_signed or f.id == newly_signed_field_id for f in required)


def sort_for_sending(signers: Iterable[Signer]) -> list[Signer]:
    return sorted(signers, key=lambda s: (s.signing_order, s.position))


# =========================================================================
# Completion policies
# =========================================================================


class CompletionPolicy(ABC):
    """Decides when a workflow's signatures amount to an executed contract."""

    name: str = ""

    @abstractmethod
    def is_satisfied(self, signers: Sequence[Signer]) -> bool:
        ...

    @property
    def quorum(self) -> int | None:
        return None


class AllRequiredSignersPolicy(CompletionPolicy):
    """Every required signer has signed (at least one signature overall)."""

    name = "all_required"

    def is_satisfied(self, signers: Sequence[Signer]) -> bool:
        required = [s for s in signers if s.required]
        if not required:
            return any(s.status == SignerStatus.SIGNED for s in signers)
        return all(s.status == SignerStatus.SIGNED for s in required)


class QuorumPolicy(CompletionPolicy):
    """At least ``minimum`` signers (required or not) have signed."""

    name = "quorum"

    def __init__(self, minimum: int):
        if minimum < 1:
            raise ValueError("quorum minimum must be at least 1")
        self._minimum = minimum

    @property
    def quorum(self) -> int:
        return self._minimum

    def is_satisfied(self, signers: Sequence[Signer]) -> bool:
        signed = sum(1 for s in signers if s.status == SignerStatus.SIGNED)
        return signed >= min(self._minimum, len(signers))


class FirstSignerPolicy(CompletionPolicy):
    """Any single signature completes the workflow."""

    name = "first_signer"

    def is_satisfied(self, signers: Sequence[Signer]) -> bool:
        return any(s.status == SignerStatus.SIGNED for s in signers)


def resolve_completion_policy(name: str, quorum: int | None = None) -> CompletionPolicy:
    """
    Build a policy object from its stored name.

    Raises:
        ValueError: unknown name, or quorum without a minimum.
    """
    if name == AllRequiredSignersPolicy.name:
        return AllRequiredSignersPolicy()
    if name == FirstSignerPolicy.name:
        return FirstSignerPolicy()
    if name == QuorumPolicy.name:
        if quorum is None:
            raise ValueError("quorum policy requires a minimum")
        return QuorumPolicy(quorum)
    raise ValueError(f"Unknown completion policy: {name}")
