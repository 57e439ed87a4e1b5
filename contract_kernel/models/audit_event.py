"""
Module: contract_kernel.models.audit_event
Responsibility: ORM persistence for the append-only, hash-chained audit log
    of every contract, workflow and renewal action.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: ORM listeners (db/immutability.py) reject UPDATE and DELETE.
    - Hash chain: hash = H(entity_type | entity_id | action | payload_hash |
      prev_hash), computed by AuditorService.
    - Total order: seq is globally unique and strictly increasing, allocated
      from the locked "audit_event" counter row.  Replaying an entity's
      events by seq reconstructs its status.

Minimum coverage (each produces at least one AuditEvent):
    - Contract creation, update, every status change, scheduled termination
    - Workflow creation, update, every workflow and signer status change
    - Renewal rule create/update/archive, proposal creation and decision
    - Every rejected attempt (ATTEMPT_REJECTED), so failures are traceable
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import TenantScopedBase, UTCDateTime, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Contract lifecycle
    CONTRACT_CREATED = "contract_created"
    CONTRACT_UPDATED = "contract_updated"
    CONTRACT_STATUS_CHANGED = "contract_status_changed"
    CONTRACT_TERMINATION_SCHEDULED = "contract_termination_scheduled"

    # Signature workflow
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_UPDATED = "workflow_updated"
    WORKFLOW_STATUS_CHANGED = "workflow_status_changed"
    SIGNER_STATUS_CHANGED = "signer_status_changed"

    # Renewals
    RENEWAL_RULE_CREATED = "renewal_rule_created"
    RENEWAL_RULE_UPDATED = "renewal_rule_updated"
    RENEWAL_RULE_ARCHIVED = "renewal_rule_archived"
    RENEWAL_PROPOSAL_CREATED = "renewal_proposal_created"
    RENEWAL_PROPOSAL_STATUS_CHANGED = "renewal_proposal_status_changed"
    RENEWAL_NOTICE_SENT = "renewal_notice_sent"

    # Failed operations
    ATTEMPT_REJECTED = "attempt_rejected"


STATUS_CHANGE_ACTIONS: frozenset[AuditAction] = frozenset({
    AuditAction.CONTRACT_STATUS_CHANGED,
    AuditAction.WORKFLOW_STATUS_CHANGED,
    AuditAction.SIGNER_STATUS_CHANGED,
    AuditAction.RENEWAL_PROPOSAL_STATUS_CHANGED,
})


class AuditEvent(TenantScopedBase):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "tenant_id", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    # "Contract", "SignatureWorkflow", "Signer", "RenewalRule", "RenewalProposal"
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
