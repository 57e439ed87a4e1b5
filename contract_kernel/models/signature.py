"""
Module: contract_kernel.models.signature
Responsibility: ORM persistence for signature workflows, signers, signature
    fields and the append-only signature event trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one non-terminal workflow per contract (partial unique index).
    - Workflow and signer status change only through conditional UPDATEs in
      SignatureWorkflowEngine.
    - SignatureEvent rows are the legal audit trail: append-only, rejected
      on UPDATE/DELETE by the listeners in db/immutability.py.
    - A field is signed at most once (signature_event_id is write-once,
      guarded by a conditional UPDATE on signature_event_id IS NULL).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contract_kernel.db.base import TenantScopedBase, TrackedBase, UTCDateTime, UUIDString
from contract_kernel.domain.signature import (
    SignatureEvent,
    SignatureEventType,
    SignatureField,
    SignatureType,
    SignatureWorkflow,
    Signer,
    SignerStatus,
    WorkflowStatus,
)

_OPEN_WORKFLOW = "status IN ('draft', 'sent', 'in_progress')"


class SignatureWorkflowModel(TrackedBase):
    """A multi-party signing session bound to one contract."""

    __tablename__ = "signature_workflows"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'sent', 'in_progress', 'completed', "
            "'declined', 'cancelled', 'expired')",
            name="ck_signature_workflows_valid_status",
        ),
        Index(
            "uq_signature_workflows_open_per_contract",
            "contract_id",
            unique=True,
            postgresql_where=text(_OPEN_WORKFLOW),
            sqlite_where=text(_OPEN_WORKFLOW),
        ),
        Index("idx_workflows_tenant_status", "tenant_id", "status"),
        Index("idx_workflows_expiry", "tenant_id", "expires_at"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_content: Mapped[str] = mapped_column(
        Text, nullable=False,
        doc="Document version presented for signing",
    )
    document_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WorkflowStatus.DRAFT.value,
    )
    require_all_signers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    completion_policy: Mapped[str] = mapped_column(String(30), nullable=False)
    quorum: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
        doc="When the workflow reached DECLINED, CANCELLED or EXPIRED",
    )
    attributes: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    signers: Mapped[list[SignerModel]] = relationship(
        "SignerModel",
        order_by="SignerModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    fields: Mapped[list[SignatureFieldModel]] = relationship(
        "SignatureFieldModel",
        order_by="SignatureFieldModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<SignatureWorkflow {self.id} contract={self.contract_id} status={self.status}>"

    def to_dto(self) -> SignatureWorkflow:
        return SignatureWorkflow(
            id=self.id,
            tenant_id=self.tenant_id,
            contract_id=self.contract_id,
            title=self.title,
            status=WorkflowStatus(self.status),
            require_all_signers=self.require_all_signers,
            completion_policy=self.completion_policy,
            document_hash=self.document_hash,
            signers=tuple(s.to_dto() for s in self.signers),
            fields=tuple(f.to_dto() for f in self.fields),
            created_at=self.created_at,
            created_by_id=self.created_by_id,
            version=self.version,
            quorum=self.quorum,
            message=self.message,
            expires_at=self.expires_at,
            completed_at=self.completed_at,
            closed_at=self.closed_at,
            metadata=dict(self.attributes or {}),
        )


class SignerModel(TenantScopedBase):
    """A person invited to sign; equal signing_order means parallel signing."""

    __tablename__ = "workflow_signers"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'signed', 'declined')",
            name="ck_workflow_signers_valid_status",
        ),
        Index("idx_signers_workflow", "workflow_id", "signing_order"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("signature_workflows.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    signing_order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    client_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SignerStatus.PENDING.value,
    )
    signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    declined_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    def to_dto(self) -> Signer:
        return Signer(
            id=self.id,
            workflow_id=self.workflow_id,
            name=self.name,
            email=self.email,
            signing_order=self.signing_order,
            required=self.required,
            status=SignerStatus(self.status),
            position=self.position,
            role=self.role,
            user_id=self.user_id,
            client_id=self.client_id,
            signed_at=self.signed_at,
            declined_at=self.declined_at,
            decline_reason=self.decline_reason,
        )


class SignatureFieldModel(TenantScopedBase):
    """A place in the document that one signer must (or may) sign."""

    __tablename__ = "signature_fields"

    __table_args__ = (
        Index("idx_fields_workflow_signer", "workflow_id", "signer_id"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("signature_workflows.id"), nullable=False,
    )
    signer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_signers.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    page: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    x: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    y: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    width: Mapped[float] = mapped_column(Float, nullable=False)
    height: Mapped[float] = mapped_column(Float, nullable=False)
    signature_type: Mapped[str] = mapped_column(String(20), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    label: Mapped[str | None] = mapped_column(String(200), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    signature_event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self) -> SignatureField:
        return SignatureField(
            id=self.id,
            workflow_id=self.workflow_id,
            signer_id=self.signer_id,
            page=self.page,
            x=self.x,
            y=self.y,
            width=self.width,
            height=self.height,
            signature_type=SignatureType(self.signature_type),
            required=self.required,
            label=self.label,
            signed_at=self.signed_at,
            signature_event_id=self.signature_event_id,
        )


class SignatureEventModel(TenantScopedBase):
    """
    One entry of a workflow's legal audit trail.

    Append-only.  Ordered by seq, which comes from the locked
    "signature_event" counter row and is therefore strictly increasing in
    insertion order.
    """

    __tablename__ = "signature_events"

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('sent', 'viewed', 'signed', 'declined', 'expired', 'cancelled')",
            name="ck_signature_events_valid_type",
        ),
        Index("idx_signature_events_workflow", "workflow_id", "seq"),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("signature_workflows.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    signer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    signer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    field_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    signature_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    signature_data: Mapped[str | None] = mapped_column(
        Text, nullable=True,
        doc="Captured signature (typed text, drawn image data, certificate blob)",
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    payload_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    document_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    detail: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def to_dto(self) -> SignatureEvent:
        return SignatureEvent(
            id=self.id,
            workflow_id=self.workflow_id,
            seq=self.seq,
            event_type=SignatureEventType(self.event_type),
            occurred_at=self.occurred_at,
            signer_id=self.signer_id,
            field_id=self.field_id,
            signature_type=SignatureType(self.signature_type) if self.signature_type else None,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            payload_hash=self.payload_hash,
            document_hash=self.document_hash,
            detail=self.detail,
        )
