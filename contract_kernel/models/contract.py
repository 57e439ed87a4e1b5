"""
Module: contract_kernel.models.contract
Responsibility: ORM persistence for contracts, their parties and terms.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status is one of ContractStatus values (CHECK constraint); changes go
      through ContractLifecycleManager's conditional UPDATE on
      (id, tenant_id, status), never through attribute assignment.
    - end_date >= start_date (CHECK constraint, also validated upstream).
    - Parties and terms are owned by the contract and ordered by position.

Failure modes:
    - IntegrityError on CHECK violations if validation is bypassed.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contract_kernel.db.base import TenantScopedBase, TrackedBase, UTCDateTime, UUIDString
from contract_kernel.domain.contract import (
    Contract,
    ContractStatus,
    ContractType,
    Party,
    PartyRole,
    RenewalStatus,
    Term,
)


class ContractModel(TrackedBase):
    """
    Tenant-owned agreement record, the aggregate root of the kernel.

    Status, renewal status and the lifecycle timestamps are explicit columns
    maintained in the same transaction as the related rows (workflows,
    proposals), so status and relationships can never disagree.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending_signature', 'active', 'suspended', "
            "'terminated', 'cancelled', 'expired')",
            name="ck_contracts_valid_status",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_contracts_end_after_start",
        ),
        Index("idx_contracts_tenant_status", "tenant_id", "status"),
        # Expiration and renewal sweeps scan by end date
        Index("idx_contracts_tenant_end_date", "tenant_id", "end_date"),
        Index("idx_contracts_source", "source_contract_id"),
    )

    # =========================================================================
    # Identity and content
    # =========================================================================

    contract_type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    template_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # =========================================================================
    # Term and commercials
    # =========================================================================

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    renewal_period_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requires_signature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ContractStatus.DRAFT.value,
    )
    status_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    suspended_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    terminated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    termination_effective_date: Mapped[date | None] = mapped_column(
        Date, nullable=True,
        doc="Future-dated termination, applied by the expiration sweep",
    )

    # =========================================================================
    # Renewal linkage (identifiers only)
    # =========================================================================

    renewal_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RenewalStatus.NONE.value,
    )
    source_contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
        doc="Contract this one renews, if any",
    )
    renewal_notice_cycle: Mapped[str | None] = mapped_column(
        String(80), nullable=True,
        doc="Cycle key of the last NOTIFY_ONLY renewal notice sent",
    )

    attributes: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    parties: Mapped[list[PartyModel]] = relationship(
        "PartyModel",
        order_by="PartyModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    terms: Mapped[list[TermModel]] = relationship(
        "TermModel",
        order_by="TermModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Contract {self.id} {self.contract_type} status={self.status}>"

    def to_dto(self) -> Contract:
        return Contract(
            id=self.id,
            tenant_id=self.tenant_id,
            contract_type=ContractType(self.contract_type),
            title=self.title,
            body=self.body,
            status=ContractStatus(self.status),
            start_date=self.start_date,
            end_date=self.end_date,
            value=Decimal(self.value),
            currency=self.currency,
            auto_renew=self.auto_renew,
            renewal_period_months=self.renewal_period_months,
            requires_signature=self.requires_signature,
            renewal_status=RenewalStatus(self.renewal_status),
            parties=tuple(p.to_dto() for p in self.parties),
            terms=tuple(t.to_dto() for t in self.terms),
            metadata=dict(self.attributes or {}),
            created_at=self.created_at,
            created_by_id=self.created_by_id,
            version=self.version,
            source_contract_id=self.source_contract_id,
            template_id=self.template_id,
            activated_at=self.activated_at,
            suspended_at=self.suspended_at,
            terminated_at=self.terminated_at,
            cancelled_at=self.cancelled_at,
            expired_at=self.expired_at,
            termination_effective_date=self.termination_effective_date,
            status_reason=self.status_reason,
            renewal_notice_cycle=self.renewal_notice_cycle,
        )


class PartyModel(TenantScopedBase):
    """A named participant in a contract."""

    __tablename__ = "contract_parties"

    __table_args__ = (
        CheckConstraint(
            "role IN ('client', 'company', 'witness', 'guarantor')",
            name="ck_contract_parties_valid_role",
        ),
        Index("idx_parties_contract", "contract_id", "position"),
        Index("idx_parties_client", "tenant_id", "client_id"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    client_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> Party:
        return Party(
            id=self.id,
            position=self.position,
            name=self.name,
            email=self.email,
            role=PartyRole(self.role),
            user_id=self.user_id,
            client_id=self.client_id,
            signed_at=self.signed_at,
        )


class TermModel(TenantScopedBase):
    """A numbered clause of a contract."""

    __tablename__ = "contract_terms"

    __table_args__ = (
        Index("idx_terms_contract", "contract_id", "position"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    heading: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def to_dto(self) -> Term:
        return Term(id=self.id, position=self.position, heading=self.heading, body=self.body)
