"""
Module: contract_kernel.models.renewal
Responsibility: ORM persistence for renewal rules and renewal proposals.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - creation_seq gives rules a total creation order, used to break
      priority ties deterministically.
    - At most one proposal per (tenant, renewal cycle): the unique cycle_key
      backs the idempotence of evaluate_contract and of the renewal sweep.
    - Rules are archived, never deleted, so proposals keep their rule_id.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from contract_kernel.domain.contract import ContractType
from contract_kernel.domain.renewal import (
    NotificationSettings,
    PriceAdjustment,
    PriceAdjustmentType,
    ProposalStatus,
    RenewalAction,
    RenewalCriteria,
    RenewalProposal,
    RenewalRule,
)


class RenewalRuleModel(TrackedBase):
    """Tenant-configured policy deciding how expiring contracts renew."""

    __tablename__ = "renewal_rules"

    __table_args__ = (
        CheckConstraint(
            "action IN ('auto_renew', 'propose', 'notify_only')",
            name="ck_renewal_rules_valid_action",
        ),
        CheckConstraint(
            "trigger_days BETWEEN 1 AND 365",
            name="ck_renewal_rules_trigger_days",
        ),
        CheckConstraint(
            "renewal_period_months BETWEEN 1 AND 120",
            name="ck_renewal_rules_renewal_period",
        ),
        Index("idx_renewal_rules_selection", "tenant_id", "is_active", "priority", "creation_seq"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_days: Mapped[int] = mapped_column(Integer, nullable=False)
    renewal_period_months: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    creation_seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Criteria
    contract_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    min_contract_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    max_contract_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    exclude_client_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Price adjustment
    price_adjustment_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PriceAdjustmentType.NONE.value,
    )
    price_adjustment_value: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"),
    )

    # Notifications
    notify_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_recipients: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def apply_criteria(self, criteria: RenewalCriteria) -> None:
        self.contract_types = [t.value for t in criteria.contract_types]
        self.min_contract_value = criteria.min_contract_value
        self.max_contract_value = criteria.max_contract_value
        self.exclude_client_ids = [str(c) for c in criteria.exclude_client_ids]

    def apply_price_adjustment(self, adjustment: PriceAdjustment) -> None:
        self.price_adjustment_type = adjustment.adjustment_type.value
        self.price_adjustment_value = adjustment.value

    def apply_notification(self, settings: NotificationSettings) -> None:
        self.notify_enabled = settings.enabled
        self.notify_recipients = list(settings.recipients)

    def to_dto(self) -> RenewalRule:
        return RenewalRule(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            action=RenewalAction(self.action),
            trigger_days=self.trigger_days,
            renewal_period_months=self.renewal_period_months,
            criteria=RenewalCriteria(
                contract_types=tuple(ContractType(t) for t in self.contract_types or ()),
                min_contract_value=(
                    Decimal(self.min_contract_value)
                    if self.min_contract_value is not None else None
                ),
                max_contract_value=(
                    Decimal(self.max_contract_value)
                    if self.max_contract_value is not None else None
                ),
                exclude_client_ids=tuple(UUID(c) for c in self.exclude_client_ids or ()),
            ),
            price_adjustment=PriceAdjustment(
                adjustment_type=PriceAdjustmentType(self.price_adjustment_type),
                value=Decimal(self.price_adjustment_value),
            ),
            notification=NotificationSettings(
                enabled=self.notify_enabled,
                recipients=tuple(self.notify_recipients or ()),
            ),
            priority=self.priority,
            is_active=self.is_active,
            creation_seq=self.creation_seq,
            created_at=self.created_at,
            description=self.description,
        )


class RenewalProposalModel(TrackedBase):
    """A human-reviewable (or auto-approved) renewal decision for one cycle."""

    __tablename__ = "renewal_proposals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired')",
            name="ck_renewal_proposals_valid_status",
        ),
        UniqueConstraint("tenant_id", "cycle_key", name="uq_renewal_proposals_cycle"),
        Index("idx_renewal_proposals_source", "tenant_id", "source_contract_id"),
        Index("idx_renewal_proposals_status", "tenant_id", "status"),
    )

    source_contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False,
    )
    generated_contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=True,
    )
    rule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("renewal_rules.id"), nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProposalStatus.PENDING.value,
    )
    cycle_key: Mapped[str] = mapped_column(String(80), nullable=False)
    proposed_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    proposed_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    current_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    proposed_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    adjustment_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    auto_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def to_dto(self) -> RenewalProposal:
        return RenewalProposal(
            id=self.id,
            tenant_id=self.tenant_id,
            source_contract_id=self.source_contract_id,
            status=ProposalStatus(self.status),
            cycle_key=self.cycle_key,
            proposed_start_date=self.proposed_start_date,
            proposed_end_date=self.proposed_end_date,
            current_value=Decimal(self.current_value),
            proposed_value=Decimal(self.proposed_value),
            created_at=self.created_at,
            rule_id=self.rule_id,
            generated_contract_id=self.generated_contract_id,
            adjustment_reason=self.adjustment_reason,
            auto_approved=self.auto_approved,
            decided_at=self.decided_at,
            decided_by_id=self.decided_by_id,
            decision_notes=self.decision_notes,
        )
