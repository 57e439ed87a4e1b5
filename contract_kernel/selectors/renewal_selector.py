"""
Module: contract_kernel.selectors.renewal_selector
Responsibility: Read-only renewal queries: active rules in selection order,
    proposals by contract or status, sweep candidates by end date, and the
    renewal dashboard figures.
Architecture position: Kernel > Selectors.

Sweep candidates are found through the (tenant_id, end_date) index: ACTIVE
contracts whose end date lies within the widest active trigger window.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select

from contract_kernel.domain.contract import ContractStatus
from contract_kernel.domain.renewal import (
    ProposalStatus,
    RenewalProposal,
    RenewalRule,
    RenewalStats,
    UpcomingRenewal,
    criteria_match,
)
from contract_kernel.models.contract import ContractModel
from contract_kernel.models.renewal import RenewalProposalModel, RenewalRuleModel
from contract_kernel.selectors.base import BaseSelector

_CENT = Decimal("0.01")


class RenewalSelector(BaseSelector[RenewalRuleModel]):
    """Selector for renewal rules, proposals and renewal statistics."""

    def list_rules(self, tenant_id: UUID, include_inactive: bool = True) -> list[RenewalRule]:
        """Non-archived rules ordered by (priority, creation_seq)."""
        stmt = select(RenewalRuleModel).where(
            RenewalRuleModel.tenant_id == tenant_id,
            RenewalRuleModel.archived_at.is_(None),
        )
        if not include_inactive:
            stmt = stmt.where(RenewalRuleModel.is_active.is_(True))
        rows = self.session.execute(
            stmt.order_by(RenewalRuleModel.priority, RenewalRuleModel.creation_seq)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def max_trigger_days(self, tenant_id: UUID) -> int | None:
        return self.session.execute(
            select(func.max(RenewalRuleModel.trigger_days)).where(
                RenewalRuleModel.tenant_id == tenant_id,
                RenewalRuleModel.is_active.is_(True),
                RenewalRuleModel.archived_at.is_(None),
            )
        ).scalar_one_or_none()

    def candidate_contract_ids(self, tenant_id: UUID, today: date, window_days: int) -> list[UUID]:
        horizon = today + timedelta(days=window_days)
        return list(self.session.execute(
            select(ContractModel.id)
            .where(
                ContractModel.tenant_id == tenant_id,
                ContractModel.status == ContractStatus.ACTIVE.value,
                ContractModel.end_date.is_not(None),
                ContractModel.end_date >= today,
                ContractModel.end_date <= horizon,
            )
            .order_by(ContractModel.end_date, ContractModel.id)
        ).scalars().all())

    def proposal_for_cycle(self, tenant_id: UUID, cycle_key: str) -> RenewalProposalModel | None:
        return self.session.execute(
            select(RenewalProposalModel).where(
                RenewalProposalModel.tenant_id == tenant_id,
                RenewalProposalModel.cycle_key == cycle_key,
            )
        ).scalar_one_or_none()

    def pending_proposals_for_rule(self, tenant_id: UUID, rule_id: UUID) -> int:
        return self.session.execute(
            select(func.count()).select_from(RenewalProposalModel).where(
                RenewalProposalModel.tenant_id == tenant_id,
                RenewalProposalModel.rule_id == rule_id,
                RenewalProposalModel.status == ProposalStatus.PENDING.value,
            )
        ).scalar_one()

    def stale_pending_proposal_ids(self, tenant_id: UUID, cutoff: date) -> list[UUID]:
        """PENDING proposals whose renewal should have started before ``cutoff``."""
        return list(self.session.execute(
            select(RenewalProposalModel.id)
            .where(
                RenewalProposalModel.tenant_id == tenant_id,
                RenewalProposalModel.status == ProposalStatus.PENDING.value,
                RenewalProposalModel.proposed_start_date < cutoff,
            )
            .order_by(RenewalProposalModel.proposed_start_date, RenewalProposalModel.id)
        ).scalars().all())

    def list_proposals(
        self,
        tenant_id: UUID,
        contract_id: UUID | None = None,
        status: ProposalStatus | None = None,
    ) -> list[RenewalProposal]:
        stmt = select(RenewalProposalModel).where(RenewalProposalModel.tenant_id == tenant_id)
        if contract_id is not None:
            stmt = stmt.where(RenewalProposalModel.source_contract_id == contract_id)
        if status is not None:
            stmt = stmt.where(RenewalProposalModel.status == status.value)
        rows = self.session.execute(
            stmt.order_by(RenewalProposalModel.created_at, RenewalProposalModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def stats(self, tenant_id: UUID, today: date, upcoming_days: int) -> RenewalStats:
        proposals = self.session.execute(
            select(RenewalProposalModel.status, RenewalProposalModel.auto_approved).where(
                RenewalProposalModel.tenant_id == tenant_id,
            )
        ).all()

        counts = Counter(status for status, _ in proposals)
        auto_renewed = sum(1 for status, auto in proposals
                           if auto and status == ProposalStatus.ACCEPTED.value)
        accepted = counts.get(ProposalStatus.ACCEPTED.value, 0)
        rejected = counts.get(ProposalStatus.REJECTED.value, 0)
        expired = counts.get(ProposalStatus.EXPIRED.value, 0)
        decided = accepted + rejected + expired
        success_rate = (
            (Decimal(accepted) * 100 / decided).quantize(_CENT, rounding=ROUND_HALF_UP)
            if decided else Decimal("0.00")
        )

        rules = self.list_rules(tenant_id, include_inactive=False)
        horizon = today + timedelta(days=upcoming_days)
        contracts = self.session.execute(
            select(ContractModel)
            .where(
                ContractModel.tenant_id == tenant_id,
                ContractModel.status == ContractStatus.ACTIVE.value,
                ContractModel.end_date.is_not(None),
                ContractModel.end_date >= today,
                ContractModel.end_date <= horizon,
            )
            .order_by(ContractModel.end_date, ContractModel.id)
        ).scalars().all()

        upcoming = []
        for model in contracts:
            contract = model.to_dto()
            upcoming.append(UpcomingRenewal(
                contract_id=contract.id,
                title=contract.title,
                end_date=contract.end_date,
                days_until_expiry=(contract.end_date - today).days,
                has_active_rule=any(criteria_match(r.criteria, contract) for r in rules),
            ))

        return RenewalStats(
            total_proposals=len(proposals),
            pending=counts.get(ProposalStatus.PENDING.value, 0),
            accepted=accepted,
            auto_renewed=auto_renewed,
            rejected=rejected,
            expired=expired,
            success_rate=success_rate,
            upcoming=tuple(upcoming),
        )
