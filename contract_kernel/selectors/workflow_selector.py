"""
Module: contract_kernel.selectors.workflow_selector
Responsibility: Read-only signature workflow queries.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from contract_kernel.domain.signature import SignatureEvent, SignatureWorkflow, WorkflowStatus
from contract_kernel.models.signature import SignatureEventModel, SignatureWorkflowModel
from contract_kernel.selectors.base import BaseSelector

OPEN_STATUSES = (
    WorkflowStatus.DRAFT.value,
    WorkflowStatus.SENT.value,
    WorkflowStatus.IN_PROGRESS.value,
)


class WorkflowSelector(BaseSelector[SignatureWorkflowModel]):
    """Selector for workflow lists and signature trails."""

    def list_workflows(
        self,
        tenant_id: UUID,
        contract_id: UUID | None = None,
        status: WorkflowStatus | None = None,
    ) -> list[SignatureWorkflow]:
        stmt = select(SignatureWorkflowModel).where(SignatureWorkflowModel.tenant_id == tenant_id)
        if contract_id is not None:
            stmt = stmt.where(SignatureWorkflowModel.contract_id == contract_id)
        if status is not None:
            stmt = stmt.where(SignatureWorkflowModel.status == status.value)
        rows = self.session.execute(
            stmt.order_by(SignatureWorkflowModel.created_at, SignatureWorkflowModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def has_completed_workflow(self, tenant_id: UUID, contract_id: UUID) -> bool:
        return self.session.execute(
            select(SignatureWorkflowModel.id)
            .where(
                SignatureWorkflowModel.tenant_id == tenant_id,
                SignatureWorkflowModel.contract_id == contract_id,
                SignatureWorkflowModel.status == WorkflowStatus.COMPLETED.value,
            )
            .limit(1)
        ).scalar_one_or_none() is not None

    def open_for_contract(self, tenant_id: UUID, contract_id: UUID) -> UUID | None:
        """Id of the contract's non-terminal workflow, if any."""
        return self.session.execute(
            select(SignatureWorkflowModel.id)
            .where(
                SignatureWorkflowModel.tenant_id == tenant_id,
                SignatureWorkflowModel.contract_id == contract_id,
                SignatureWorkflowModel.status.in_(OPEN_STATUSES),
            )
            .limit(1)
        ).scalar_one_or_none()

    def expired_open_ids(self, tenant_id: UUID, now) -> list[UUID]:
        """Non-terminal workflows whose expires_at has passed."""
        return list(self.session.execute(
            select(SignatureWorkflowModel.id)
            .where(
                SignatureWorkflowModel.tenant_id == tenant_id,
                SignatureWorkflowModel.status.in_(OPEN_STATUSES),
                SignatureWorkflowModel.expires_at.is_not(None),
                SignatureWorkflowModel.expires_at < now,
            )
            .order_by(SignatureWorkflowModel.expires_at, SignatureWorkflowModel.id)
        ).scalars().all())

    def trail(self, tenant_id: UUID, workflow_id: UUID) -> list[SignatureEvent]:
        """Signature events of a workflow in creation (seq) order."""
        rows = self.session.execute(
            select(SignatureEventModel)
            .where(
                SignatureEventModel.tenant_id == tenant_id,
                SignatureEventModel.workflow_id == workflow_id,
            )
            .order_by(SignatureEventModel.seq)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def signature_event(self, tenant_id: UUID, workflow_id: UUID, event_id: UUID) -> SignatureEventModel | None:
        return self.session.execute(
            select(SignatureEventModel).where(
                SignatureEventModel.tenant_id == tenant_id,
                SignatureEventModel.workflow_id == workflow_id,
                SignatureEventModel.id == event_id,
            )
        ).scalar_one_or_none()
