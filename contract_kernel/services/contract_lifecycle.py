"""
ContractLifecycleManager -- the contract state machine.

Responsibility:
    Creates contracts in DRAFT, edits them while they are still editable,
    and moves them along the lifecycle:

        DRAFT -> PENDING_SIGNATURE -> ACTIVE <-> SUSPENDED
              -> {TERMINATED | CANCELLED | EXPIRED}

    plus the periodic expiration sweep, which also applies future-dated
    terminations once their effective date is reached.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the HTTP layer, by
    SignatureWorkflowEngine (activation after the last signature) and by
    RenewalRuleEngine (successor contracts).

Invariants enforced:
    - Every transition is a conditional UPDATE on (id, tenant, expected
      status) followed by exactly one CONTRACT_STATUS_CHANGED audit event
      carrying actor, from, to and reason.
    - Illegal transitions raise InvalidStateError and change nothing.
    - PENDING_SIGNATURE -> ACTIVE requires a COMPLETED signature workflow;
      DRAFT -> ACTIVE requires requires_signature = False.
    - Content is frozen outside DRAFT and PENDING_SIGNATURE.

Failure modes:
    - ValidationError, ContractNotFoundError, InvalidStateError,
      ConcurrentModificationError, UnauthorizedError.
    - TenantLockHeldError from expire_due_contracts() when another worker
      holds the tenant's expiration lease.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.domain.clock import Clock
from contract_kernel.domain.collaborators import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    TemplateRenderer,
    dispatch_safely,
)
from contract_kernel.domain.contract import (
    EDITABLE_CONTRACT_STATUSES,
    Contract,
    ContractFilter,
    ContractSpec,
    ContractStats,
    ContractStatus,
    ContractSweepResult,
    ContractUpdate,
    Page,
    RenewalStatus,
    can_transition,
    validate_commercials,
    validate_contract_spec,
    validate_dates,
    validate_terms,
    validate_title,
)
from contract_kernel.domain.metadata import (
    DEFAULT_METADATA_FIELDS,
    MetadataFieldType,
    validate_metadata,
)
from contract_kernel.exceptions import (
    ContractNotFoundError,
    InvalidStateError,
    ValidationError,
)
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.models.audit_event import AuditAction
from contract_kernel.models.contract import ContractModel, PartyModel, TermModel
from contract_kernel.selectors.contract_selector import ContractSelector
from contract_kernel.selectors.workflow_selector import WorkflowSelector
from contract_kernel.services.auditor_service import AuditTraceEntry, AuditorService
from contract_kernel.services.base import Authorizer, BaseService
from contract_kernel.services.tenant_lock import TenantLockService
from contract_kernel.utils.retry import run_sweep_item

logger = get_logger("services.contract_lifecycle")

ENTITY = "Contract"
EXPIRATION_LOCK = "contract_expiration"

_SWEEPABLE = (ContractStatus.ACTIVE.value, ContractStatus.SUSPENDED.value)


def _require_reason(reason: str | None, operation: str) -> str:
    if reason is None or not reason.strip():
        raise ValidationError(f"a reason is required to {operation}", field="reason")
    return reason.strip()


class ContractLifecycleManager(BaseService[ContractModel]):
    """
    Owns contract creation, editing and every contract status change.

    Contract:
        Each public mutating method runs in its own SAVEPOINT.  On success
        the contract DTO is returned; on a ContractKernelError nothing is
        changed, an ATTEMPT_REJECTED audit event is written and the error
        propagates.

    Non-goals:
        - Does NOT manage signature workflows; activation only checks that
          one has completed.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        renderer: TemplateRenderer | None = None,
        dispatcher: NotificationDispatcher | None = None,
        metadata_fields: Mapping[str, MetadataFieldType] | None = None,
        authorizer: Authorizer | None = None,
        lock_service: TenantLockService | None = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(session, auditor, clock, authorizer)
        self._renderer = renderer
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._metadata_fields = dict(metadata_fields or DEFAULT_METADATA_FIELDS)
        self._lock_service = lock_service or TenantLockService(session, clock=self._clock)
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep
        self._contracts = ContractSelector(session)
        self._workflows = WorkflowSelector(session)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _load(self, tenant_id: UUID, contract_id: UUID) -> ContractModel:
        return self._get_for_tenant(ContractModel, tenant_id, contract_id, ContractNotFoundError)

    def _render_body(self, spec: ContractSpec) -> str:
        if spec.body is not None:
            return spec.body
        if self._renderer is None:
            raise ValidationError(
                "template_id given but no template renderer is configured",
                field="template_id",
            )
        return self._renderer.render(spec.template_id, dict(spec.template_variables))

    def _notify(self, event: str, contract: Contract, payload: dict[str, Any] | None = None) -> None:
        body = {
            "contract_id": str(contract.id),
            "title": contract.title,
            "status": contract.status.value,
        }
        body.update(payload or {})
        dispatch_safely(self._dispatcher, event, [p.email for p in contract.parties], body)

    def _apply_transition(
        self,
        model: ContractModel,
        target: ContractStatus,
        actor_id: UUID,
        operation: str,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
    ) -> ContractModel:
        """Check the edge, apply it conditionally and audit it."""
        current = ContractStatus(model.status)
        if not can_transition(current, target):
            raise InvalidStateError(ENTITY, str(model.id), current.value, operation)

        tenant_id, contract_id = model.tenant_id, model.id
        update_values = {"status": target.value, "updated_by_id": actor_id}
        update_values.update(values or {})
        self._conditional_update(
            ContractModel, ENTITY, tenant_id, contract_id, current.value, update_values,
        )
        self._auditor.record_status_change(
            tenant_id, ENTITY, contract_id, AuditAction.CONTRACT_STATUS_CHANGED, actor_id,
            current.value, target.value, reason,
        )
        logger.info(
            "contract_status_changed",
            extra={
                "contract_id": str(contract_id),
                "from_status": current.value,
                "to_status": target.value,
                "operation": operation,
            },
        )
        return self._load(tenant_id, contract_id)

    def _require_status(
        self,
        model: ContractModel,
        allowed: tuple[ContractStatus, ...],
        operation: str,
        detail: str | None = None,
    ) -> ContractStatus:
        current = ContractStatus(model.status)
        if current not in allowed:
            raise InvalidStateError(ENTITY, str(model.id), current.value, operation, detail)
        return current

    # -------------------------------------------------------------------------
    # Create / read / update
    # -------------------------------------------------------------------------

    def create_contract(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        spec: ContractSpec,
        contract_id: UUID | None = None,
    ) -> Contract:
        """
        Validate ``spec`` and persist a new contract in DRAFT.

        Raises:
            ValidationError: any party, date, commercial, term, title or
                metadata problem (all problems reported together).
        """
        contract_id = contract_id or uuid4()
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "create_contract"):
            errors = validate_contract_spec(spec)
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)
            metadata = validate_metadata(spec.metadata, self._metadata_fields)
            body = self._render_body(spec)

            model = ContractModel(
                id=contract_id,
                tenant_id=tenant_id,
                contract_type=spec.contract_type.value,
                title=spec.title.strip(),
                body=body,
                template_id=spec.template_id,
                start_date=spec.start_date,
                end_date=spec.end_date,
                value=spec.value,
                currency=spec.currency,
                auto_renew=spec.auto_renew,
                renewal_period_months=spec.renewal_period_months,
                requires_signature=spec.requires_signature,
                status=ContractStatus.DRAFT.value,
                renewal_status=RenewalStatus.NONE.value,
                source_contract_id=spec.source_contract_id,
                attributes=metadata,
                created_at=self._clock.now(),
                created_by_id=actor_id,
                version=1,
            )
            model.parties = [
                PartyModel(
                    tenant_id=tenant_id,
                    position=index,
                    name=party.name.strip(),
                    email=party.email.strip(),
                    role=party.role.value,
                    user_id=party.user_id,
                    client_id=party.client_id,
                )
                for index, party in enumerate(spec.parties)
            ]
            model.terms = [
                TermModel(tenant_id=tenant_id, position=index, heading=term.heading, body=term.body)
                for index, term in enumerate(spec.terms)
            ]
            self.session.add(model)
            self.session.flush()

            self._auditor.record(
                tenant_id, ENTITY, contract_id, AuditAction.CONTRACT_CREATED, actor_id,
                {
                    "status": ContractStatus.DRAFT.value,
                    "contract_type": spec.contract_type.value,
                    "title": model.title,
                    "source_contract_id": str(spec.source_contract_id) if spec.source_contract_id else None,
                },
            )
            with LogContext.bind(contract_id=contract_id):
                logger.info(
                    "contract_created",
                    extra={
                        "contract_type": spec.contract_type.value,
                        "party_count": len(spec.parties),
                        "requires_signature": spec.requires_signature,
                    },
                )
            return model.to_dto()

    def get_contract(self, tenant_id: UUID, contract_id: UUID) -> Contract:
        return self._load(tenant_id, contract_id).to_dto()

    def list_contracts(
        self,
        tenant_id: UUID,
        criteria: ContractFilter | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        return self._contracts.list_contracts(
            tenant_id, criteria or ContractFilter(), self._clock.today(), page, limit,
        )

    def update_contract(
        self,
        tenant_id: UUID,
        contract_id: UUID,
        actor_id: UUID,
        update: ContractUpdate,
    ) -> Contract:
        """
        Edit content while the contract is DRAFT or PENDING_SIGNATURE.

        Content is also frozen while a signature workflow is open: the
        signers sign the workflow's document snapshot, and the contract
        that completion activates must carry the same text.  Cancel the
        workflow to edit, then start a new one.

        The update is keyed on the version read at the start, so a
        concurrent transition or edit makes it fail with
        ConcurrentModificationError instead of overwriting.
        """
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "update_contract"):
            model = self._load(tenant_id, contract_id)
            current = self._require_status(
                model, tuple(EDITABLE_CONTRACT_STATUSES), "update",
                detail="content is frozen once the contract has taken effect",
            )
            if self._workflows.open_for_contract(tenant_id, contract_id) is not None:
                raise InvalidStateError(
                    ENTITY, str(contract_id), current.value, "update",
                    "contract has an open signature workflow",
                )
            changed = update.changed_fields()
            if not changed:
                return model.to_dto()

            start = update.start_date or model.start_date
            end = update.end_date if update.end_date is not None else model.end_date
            auto_renew = update.auto_renew if update.auto_renew is not None else model.auto_renew

            errors: list[str] = []
            if update.title is not None:
                errors += validate_title(update.title)
            errors += validate_dates(start, end)
            errors += validate_commercials(update.value, update.currency, update.renewal_period_months)
            if update.terms is not None:
                errors += validate_terms(update.terms)
            if auto_renew and end is None:
                errors.append("auto_renew requires an end_date")
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)

            values: dict[str, Any] = {"updated_by_id": actor_id}
            for name in ("title", "body", "value", "currency", "start_date", "end_date",
                         "auto_renew", "renewal_period_months"):
                value = getattr(update, name)
                if value is not None:
                    values[name] = value.strip() if name == "title" else value
            if update.metadata is not None:
                values["attributes"] = validate_metadata(update.metadata, self._metadata_fields)

            self._conditional_update(
                ContractModel, ENTITY, tenant_id, contract_id, model.status, values,
                expected_version=model.version,
            )
            model = self._load(tenant_id, contract_id)
            if update.terms is not None:
                model.terms = [
                    TermModel(tenant_id=tenant_id, position=index, heading=term.heading, body=term.body)
                    for index, term in enumerate(update.terms)
                ]
                self.session.flush()

            self._auditor.record(
                tenant_id, ENTITY, contract_id, AuditAction.CONTRACT_UPDATED, actor_id,
                {"changed_fields": changed},
            )
            logger.info(
                "contract_updated",
                extra={"contract_id": str(contract_id), "changed_fields": changed},
            )
            return model.to_dto()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def mark_pending_signature(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID) -> Contract:
        """DRAFT -> PENDING_SIGNATURE; a no-op when already pending."""
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "mark_pending_signature"):
            model = self._load(tenant_id, contract_id)
            current = self._require_status(
                model,
                (ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE),
                "send for signature",
            )
            if current is ContractStatus.PENDING_SIGNATURE:
                return model.to_dto()
            model = self._apply_transition(
                model, ContractStatus.PENDING_SIGNATURE, actor_id, "send for signature",
                reason="sent for signature",
            )
            return model.to_dto()

    def activate_contract(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID) -> Contract:
        """
        Put the contract into effect.

        Preconditions:
            - PENDING_SIGNATURE with a COMPLETED signature workflow, or
            - DRAFT with requires_signature = False.
        """
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "activate_contract"):
            model = self._load(tenant_id, contract_id)
            current = self._require_status(
                model, (ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE), "activate",
            )
            if current is ContractStatus.PENDING_SIGNATURE:
                if not self._workflows.has_completed_workflow(tenant_id, contract_id):
                    raise InvalidStateError(
                        ENTITY, str(contract_id), current.value, "activate",
                        detail="signature workflow is not completed",
                    )
            elif model.requires_signature:
                raise InvalidStateError(
                    ENTITY, str(contract_id), current.value, "activate",
                    detail="contract requires a signature",
                )
            model = self._apply_transition(
                model, ContractStatus.ACTIVE, actor_id, "activate",
                values={"activated_at": self._clock.now()},
            )
            contract = model.to_dto()
        self._notify("contract.activated", contract)
        return contract

    def suspend_contract(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID, reason: str) -> Contract:
        """ACTIVE -> SUSPENDED, with the reason kept on the row and in the audit log."""
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "suspend_contract"):
            reason = _require_reason(reason, "suspend")
            model = self._load(tenant_id, contract_id)
            self._require_status(model, (ContractStatus.ACTIVE,), "suspend")
            model = self._apply_transition(
                model, ContractStatus.SUSPENDED, actor_id, "suspend", reason,
                values={"suspended_at": self._clock.now(), "status_reason": reason},
            )
            contract = model.to_dto()
        self._notify("contract.suspended", contract, {"reason": reason})
        return contract

    def reactivate_contract(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID) -> Contract:
        """SUSPENDED -> ACTIVE."""
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "reactivate_contract"):
            model = self._load(tenant_id, contract_id)
            self._require_status(model, (ContractStatus.SUSPENDED,), "reactivate")
            model = self._apply_transition(
                model, ContractStatus.ACTIVE, actor_id, "reactivate",
                values={"suspended_at": None, "status_reason": None},
            )
            contract = model.to_dto()
        self._notify("contract.reactivated", contract)
        return contract

    def terminate_contract(
        self,
        tenant_id: UUID,
        contract_id: UUID,
        actor_id: UUID,
        reason: str,
        effective_date: date | None = None,
    ) -> Contract:
        """
        End an ACTIVE or SUSPENDED contract.

        An effective date after today only schedules the termination: the
        status stays as it is and expire_due_contracts() applies it once
        the date is reached.
        """
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "terminate_contract"):
            reason = _require_reason(reason, "terminate")
            model = self._load(tenant_id, contract_id)
            current = self._require_status(
                model, (ContractStatus.ACTIVE, ContractStatus.SUSPENDED), "terminate",
            )
            today = self._clock.today()

            if effective_date is not None and effective_date > today:
                self._conditional_update(
                    ContractModel, ENTITY, tenant_id, contract_id, current.value,
                    {
                        "termination_effective_date": effective_date,
                        "status_reason": reason,
                        "updated_by_id": actor_id,
                    },
                )
                self._auditor.record(
                    tenant_id, ENTITY, contract_id,
                    AuditAction.CONTRACT_TERMINATION_SCHEDULED, actor_id,
                    {"effective_date": effective_date.isoformat(), "reason": reason},
                )
                logger.info(
                    "contract_termination_scheduled",
                    extra={
                        "contract_id": str(contract_id),
                        "effective_date": effective_date.isoformat(),
                    },
                )
                return self._load(tenant_id, contract_id).to_dto()

            model = self._apply_transition(
                model, ContractStatus.TERMINATED, actor_id, "terminate", reason,
                values={
                    "terminated_at": self._clock.now(),
                    "termination_effective_date": effective_date or today,
                    "status_reason": reason,
                },
            )
            contract = model.to_dto()
        self._notify("contract.terminated", contract, {"reason": reason})
        return contract

    def cancel_contract(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID, reason: str) -> Contract:
        """DRAFT or PENDING_SIGNATURE -> CANCELLED (the contract never took effect)."""
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "cancel_contract"):
            reason = _require_reason(reason, "cancel")
            model = self._load(tenant_id, contract_id)
            self._require_status(
                model, (ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE), "cancel",
            )
            model = self._apply_transition(
                model, ContractStatus.CANCELLED, actor_id, "cancel", reason,
                values={"cancelled_at": self._clock.now(), "status_reason": reason},
            )
            contract = model.to_dto()
        self._notify("contract.cancelled", contract, {"reason": reason})
        return contract

    def set_renewal_marker(
        self,
        tenant_id: UUID,
        contract_id: UUID,
        actor_id: UUID,
        renewal_status: RenewalStatus | None = None,
        notice_cycle: str | None = None,
    ) -> Contract:
        """
        Record the renewal outcome of the current cycle on the contract row.

        Used by RenewalRuleEngine so that the renewal status column and the
        proposal rows change in the same transaction.
        """
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "set_renewal_marker"):
            model = self._load(tenant_id, contract_id)
            values: dict[str, Any] = {"updated_by_id": actor_id}
            payload: dict[str, Any] = {}
            if renewal_status is not None:
                values["renewal_status"] = renewal_status.value
                payload["renewal_status"] = renewal_status.value
            if notice_cycle is not None:
                values["renewal_notice_cycle"] = notice_cycle
                payload["renewal_notice_cycle"] = notice_cycle
            self._conditional_update(
                ContractModel, ENTITY, tenant_id, contract_id, model.status, values,
            )
            self._auditor.record(
                tenant_id, ENTITY, contract_id, AuditAction.CONTRACT_UPDATED, actor_id,
                {"changed_fields": sorted(payload), **payload},
            )
            return self._load(tenant_id, contract_id).to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_contract_activity(self, tenant_id: UUID, contract_id: UUID) -> tuple[AuditTraceEntry, ...]:
        """The contract's audit entries (including rejected attempts) in order."""
        self._load(tenant_id, contract_id)
        return self._auditor.get_trace(tenant_id, ENTITY, contract_id).entries

    def get_contract_stats(self, tenant_id: UUID) -> ContractStats:
        return self._contracts.stats(tenant_id, self._clock.today())

    def get_expiring_contracts(self, tenant_id: UUID, days: int = 30) -> list[Contract]:
        if days < 0:
            raise ValidationError("days must not be negative", field="days")
        return self._contracts.expiring_within(tenant_id, self._clock.today(), days)

    # -------------------------------------------------------------------------
    # Expiration sweep
    # -------------------------------------------------------------------------

    def _due_termination_ids(self, tenant_id: UUID, today: date) -> list[UUID]:
        return list(self.session.execute(
            select(ContractModel.id)
            .where(
                ContractModel.tenant_id == tenant_id,
                ContractModel.status.in_(_SWEEPABLE),
                ContractModel.termination_effective_date.is_not(None),
                ContractModel.termination_effective_date <= today,
            )
            .order_by(ContractModel.termination_effective_date, ContractModel.id)
        ).scalars().all())

    def _due_expiry_ids(self, tenant_id: UUID, today: date) -> list[UUID]:
        return list(self.session.execute(
            select(ContractModel.id)
            .where(
                ContractModel.tenant_id == tenant_id,
                ContractModel.status.in_(_SWEEPABLE),
                ContractModel.end_date.is_not(None),
                ContractModel.end_date < today,
                ContractModel.renewal_status != RenewalStatus.PENDING.value,
            )
            .order_by(ContractModel.end_date, ContractModel.id)
        ).scalars().all())

    def _apply_scheduled_termination(self, tenant_id: UUID, contract_id: UUID,
                                     actor_id: UUID, today: date) -> bool:
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "apply_scheduled_termination"):
            model = self._load(tenant_id, contract_id)
            if (
                model.status not in _SWEEPABLE
                or model.termination_effective_date is None
                or model.termination_effective_date > today
            ):
                return False
            self._apply_transition(
                model, ContractStatus.TERMINATED, actor_id, "terminate",
                model.status_reason or "scheduled termination reached",
                values={"terminated_at": self._clock.now()},
            )
            return True

    def _expire_one(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID, today: date) -> bool:
        with self._guarded(tenant_id, ENTITY, contract_id, actor_id, "expire_contract"):
            model = self._load(tenant_id, contract_id)
            if (
                model.status not in _SWEEPABLE
                or model.end_date is None
                or model.end_date >= today
                or model.renewal_status == RenewalStatus.PENDING.value
            ):
                return False
            self._apply_transition(
                model, ContractStatus.EXPIRED, actor_id, "expire", "end date reached",
                values={"expired_at": self._clock.now()},
            )
            return True

    def _run_item(self, label: str, operation: Callable[[], bool]) -> bool | None:
        return run_sweep_item(
            operation,
            attempts=self._retry_attempts,
            backoff_seconds=self._retry_backoff_seconds,
            sleep=self._sleep,
            label=label,
        )

    def expire_due_contracts(self, tenant_id: UUID, actor_id: UUID) -> ContractSweepResult:
        """
        Expiration sweep for one tenant, under the tenant's expiration lease.

        Applies due scheduled terminations first, then moves ACTIVE and
        SUSPENDED contracts whose end date has passed (and whose renewal is
        not pending) to EXPIRED.  Idempotent: each item re-reads its status.
        """
        expired = terminated = skipped = failed = 0
        with self._lock_service.lease(tenant_id, EXPIRATION_LOCK):
            today = self._clock.today()
            for contract_id in self._due_termination_ids(tenant_id, today):
                outcome = self._run_item(
                    "scheduled_termination",
                    lambda cid=contract_id: self._apply_scheduled_termination(
                        tenant_id, cid, actor_id, today,
                    ),
                )
                if outcome is None:
                    failed += 1
                elif outcome:
                    terminated += 1
                else:
                    skipped += 1

            for contract_id in self._due_expiry_ids(tenant_id, today):
                outcome = self._run_item(
                    "contract_expiration",
                    lambda cid=contract_id: self._expire_one(tenant_id, cid, actor_id, today),
                )
                if outcome is None:
                    failed += 1
                elif outcome:
                    expired += 1
                else:
                    skipped += 1

        result = ContractSweepResult(
            tenant_id=tenant_id, expired=expired, terminated=terminated,
            skipped=skipped, failed=failed,
        )
        logger.info(
            "contract_expiration_sweep_completed",
            extra={
                "expired": expired,
                "terminated": terminated,
                "skipped": skipped,
                "failed": failed,
            },
        )
        return result
