"""
RenewalRuleEngine -- rule-driven contract renewal.

Responsibility:
    Maintains the tenant's renewal rules, evaluates ACTIVE contracts whose
    renewal window has opened, and depending on the winning rule's action:

        AUTO_RENEW   builds and activates a successor contract at once
                     (recorded as an auto-approved, ACCEPTED proposal)
        PROPOSE      creates a DRAFT successor and a PENDING proposal for a
                     human decision
        NOTIFY_ONLY  dispatches a renewal notice, nothing else

    Proposal:  PENDING -> {ACCEPTED | REJECTED | EXPIRED}

Architecture position:
    Kernel > Services -- imperative shell.  Creates and activates successor
    contracts exclusively through ContractLifecycleManager.

Invariants enforced:
    - One renewal decision per cycle: the proposal's unique cycle_key
      (contract id + end date) and the contract's renewal_notice_cycle make
      evaluate_contract idempotent, so repeated evaluation inside one window
      yields at most one proposal or one successor.
    - Rule selection is deterministic: lowest priority number, then the rule
      created first (creation_seq).
    - The source contract's renewal_status is set explicitly for every
      outcome; it is never inferred from proposal rows.
    - A rule referenced by PENDING proposals cannot be deleted.

Failure modes:
    - ValidationError, ContractNotFoundError, RenewalRuleNotFoundError,
      RenewalProposalNotFoundError, InvalidStateError,
      ConcurrentModificationError, UnauthorizedError.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from contract_kernel.domain.clock import Clock
from contract_kernel.domain.collaborators import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    dispatch_safely,
)
from contract_kernel.domain.contract import (
    Contract,
    ContractSpec,
    ContractStatus,
    ContractUpdate,
    PartySpec,
    RenewalStatus,
    TermSpec,
)
from contract_kernel.domain.renewal import (
    PROPOSAL_TRANSITIONS,
    ProposalDecision,
    ProposalStatus,
    RenewalAction,
    RenewalOutcome,
    RenewalProposal,
    RenewalRule,
    RenewalRuleSpec,
    RenewalRuleUpdate,
    RenewalStats,
    RenewalSweepResult,
    adjust_price,
    criteria_match,
    cycle_key,
    select_rule,
    successor_dates,
    validate_rule_fields,
    validate_rule_spec,
)
from contract_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    RenewalProposalNotFoundError,
    RenewalRuleNotFoundError,
    ValidationError,
)
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.models.audit_event import AuditAction
from contract_kernel.models.renewal import RenewalProposalModel, RenewalRuleModel
from contract_kernel.selectors.renewal_selector import RenewalSelector
from contract_kernel.services.auditor_service import AuditorService
from contract_kernel.services.base import Authorizer, BaseService
from contract_kernel.services.contract_lifecycle import ContractLifecycleManager
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.services.tenant_lock import TenantLockService
from contract_kernel.utils.retry import run_sweep_item

logger = get_logger("services.renewal_engine")

RULE_ENTITY = "RenewalRule"
PROPOSAL_ENTITY = "RenewalProposal"
RENEWAL_LOCK = "renewal_evaluation"

DEFAULT_UPCOMING_DAYS = 60


def successor_spec(
    source: Contract,
    start_date: date,
    end_date: date,
    value: Decimal,
    renewal_period_months: int,
) -> ContractSpec:
    """The successor copies the source's parties, body and terms with new dates and price."""
    return ContractSpec(
        contract_type=source.contract_type,
        title=source.title,
        start_date=start_date,
        end_date=end_date,
        parties=tuple(
            PartySpec(
                name=p.name, email=p.email, role=p.role,
                user_id=p.user_id, client_id=p.client_id,
            )
            for p in source.parties
        ),
        terms=tuple(TermSpec(heading=t.heading, body=t.body) for t in source.terms),
        body=source.body,
        value=value,
        currency=source.currency,
        auto_renew=source.auto_renew,
        renewal_period_months=renewal_period_months,
        requires_signature=False,
        metadata=dict(source.metadata),
        source_contract_id=source.id,
    )


class RenewalRuleEngine(BaseService[RenewalRuleModel]):
    """
    Evaluates renewal rules and drives renewal proposals.

    Contract:
        Public mutating methods run inside their own SAVEPOINT.  Successor
        contracts are created, edited, activated and cancelled through the
        lifecycle manager, so their audit trail is the ordinary contract one.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        lifecycle: ContractLifecycleManager,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        authorizer: Authorizer | None = None,
        lock_service: TenantLockService | None = None,
        proposal_grace_days: int = 0,
        upcoming_days: int = DEFAULT_UPCOMING_DAYS,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(session, auditor, clock, authorizer)
        self._lifecycle = lifecycle
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._lock_service = lock_service or TenantLockService(session, clock=self._clock)
        self._proposal_grace_days = proposal_grace_days
        self._upcoming_days = upcoming_days
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep
        self._sequence = SequenceService(session)
        self._renewals = RenewalSelector(session)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _load_rule(self, tenant_id: UUID, rule_id: UUID) -> RenewalRuleModel:
        rule = self._get_for_tenant(RenewalRuleModel, tenant_id, rule_id, RenewalRuleNotFoundError)
        if rule.archived_at is not None:
            raise RenewalRuleNotFoundError(str(rule_id), str(tenant_id))
        return rule

    def _load_proposal(self, tenant_id: UUID, proposal_id: UUID) -> RenewalProposalModel:
        return self._get_for_tenant(
            RenewalProposalModel, tenant_id, proposal_id, RenewalProposalNotFoundError,
        )

    def _update_rule_row(self, rule: RenewalRuleModel, values: dict[str, Any]) -> None:
        """Version-checked update; rules carry no status column."""
        result = self.session.execute(
            update(RenewalRuleModel)
            .where(
                RenewalRuleModel.id == rule.id,
                RenewalRuleModel.tenant_id == rule.tenant_id,
                RenewalRuleModel.version == rule.version,
                RenewalRuleModel.archived_at.is_(None),
            )
            .values(version=RenewalRuleModel.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                RULE_ENTITY, str(rule.id), f"version {rule.version}", None,
            )

    def _transition_proposal(
        self,
        proposal: RenewalProposalModel,
        target: ProposalStatus,
        actor_id: UUID,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
    ) -> RenewalProposalModel:
        current = ProposalStatus(proposal.status)
        if target not in PROPOSAL_TRANSITIONS[current]:
            raise InvalidStateError(
                PROPOSAL_ENTITY, str(proposal.id), current.value, target.value,
            )
        update_values: dict[str, Any] = {
            "status": target.value,
            "updated_by_id": actor_id,
            "decided_at": self._clock.now(),
            "decided_by_id": actor_id,
        }
        update_values.update(values or {})
        self._conditional_update(
            RenewalProposalModel, PROPOSAL_ENTITY, proposal.tenant_id, proposal.id,
            current.value, update_values,
        )
        self._auditor.record_status_change(
            proposal.tenant_id, PROPOSAL_ENTITY, proposal.id,
            AuditAction.RENEWAL_PROPOSAL_STATUS_CHANGED, actor_id,
            current.value, target.value, reason,
            details={"source_contract_id": str(proposal.source_contract_id)},
        )
        return self._load_proposal(proposal.tenant_id, proposal.id)

    def _recipients(self, rule: RenewalRule, contract: Contract) -> list[str]:
        if rule.notification.recipients:
            return list(rule.notification.recipients)
        return [p.email for p in contract.parties]

    def _notify(self, event: str, rule: RenewalRule, contract: Contract, payload: dict[str, Any]) -> bool:
        if not rule.notification.enabled:
            return False
        return dispatch_safely(
            self._dispatcher, event, self._recipients(rule, contract),
            {
                "contract_id": str(contract.id),
                "title": contract.title,
                "end_date": contract.end_date.isoformat() if contract.end_date else None,
                "rule_id": str(rule.id),
                **payload,
            },
        )

    def _persist_proposal(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        source: Contract,
        rule: RenewalRule,
        status: ProposalStatus,
        successor: Contract,
        auto_approved: bool,
    ) -> RenewalProposalModel:
        now = self._clock.now()
        proposal = RenewalProposalModel(
            id=uuid4(),
            tenant_id=tenant_id,
            source_contract_id=source.id,
            generated_contract_id=successor.id,
            rule_id=rule.id,
            status=status.value,
            cycle_key=cycle_key(source.id, source.end_date),
            proposed_start_date=successor.start_date,
            proposed_end_date=successor.end_date,
            current_value=source.value,
            proposed_value=successor.value,
            adjustment_reason=rule.price_adjustment.describe(),
            auto_approved=auto_approved,
            decided_at=now if auto_approved else None,
            decided_by_id=actor_id if auto_approved else None,
            created_at=now,
            created_by_id=actor_id,
            version=1,
        )
        self.session.add(proposal)
        try:
            with self.session.begin_nested():
                self.session.flush()
        except IntegrityError:
            raise InvalidStateError(
                "Contract", str(source.id), source.status.value, "create renewal proposal",
                detail=f"renewal cycle {proposal.cycle_key} already has a proposal",
            ) from None

        self._auditor.record(
            tenant_id, PROPOSAL_ENTITY, proposal.id, AuditAction.RENEWAL_PROPOSAL_CREATED, actor_id,
            {
                "status": status.value,
                "source_contract_id": str(source.id),
                "generated_contract_id": str(successor.id),
                "rule_id": str(rule.id),
                "cycle_key": proposal.cycle_key,
                "current_value": str(source.value),
                "proposed_value": str(successor.value),
                "auto_approved": auto_approved,
            },
        )
        return proposal

    def _build_successor(self, tenant_id: UUID, actor_id: UUID, source: Contract, rule: RenewalRule) -> Contract:
        start_date, end_date = successor_dates(source.end_date, rule.renewal_period_months)
        spec = successor_spec(
            source, start_date, end_date,
            adjust_price(source.value, rule.price_adjustment),
            rule.renewal_period_months,
        )
        return self._lifecycle.create_contract(tenant_id, actor_id, spec)

    def _auto_renew(self, tenant_id: UUID, actor_id: UUID, source: Contract, rule: RenewalRule) -> RenewalOutcome:
        successor = self._build_successor(tenant_id, actor_id, source, rule)
        successor = self._lifecycle.activate_contract(tenant_id, successor.id, actor_id)
        proposal = self._persist_proposal(
            tenant_id, actor_id, source, rule, ProposalStatus.ACCEPTED, successor, auto_approved=True,
        )
        self._lifecycle.set_renewal_marker(
            tenant_id, source.id, actor_id, renewal_status=RenewalStatus.AUTO_RENEWED,
        )
        notified = self._notify(
            "renewal.auto_renewed", rule, source,
            {"successor_contract_id": str(successor.id), "proposed_value": str(successor.value)},
        )
        return RenewalOutcome(
            contract_id=source.id, action=RenewalAction.AUTO_RENEW, rule_id=rule.id,
            proposal_id=proposal.id, successor_contract_id=successor.id, notified=notified,
        )

    def _propose(self, tenant_id: UUID, actor_id: UUID, source: Contract, rule: RenewalRule) -> RenewalOutcome:
        successor = self._build_successor(tenant_id, actor_id, source, rule)
        proposal = self._persist_proposal(
            tenant_id, actor_id, source, rule, ProposalStatus.PENDING, successor, auto_approved=False,
        )
        self._lifecycle.set_renewal_marker(
            tenant_id, source.id, actor_id, renewal_status=RenewalStatus.PENDING,
        )
        notified = self._notify(
            "renewal.proposed", rule, source,
            {"proposal_id": str(proposal.id), "proposed_value": str(successor.value)},
        )
        return RenewalOutcome(
            contract_id=source.id, action=RenewalAction.PROPOSE, rule_id=rule.id,
            proposal_id=proposal.id, successor_contract_id=successor.id, notified=notified,
        )

    def _notify_only(
        self, tenant_id: UUID, actor_id: UUID, source: Contract, rule: RenewalRule, cycle: str,
    ) -> RenewalOutcome:
        self._lifecycle.set_renewal_marker(tenant_id, source.id, actor_id, notice_cycle=cycle)
        notified = dispatch_safely(
            self._dispatcher, "renewal.notice", self._recipients(rule, source),
            {
                "contract_id": str(source.id),
                "title": source.title,
                "end_date": source.end_date.isoformat(),
                "rule_id": str(rule.id),
            },
        )
        self._auditor.record(
            tenant_id, "Contract", source.id, AuditAction.RENEWAL_NOTICE_SENT, actor_id,
            {"rule_id": str(rule.id), "cycle_key": cycle, "delivered": notified},
        )
        return RenewalOutcome(
            contract_id=source.id, action=RenewalAction.NOTIFY_ONLY, rule_id=rule.id,
            notified=notified,
        )

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def create_rule(self, tenant_id: UUID, actor_id: UUID, spec: RenewalRuleSpec) -> RenewalRule:
        rule_id = uuid4()
        with self._guarded(tenant_id, RULE_ENTITY, rule_id, actor_id, "create_rule"):
            errors = validate_rule_spec(spec)
            if not isinstance(spec.action, RenewalAction):
                errors.append(f"unknown renewal action '{spec.action}'")
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)

            model = RenewalRuleModel(
                id=rule_id,
                tenant_id=tenant_id,
                name=spec.name.strip(),
                description=spec.description,
                action=spec.action.value,
                trigger_days=spec.trigger_days,
                renewal_period_months=spec.renewal_period_months,
                priority=spec.priority,
                is_active=spec.is_active,
                creation_seq=self._sequence.next_value(SequenceService.RENEWAL_RULE),
                created_at=self._clock.now(),
                created_by_id=actor_id,
                version=1,
            )
            model.apply_criteria(spec.criteria)
            model.apply_price_adjustment(spec.price_adjustment)
            model.apply_notification(spec.notification)
            self.session.add(model)
            self.session.flush()

            self._auditor.record(
                tenant_id, RULE_ENTITY, rule_id, AuditAction.RENEWAL_RULE_CREATED, actor_id,
                {
                    "name": model.name,
                    "action": model.action,
                    "trigger_days": model.trigger_days,
                    "priority": model.priority,
                    "creation_seq": model.creation_seq,
                },
            )
            logger.info(
                "renewal_rule_created",
                extra={"rule_id": str(rule_id), "action": model.action, "priority": model.priority},
            )
            return model.to_dto()

    def update_rule(
        self,
        tenant_id: UUID,
        rule_id: UUID,
        actor_id: UUID,
        update_spec: RenewalRuleUpdate,
    ) -> RenewalRule:
        with self._guarded(tenant_id, RULE_ENTITY, rule_id, actor_id, "update_rule"):
            rule = self._load_rule(tenant_id, rule_id)
            changed = update_spec.changed_fields()
            if not changed:
                return rule.to_dto()
            errors = validate_rule_fields(
                update_spec.name,
                update_spec.trigger_days,
                update_spec.renewal_period_months,
                update_spec.criteria,
                update_spec.price_adjustment,
                update_spec.priority,
            )
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)

            values: dict[str, Any] = {"updated_by_id": actor_id}
            for name in ("description", "trigger_days", "renewal_period_months", "priority", "is_active"):
                value = getattr(update_spec, name)
                if value is not None:
                    values[name] = value
            if update_spec.name is not None:
                values["name"] = update_spec.name.strip()
            if update_spec.action is not None:
                values["action"] = update_spec.action.value
            if update_spec.criteria is not None:
                criteria = update_spec.criteria
                values.update(
                    contract_types=[t.value for t in criteria.contract_types],
                    min_contract_value=criteria.min_contract_value,
                    max_contract_value=criteria.max_contract_value,
                    exclude_client_ids=[str(c) for c in criteria.exclude_client_ids],
                )
            if update_spec.price_adjustment is not None:
                values.update(
                    price_adjustment_type=update_spec.price_adjustment.adjustment_type.value,
                    price_adjustment_value=update_spec.price_adjustment.value,
                )
            if update_spec.notification is not None:
                values.update(
                    notify_enabled=update_spec.notification.enabled,
                    notify_recipients=list(update_spec.notification.recipients),
                )

            self._update_rule_row(rule, values)
            self._auditor.record(
                tenant_id, RULE_ENTITY, rule_id, AuditAction.RENEWAL_RULE_UPDATED, actor_id,
                {"changed_fields": changed},
            )
            return self._load_rule(tenant_id, rule_id).to_dto()

    def get_rule(self, tenant_id: UUID, rule_id: UUID) -> RenewalRule:
        return self._load_rule(tenant_id, rule_id).to_dto()

    def list_rules(self, tenant_id: UUID, include_inactive: bool = True) -> list[RenewalRule]:
        return self._renewals.list_rules(tenant_id, include_inactive)

    def delete_rule(self, tenant_id: UUID, rule_id: UUID, actor_id: UUID) -> None:
        """
        Archive the rule.  Proposals keep pointing at it.

        Raises:
            InvalidStateError: PENDING proposals still reference the rule.
        """
        with self._guarded(tenant_id, RULE_ENTITY, rule_id, actor_id, "delete_rule"):
            rule = self._load_rule(tenant_id, rule_id)
            pending = self._renewals.pending_proposals_for_rule(tenant_id, rule_id)
            if pending:
                raise InvalidStateError(
                    RULE_ENTITY, str(rule_id), "active" if rule.is_active else "inactive", "delete",
                    detail=f"{pending} pending proposal(s) reference this rule",
                )
            self._update_rule_row(
                rule,
                {"archived_at": self._clock.now(), "is_active": False, "updated_by_id": actor_id},
            )
            self._auditor.record(
                tenant_id, RULE_ENTITY, rule_id, AuditAction.RENEWAL_RULE_ARCHIVED, actor_id,
                {"name": rule.name},
            )

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate_contract(self, tenant_id: UUID, contract_id: UUID, actor_id: UUID) -> RenewalOutcome:
        """
        Apply the governing rule to one contract, at most once per cycle.

        Returns an outcome with ``skipped_reason`` set when nothing was done:
        the contract is not ACTIVE or has no end date, no rule's window has
        opened, or this cycle was already handled.
        """
        with self._guarded(tenant_id, "Contract", contract_id, actor_id, "evaluate_contract"):
            contract = self._lifecycle.get_contract(tenant_id, contract_id)
            if contract.status != ContractStatus.ACTIVE:
                return RenewalOutcome(contract_id, None, skipped_reason="contract_not_active")
            if contract.end_date is None:
                return RenewalOutcome(contract_id, None, skipped_reason="no_end_date")

            cycle = cycle_key(contract.id, contract.end_date)
            existing = self._renewals.proposal_for_cycle(tenant_id, cycle)
            if existing is not None:
                return RenewalOutcome(
                    contract_id, None, rule_id=existing.rule_id, proposal_id=existing.id,
                    successor_contract_id=existing.generated_contract_id,
                    skipped_reason="already_processed",
                )

            rules = self._renewals.list_rules(tenant_id, include_inactive=False)
            rule = select_rule(rules, contract, self._clock.today())
            if rule is None:
                return RenewalOutcome(contract_id, None, skipped_reason="no_matching_rule")

            with LogContext.bind(contract_id=contract_id):
                if rule.action is RenewalAction.NOTIFY_ONLY:
                    if contract.renewal_notice_cycle == cycle:
                        return RenewalOutcome(
                            contract_id, None, rule_id=rule.id, skipped_reason="already_processed",
                        )
                    outcome = self._notify_only(tenant_id, actor_id, contract, rule, cycle)
                elif rule.action is RenewalAction.AUTO_RENEW:
                    outcome = self._auto_renew(tenant_id, actor_id, contract, rule)
                else:
                    outcome = self._propose(tenant_id, actor_id, contract, rule)

                logger.info(
                    "renewal_evaluated",
                    extra={
                        "rule_id": str(rule.id),
                        "action": rule.action.value,
                        "proposal_id": str(outcome.proposal_id) if outcome.proposal_id else None,
                    },
                )
            return outcome

    # -------------------------------------------------------------------------
    # Proposals
    # -------------------------------------------------------------------------

    def create_proposal(
        self,
        tenant_id: UUID,
        contract_id: UUID,
        rule_id: UUID,
        actor_id: UUID,
    ) -> RenewalProposal:
        """
        Manually propose a renewal of ``contract_id`` on ``rule_id``'s terms,
        regardless of the rule's trigger window or action.
        """
        with self._guarded(tenant_id, "Contract", contract_id, actor_id, "create_proposal"):
            contract = self._lifecycle.get_contract(tenant_id, contract_id)
            if contract.status != ContractStatus.ACTIVE or contract.end_date is None:
                raise InvalidStateError(
                    "Contract", str(contract_id), contract.status.value, "create renewal proposal",
                    detail=None if contract.end_date else "contract has no end date",
                )
            rule = self._load_rule(tenant_id, rule_id).to_dto()
            if not criteria_match(rule.criteria, contract):
                raise ValidationError(
                    f"rule {rule_id} does not apply to contract {contract_id}", field="rule_id",
                )
            existing = self._renewals.proposal_for_cycle(tenant_id, cycle_key(contract.id, contract.end_date))
            if existing is not None:
                raise InvalidStateError(
                    "Contract", str(contract_id), contract.status.value, "create renewal proposal",
                    detail=f"proposal {existing.id} already covers this renewal cycle",
                )
            outcome = self._propose(tenant_id, actor_id, contract, rule)
            return self._load_proposal(tenant_id, outcome.proposal_id).to_dto()

    def get_proposal(self, tenant_id: UUID, proposal_id: UUID) -> RenewalProposal:
        return self._load_proposal(tenant_id, proposal_id).to_dto()

    def list_proposals(
        self,
        tenant_id: UUID,
        contract_id: UUID | None = None,
        status: ProposalStatus | None = None,
    ) -> list[RenewalProposal]:
        return self._renewals.list_proposals(tenant_id, contract_id, status)

    def process_proposal(
        self,
        tenant_id: UUID,
        proposal_id: UUID,
        actor_id: UUID,
        decision: ProposalDecision,
        notes: str | None = None,
        modified_value: Decimal | None = None,
        modified_end_date: date | None = None,
    ) -> RenewalProposal:
        """
        Decide a PENDING proposal.

        ACCEPTED applies the optional value / end date changes to the draft
        successor and activates it.  REJECTED cancels the draft successor.

        Either decision writes the source contract's renewal_status
        (APPROVED or DECLINED) through set_renewal_marker, which also
        leaves a CONTRACT_UPDATED audit row and bumps the version.  The
        marker is the source's only change: its status, dates, value and
        content stay as they were.  Recording the outcome on the source
        keeps renewal_status explicit rather than derived from proposal
        rows.
        """
        with self._guarded(tenant_id, PROPOSAL_ENTITY, proposal_id, actor_id, "process_proposal"):
            try:
                decision = ProposalDecision(decision)
            except ValueError:
                raise ValidationError(f"unknown decision '{decision}'", field="decision") from None
            proposal = self._load_proposal(tenant_id, proposal_id)
            if proposal.status != ProposalStatus.PENDING.value:
                raise InvalidStateError(
                    PROPOSAL_ENTITY, str(proposal_id), proposal.status, f"mark {decision.value}",
                )

            errors: list[str] = []
            if decision is ProposalDecision.REJECTED and (
                modified_value is not None or modified_end_date is not None
            ):
                errors.append("modifications are only allowed when accepting")
            if modified_value is not None and modified_value < 0:
                errors.append("modified_value must not be negative")
            if modified_end_date is not None and modified_end_date <= proposal.proposed_start_date:
                errors.append("modified_end_date must be after the proposed start date")
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)

            successor_id = proposal.generated_contract_id
            if decision is ProposalDecision.ACCEPTED:
                if modified_value is not None or modified_end_date is not None:
                    self._lifecycle.update_contract(
                        tenant_id, successor_id, actor_id,
                        ContractUpdate(value=modified_value, end_date=modified_end_date),
                    )
                self._lifecycle.activate_contract(tenant_id, successor_id, actor_id)
                values: dict[str, Any] = {"decision_notes": notes}
                if modified_value is not None:
                    values["proposed_value"] = modified_value
                if modified_end_date is not None:
                    values["proposed_end_date"] = modified_end_date
                proposal = self._transition_proposal(
                    proposal, ProposalStatus.ACCEPTED, actor_id, notes, values,
                )
                marker = RenewalStatus.APPROVED
            else:
                successor = self._lifecycle.get_contract(tenant_id, successor_id)
                if not successor.is_terminal:
                    self._lifecycle.cancel_contract(
                        tenant_id, successor_id, actor_id, "renewal proposal rejected",
                    )
                proposal = self._transition_proposal(
                    proposal, ProposalStatus.REJECTED, actor_id, notes, {"decision_notes": notes},
                )
                marker = RenewalStatus.DECLINED

            self._lifecycle.set_renewal_marker(
                tenant_id, proposal.source_contract_id, actor_id, renewal_status=marker,
            )
            logger.info(
                "renewal_proposal_processed",
                extra={"proposal_id": str(proposal_id), "decision": decision.value},
            )
            return proposal.to_dto()

    def _expire_proposal(self, tenant_id: UUID, proposal_id: UUID, actor_id: UUID, cutoff: date) -> bool:
        with self._guarded(tenant_id, PROPOSAL_ENTITY, proposal_id, actor_id, "expire_proposal"):
            proposal = self._load_proposal(tenant_id, proposal_id)
            if proposal.status != ProposalStatus.PENDING.value or proposal.proposed_start_date >= cutoff:
                return False
            successor = self._lifecycle.get_contract(tenant_id, proposal.generated_contract_id)
            if successor.status == ContractStatus.DRAFT:
                self._lifecycle.cancel_contract(
                    tenant_id, successor.id, actor_id, "renewal proposal expired",
                )
            proposal = self._transition_proposal(
                proposal, ProposalStatus.EXPIRED, actor_id, "renewal start date passed undecided",
            )
            self._lifecycle.set_renewal_marker(
                tenant_id, proposal.source_contract_id, actor_id, renewal_status=RenewalStatus.NONE,
            )
            return True

    # -------------------------------------------------------------------------
    # Sweep and stats
    # -------------------------------------------------------------------------

    def check_and_create_renewals(self, tenant_id: UUID, actor_id: UUID) -> RenewalSweepResult:
        """
        Renewal sweep for one tenant, under the tenant's renewal lease.

        Expires PENDING proposals whose renewal should already have started,
        then evaluates every ACTIVE contract whose end date lies within the
        widest active trigger window.  Safe to re-run.
        """
        counts = dict.fromkeys(
            ("evaluated", "proposals_created", "auto_renewed", "notifications",
             "skipped", "proposals_expired", "failed"),
            0,
        )
        with self._lock_service.lease(tenant_id, RENEWAL_LOCK):
            today = self._clock.today()
            cutoff = today - timedelta(days=self._proposal_grace_days)
            for proposal_id in self._renewals.stale_pending_proposal_ids(tenant_id, cutoff):
                expired = run_sweep_item(
                    lambda pid=proposal_id: self._expire_proposal(tenant_id, pid, actor_id, cutoff),
                    attempts=self._retry_attempts,
                    backoff_seconds=self._retry_backoff_seconds,
                    sleep=self._sleep,
                    label="renewal_proposal_expiration",
                )
                if expired is None:
                    counts["failed"] += 1
                elif expired:
                    counts["proposals_expired"] += 1

            window = self._renewals.max_trigger_days(tenant_id)
            candidates = (
                self._renewals.candidate_contract_ids(tenant_id, today, window)
                if window is not None else []
            )
            for contract_id in candidates:
                outcome = run_sweep_item(
                    lambda cid=contract_id: self.evaluate_contract(tenant_id, cid, actor_id),
                    attempts=self._retry_attempts,
                    backoff_seconds=self._retry_backoff_seconds,
                    sleep=self._sleep,
                    label="renewal_evaluation",
                )
                counts["evaluated"] += 1
                if outcome is None:
                    counts["failed"] += 1
                elif outcome.action is RenewalAction.AUTO_RENEW:
                    counts["auto_renewed"] += 1
                elif outcome.action is RenewalAction.PROPOSE:
                    counts["proposals_created"] += 1
                elif outcome.action is RenewalAction.NOTIFY_ONLY:
                    counts["notifications"] += 1
                else:
                    counts["skipped"] += 1

        logger.info("renewal_sweep_completed", extra=counts)
        return RenewalSweepResult(tenant_id=tenant_id, **counts)

    def get_renewal_stats(self, tenant_id: UUID) -> RenewalStats:
        return self._renewals.stats(tenant_id, self._clock.today(), self._upcoming_days)
