"""
SignatureWorkflowEngine -- the multi-party ordered signing protocol.

Responsibility:
    Creates signing sessions for a contract, gates each signature on the
    signing order, records every SENT / VIEWED / SIGNED / DECLINED /
    CANCELLED / EXPIRED event in the append-only signature trail, decides
    completion through a CompletionPolicy, asks the lifecycle manager to
    activate the contract once the workflow completes, and verifies stored
    signatures against the document version that was signed.

    Workflow:  DRAFT -> SENT -> IN_PROGRESS -> {COMPLETED | DECLINED |
               CANCELLED | EXPIRED}
    Signer:    PENDING -> {SIGNED | DECLINED}

Architecture position:
    Kernel > Services -- imperative shell.  Depends on AuditorService,
    ContractLifecycleManager and the SignatureVerifier collaborator.

Invariants enforced:
    - Workflow and signer status change only via conditional UPDATEs.
    - A signature also bumps the workflow version conditionally, so two
      co-signers racing on the same workflow are serialized: one wins, the
      other gets ConcurrentModificationError (or AlreadySignedError when
      they raced on the same field).
    - A field is signed at most once (conditional UPDATE on
      signature_event_id IS NULL).
    - A signer with a higher signing order cannot sign while a required
      signer with a lower order has not signed (OutOfOrderError).
    - Signature events are append-only and ordered by seq.

Failure modes:
    - ValidationError, WorkflowNotFoundError, SignerNotFoundError,
      SignatureFieldNotFoundError, SignatureEventNotFoundError,
      InvalidStateError, OutOfOrderError, AlreadySignedError,
      ConcurrentModificationError, UnauthorizedError.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from contract_kernel.domain.clock import Clock
from contract_kernel.domain.collaborators import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    Sha256SignatureVerifier,
    SignatureVerifier,
    dispatch_safely,
)
from contract_kernel.domain.contract import Contract, ContractStatus
from contract_kernel.domain.metadata import (
    DEFAULT_METADATA_FIELDS,
    MetadataFieldType,
    validate_metadata,
)
from contract_kernel.domain.signature import (
    SIGNABLE_WORKFLOW_STATUSES,
    TERMINAL_WORKFLOW_STATUSES,
    SIGNER_TRANSITIONS,
    WORKFLOW_TRANSITIONS,
    AllRequiredSignersPolicy,
    CompletionPolicy,
    QuorumPolicy,
    SignatureEvent,
    SignatureEventType,
    SignatureFieldSpec,
    SignatureType,
    SignatureVerification,
    SignatureWorkflow,
    SignerDetails,
    SignerSpec,
    SignerStatus,
    SignerView,
    WorkflowStatus,
    WorkflowSweepResult,
    WorkflowUpdate,
    blocking_signers,
    resolve_completion_policy,
    signer_completes_with,
    signers_to_invite,
    sort_for_sending,
)
from contract_kernel.exceptions import (
    AlreadySignedError,
    ContractKernelError,
    InvalidStateError,
    OutOfOrderError,
    SignatureEventNotFoundError,
    SignatureFieldNotFoundError,
    SignerNotFoundError,
    ValidationError,
    WorkflowNotFoundError,
)
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.models.audit_event import AuditAction
from contract_kernel.models.contract import PartyModel
from contract_kernel.models.signature import (
    SignatureEventModel,
    SignatureFieldModel,
    SignatureWorkflowModel,
    SignerModel,
)
from contract_kernel.selectors.workflow_selector import WorkflowSelector
from contract_kernel.services.auditor_service import AuditorService
from contract_kernel.services.base import Authorizer, BaseService
from contract_kernel.services.contract_lifecycle import ContractLifecycleManager
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.services.tenant_lock import TenantLockService
from contract_kernel.utils.hashing import hash_text
from contract_kernel.utils.retry import run_sweep_item

logger = get_logger("services.signature_workflow")

ENTITY = "SignatureWorkflow"
SIGNER_ENTITY = "Signer"
EXPIRATION_LOCK = "workflow_expiration"

DEFAULT_EXPIRY_DAYS = 30

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# tenant_id -> policy used when require_all_signers is False
PolicyResolver = Callable[[UUID], CompletionPolicy]


def render_document(contract: Contract) -> str:
    """The text presented for signing: title, body and numbered terms."""
    parts = [contract.title, "", contract.body]
    for term in contract.terms:
        parts += ["", f"{term.position + 1}. {term.heading}", term.body]
    return "\n".join(parts)


def signature_payload(
    workflow_id: UUID,
    field_id: UUID,
    signer_id: UUID,
    signer_email: str,
    signature_type: str,
    signature_data: str,
    signed_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
    document_hash: str,
) -> dict[str, Any]:
    """Everything a SIGNED event commits to; hashed at signing, rebuilt at verification."""
    return {
        "workflow_id": str(workflow_id),
        "field_id": str(field_id),
        "signer_id": str(signer_id),
        "signer_email": signer_email,
        "signature_type": signature_type,
        "signature_data": signature_data,
        "signed_at": signed_at.isoformat(),
        "ip_address": ip_address,
        "user_agent": user_agent,
        "document_hash": document_hash,
    }


def _validate_signers(signers: Sequence[SignerSpec]) -> list[str]:
    errors: list[str] = []
    if not signers:
        return ["at least one signer is required"]
    keys: set[str] = set()
    emails: set[str] = set()
    for index, signer in enumerate(signers):
        if not signer.key:
            errors.append(f"signer {index}: key is required")
        elif signer.key in keys:
            errors.append(f"signer {index}: duplicate key '{signer.key}'")
        keys.add(signer.key)
        if not signer.name or not signer.name.strip():
            errors.append(f"signer {index}: name is required")
        email = (signer.email or "").strip().lower()
        if not _EMAIL_RE.match(email):
            errors.append(f"signer {index}: invalid email '{signer.email}'")
        elif email in emails:
            errors.append(f"signer {index}: duplicate email '{signer.email}'")
        emails.add(email)
        if signer.order < 1:
            errors.append(f"signer {index}: order must be at least 1")
    return errors


def _validate_fields(fields: Sequence[SignatureFieldSpec], signers: Sequence[SignerSpec]) -> list[str]:
    errors: list[str] = []
    keys = {s.key for s in signers}
    for index, spec in enumerate(fields):
        if spec.signer_key not in keys:
            errors.append(f"field {index}: unknown signer '{spec.signer_key}'")
        if spec.page < 1:
            errors.append(f"field {index}: page must be at least 1")
        if spec.width <= 0 or spec.height <= 0:
            errors.append(f"field {index}: width and height must be positive")
    owners = {f.signer_key for f in fields}
    for signer in signers:
        if signer.required and signer.key not in owners:
            errors.append(f"required signer '{signer.key}' has no signature field")
    return errors


class SignatureWorkflowEngine(BaseService[SignatureWorkflowModel]):
    """
    Orchestrates per-contract signing sessions.

    Contract:
        Every mutating method runs in its own SAVEPOINT (see BaseService).
        Notifications are dispatched only after the operation succeeded and
        never affect its outcome.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        lifecycle: ContractLifecycleManager,
        clock: Clock | None = None,
        verifier: SignatureVerifier | None = None,
        dispatcher: NotificationDispatcher | None = None,
        completion_policy_for: PolicyResolver | None = None,
        default_expiry_days: int | None = DEFAULT_EXPIRY_DAYS,
        metadata_fields: Mapping[str, MetadataFieldType] | None = None,
        authorizer: Authorizer | None = None,
        lock_service: TenantLockService | None = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(session, auditor, clock, authorizer)
        self._lifecycle = lifecycle
        self._verifier = verifier or Sha256SignatureVerifier()
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._completion_policy_for = completion_policy_for or (lambda tenant_id: AllRequiredSignersPolicy())
        self._default_expiry_days = default_expiry_days
        self._metadata_fields = dict(metadata_fields or DEFAULT_METADATA_FIELDS)
        self._lock_service = lock_service or TenantLockService(session, clock=self._clock)
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep
        self._sequence = SequenceService(session)
        self._workflows = WorkflowSelector(session)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _load(self, tenant_id: UUID, workflow_id: UUID) -> SignatureWorkflowModel:
        return self._get_for_tenant(SignatureWorkflowModel, tenant_id, workflow_id, WorkflowNotFoundError)

    @staticmethod
    def _find_signer(workflow: SignatureWorkflowModel, signer_id: UUID) -> SignerModel:
        for signer in workflow.signers:
            if signer.id == signer_id:
                return signer
        raise SignerNotFoundError(str(signer_id), str(workflow.tenant_id))

    @staticmethod
    def _find_field(workflow: SignatureWorkflowModel, field_id: UUID) -> SignatureFieldModel:
        for field in workflow.fields:
            if field.id == field_id:
                return field
        raise SignatureFieldNotFoundError(str(field_id), str(workflow.tenant_id))

    def _is_expired(self, workflow: SignatureWorkflowModel) -> bool:
        return workflow.expires_at is not None and self._clock.now() > workflow.expires_at

    def _append_event(
        self,
        workflow: SignatureWorkflowModel,
        event_type: SignatureEventType,
        actor_id: UUID | None = None,
        signer: SignerModel | None = None,
        field: SignatureFieldModel | None = None,
        details: SignerDetails | None = None,
        signature_data: str | None = None,
        payload_hash: str | None = None,
        detail: str | None = None,
        event_id: UUID | None = None,
        occurred_at: datetime | None = None,
    ) -> SignatureEventModel:
        details = details or SignerDetails()
        event = SignatureEventModel(
            id=event_id or uuid4(),
            tenant_id=workflow.tenant_id,
            workflow_id=workflow.id,
            seq=self._sequence.next_value(SequenceService.SIGNATURE_EVENT),
            event_type=event_type.value,
            occurred_at=occurred_at or self._clock.now(),
            actor_id=actor_id,
            signer_id=signer.id if signer is not None else None,
            signer_email=signer.email if signer is not None else None,
            field_id=field.id if field is not None else None,
            signature_type=field.signature_type if field is not None else None,
            signature_data=signature_data,
            ip_address=details.ip_address,
            user_agent=details.user_agent,
            payload_hash=payload_hash,
            document_hash=workflow.document_hash,
            detail=detail,
        )
        self.session.add(event)
        self.session.flush()
        logger.info(
            "signature_event_appended",
            extra={
                "workflow_id": str(workflow.id),
                "event_type": event_type.value,
                "seq": event.seq,
            },
        )
        return event

    def _transition(
        self,
        workflow: SignatureWorkflowModel,
        target: WorkflowStatus,
        actor_id: UUID,
        operation: str,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
    ) -> SignatureWorkflowModel:
        current = WorkflowStatus(workflow.status)
        if target not in WORKFLOW_TRANSITIONS[current]:
            raise InvalidStateError(ENTITY, str(workflow.id), current.value, operation)

        tenant_id, workflow_id = workflow.tenant_id, workflow.id
        update_values = {"status": target.value, "updated_by_id": actor_id}
        update_values.update(values or {})
        self._conditional_update(
            SignatureWorkflowModel, ENTITY, tenant_id, workflow_id, current.value, update_values,
        )
        self._auditor.record_status_change(
            tenant_id, ENTITY, workflow_id, AuditAction.WORKFLOW_STATUS_CHANGED, actor_id,
            current.value, target.value, reason,
        )
        logger.info(
            "workflow_status_changed",
            extra={
                "workflow_id": str(workflow_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return self._load(tenant_id, workflow_id)

    def _transition_signer(
        self,
        workflow: SignatureWorkflowModel,
        signer: SignerModel,
        target: SignerStatus,
        actor_id: UUID,
        operation: str,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
    ) -> None:
        current = SignerStatus(signer.status)
        if target not in SIGNER_TRANSITIONS[current]:
            raise InvalidStateError(SIGNER_ENTITY, str(signer.id), current.value, operation)

        update_values: dict[str, Any] = {"status": target.value}
        update_values.update(values or {})
        self._conditional_update(
            SignerModel, SIGNER_ENTITY, workflow.tenant_id, signer.id, current.value, update_values,
        )
        self._auditor.record_status_change(
            workflow.tenant_id, SIGNER_ENTITY, signer.id, AuditAction.SIGNER_STATUS_CHANGED,
            actor_id, current.value, target.value, reason,
            details={"workflow_id": str(workflow.id)},
        )

    def _policy(self, workflow: SignatureWorkflowModel) -> CompletionPolicy:
        return resolve_completion_policy(workflow.completion_policy, workflow.quorum)

    def _notify_signers(self, event: str, workflow: SignatureWorkflow, signer_ids: set[UUID]) -> None:
        recipients = [s.email for s in workflow.signers if s.id in signer_ids]
        dispatch_safely(
            self._dispatcher, event, recipients,
            {
                "workflow_id": str(workflow.id),
                "contract_id": str(workflow.contract_id),
                "title": workflow.title,
            },
        )

    # -------------------------------------------------------------------------
    # Create / read / update
    # -------------------------------------------------------------------------

    def create_workflow(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        contract_id: UUID,
        signers: Sequence[SignerSpec],
        fields: Sequence[SignatureFieldSpec],
        expires_at: datetime | None = None,
        require_all_signers: bool = True,
        title: str | None = None,
        message: str | None = None,
        completion_policy: CompletionPolicy | None = None,
        metadata: dict[str, Any] | None = None,
        workflow_id: UUID | None = None,
    ) -> SignatureWorkflow:
        """
        Open a signing session and send it.

        Postconditions:
            - The contract is PENDING_SIGNATURE.
            - The workflow is SENT, with one SENT event per signer in
              (signing order, position) order.
            - Signers whose turn it is are notified.

        Raises:
            ValidationError: no signers, duplicate signer emails, a field
                naming an unknown signer, a required signer without a field,
                an expiry in the past, an unsatisfiable quorum.
            InvalidStateError: contract not DRAFT / PENDING_SIGNATURE, or
                it already has an open workflow.
        """
        workflow_id = workflow_id or uuid4()
        with self._guarded(tenant_id, ENTITY, workflow_id, actor_id, "create_workflow"):
            now = self._clock.now()
            errors = _validate_signers(signers) + _validate_fields(fields, signers)
            if title is not None and not title.strip():
                errors.append("title must not be blank")
            if expires_at is not None:
                if expires_at.tzinfo is None:
                    errors.append("expires_at must be timezone-aware")
                elif expires_at <= now:
                    errors.append("expires_at is in the past")

            if require_all_signers:
                policy: CompletionPolicy = AllRequiredSignersPolicy()
            else:
                policy = completion_policy or self._completion_policy_for(tenant_id)
            if isinstance(policy, QuorumPolicy) and signers and policy.quorum > len(signers):
                errors.append(
                    f"quorum of {policy.quorum} exceeds the number of signers ({len(signers)})"
                )
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)
            workflow_metadata = validate_metadata(metadata, self._metadata_fields)

            contract = self._lifecycle.get_contract(tenant_id, contract_id)
            if contract.status not in (ContractStatus.DRAFT, ContractStatus.PENDING_SIGNATURE):
                raise InvalidStateError(
                    "Contract", str(contract_id), contract.status.value, "create signature workflow",
                )
            open_id = self._workflows.open_for_contract(tenant_id, contract_id)
            if open_id is not None:
                raise InvalidStateError(
                    "Contract", str(contract_id), contract.status.value, "create signature workflow",
                    detail=f"workflow {open_id} is still open",
                )

            if expires_at is None and self._default_expiry_days:
                expires_at = now + timedelta(days=self._default_expiry_days)

            document = render_document(contract)
            model = SignatureWorkflowModel(
                id=workflow_id,
                tenant_id=tenant_id,
                contract_id=contract_id,
                title=(title or contract.title).strip(),
                message=message,
                document_content=document,
                document_hash=hash_text(document),
                status=WorkflowStatus.DRAFT.value,
                require_all_signers=require_all_signers,
                completion_policy=policy.name,
                quorum=policy.quorum,
                expires_at=expires_at,
                attributes=workflow_metadata,
                created_at=now,
                created_by_id=actor_id,
                version=1,
            )
            by_key: dict[str, SignerModel] = {}
            for index, spec in enumerate(signers):
                signer = SignerModel(
                    id=uuid4(),
                    tenant_id=tenant_id,
                    position=index,
                    name=spec.name.strip(),
                    email=spec.email.strip(),
                    role=spec.role,
                    signing_order=spec.order,
                    required=spec.required,
                    user_id=spec.user_id,
                    client_id=spec.client_id,
                    status=SignerStatus.PENDING.value,
                    version=1,
                )
                by_key[spec.key] = signer
            model.signers = list(by_key.values())
            model.fields = [
                SignatureFieldModel(
                    tenant_id=tenant_id,
                    signer_id=by_key[spec.signer_key].id,
                    position=index,
                    page=spec.page,
                    x=spec.x,
                    y=spec.y,
                    width=spec.width,
                    height=spec.height,
                    signature_type=spec.signature_type.value,
                    required=spec.required,
                    label=spec.label,
                )
                for index, spec in enumerate(fields)
            ]
            self.session.add(model)
            self.session.flush()

            self._auditor.record(
                tenant_id, ENTITY, workflow_id, AuditAction.WORKFLOW_CREATED, actor_id,
                {
                    "status": WorkflowStatus.DRAFT.value,
                    "contract_id": str(contract_id),
                    "signer_count": len(signers),
                    "completion_policy": policy.name,
                    "document_hash": model.document_hash,
                },
            )

            self._lifecycle.mark_pending_signature(tenant_id, contract_id, actor_id)
            model = self._transition(model, WorkflowStatus.SENT, actor_id, "send")

            for signer in sort_for_sending(s.to_dto() for s in model.signers):
                self._append_event(
                    model, SignatureEventType.SENT, actor_id=actor_id,
                    signer=self._find_signer(model, signer.id),
                )

            with LogContext.bind(contract_id=contract_id, workflow_id=workflow_id):
                logger.info(
                    "workflow_created",
                    extra={"signer_count": len(signers), "completion_policy": policy.name},
                )
            workflow = self._load(tenant_id, workflow_id).to_dto()

        invite = {s.id for s in signers_to_invite(workflow.signers)}
        self._notify_signers("signature.requested", workflow, invite)
        return workflow

    def get_workflow(self, tenant_id: UUID, workflow_id: UUID) -> SignatureWorkflow:
        return self._load(tenant_id, workflow_id).to_dto()

    def list_workflows(
        self,
        tenant_id: UUID,
        contract_id: UUID | None = None,
        status: WorkflowStatus | None = None,
    ) -> list[SignatureWorkflow]:
        return self._workflows.list_workflows(tenant_id, contract_id, status)

    def update_workflow(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        actor_id: UUID,
        update: WorkflowUpdate,
    ) -> SignatureWorkflow:
        """Edit title, message, expiry or metadata while SENT and nobody has acted yet."""
        with self._guarded(tenant_id, ENTITY, workflow_id, actor_id, "update_workflow"):
            model = self._load(tenant_id, workflow_id)
            if model.status != WorkflowStatus.SENT.value or any(
                s.status != SignerStatus.PENDING.value for s in model.signers
            ) or any(f.signature_event_id is not None for f in model.fields):
                raise InvalidStateError(
                    ENTITY, str(workflow_id), model.status, "update",
                    detail="only a sent workflow without signatures can be edited",
                )
            changed = update.changed_fields()
            if not changed:
                return model.to_dto()

            errors: list[str] = []
            if update.title is not None and not update.title.strip():
                errors.append("title must not be blank")
            if update.expires_at is not None:
                if update.expires_at.tzinfo is None:
                    errors.append("expires_at must be timezone-aware")
                elif update.expires_at <= self._clock.now():
                    errors.append("expires_at is in the past")
            if errors:
                raise ValidationError("; ".join(errors), errors=errors)

            values: dict[str, Any] = {"updated_by_id": actor_id}
            if update.title is not None:
                values["title"] = update.title.strip()
            if update.message is not None:
                values["message"] = update.message
            if update.expires_at is not None:
                values["expires_at"] = update.expires_at
            if update.metadata is not None:
                values["attributes"] = validate_metadata(update.metadata, self._metadata_fields)

            self._conditional_update(
                SignatureWorkflowModel, ENTITY, tenant_id, workflow_id, model.status, values,
                expected_version=model.version,
            )
            self._auditor.record(
                tenant_id, ENTITY, workflow_id, AuditAction.WORKFLOW_UPDATED, actor_id,
                {"changed_fields": changed},
            )
            return self._load(tenant_id, workflow_id).to_dto()

    # -------------------------------------------------------------------------
    # Signing
    # -------------------------------------------------------------------------

    def sign(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        signer_id: UUID,
        field_id: UUID,
        signature_data: str,
        signature_type: SignatureType | None = None,
        details: SignerDetails | None = None,
        actor_id: UUID | None = None,
    ) -> SignatureWorkflow:
        """
        Sign one field on behalf of one signer.

        Completing the signer's last required field makes the signer SIGNED.
        The first signature moves the workflow to IN_PROGRESS; once the
        completion policy is satisfied it becomes COMPLETED and contract
        activation is attempted.  An activation failure is audited and
        logged; it does not undo the signature.
        """
        actor_id = actor_id or signer_id
        details = details or SignerDetails()
        with self._guarded(tenant_id, ENTITY, workflow_id, actor_id, "sign"):
            if signature_data is None or not str(signature_data).strip():
                raise ValidationError("signature_data is required", field="signature_data")

            model = self._load(tenant_id, workflow_id)
            current = WorkflowStatus(model.status)
            if current not in SIGNABLE_WORKFLOW_STATUSES:
                raise InvalidStateError(ENTITY, str(workflow_id), current.value, "sign")
            if self._is_expired(model):
                raise InvalidStateError(
                    ENTITY, str(workflow_id), current.value, "sign", detail="workflow has expired",
                )
            contract = self._lifecycle.get_contract(tenant_id, model.contract_id)
            if contract.is_terminal:
                raise InvalidStateError(
                    "Contract", str(contract.id), contract.status.value, "sign",
                )

            signer = self._find_signer(model, signer_id)
            field = self._find_field(model, field_id)
            if field.signer_id != signer.id:
                raise ValidationError(
                    f"field {field_id} does not belong to signer {signer_id}", field="field_id",
                )
            if signer.status == SignerStatus.SIGNED.value:
                raise AlreadySignedError(str(workflow_id), str(signer_id))
            if signer.status != SignerStatus.PENDING.value:
                raise InvalidStateError(SIGNER_ENTITY, str(signer_id), signer.status, "sign")
            if field.signature_event_id is not None:
                raise AlreadySignedError(str(workflow_id), str(signer_id), str(field_id))
            if signature_type is not None and signature_type.value != field.signature_type:
                raise ValidationError(
                    f"field expects a {field.signature_type} signature", field="signature_type",
                )

            signer_dtos = [s.to_dto() for s in model.signers]
            signer_dto = next(s for s in signer_dtos if s.id == signer.id)
            blocking = blocking_signers(signer_dto, signer_dtos)
            if blocking:
                raise OutOfOrderError(
                    str(workflow_id), str(signer_id), signer.signing_order,
                    [str(b.id) for b in blocking],
                )
            invited_before = {s.id for s in signers_to_invite(signer_dtos)}

            # Serialization point for co-signers
            self._conditional_update(
                SignatureWorkflowModel, ENTITY, tenant_id, workflow_id, current.value,
                {"updated_by_id": actor_id}, expected_version=model.version,
            )

            now = self._clock.now()
            event_id = uuid4()
            claimed = self.session.execute(
                update(SignatureFieldModel)
                .where(
                    SignatureFieldModel.id == field_id,
                    SignatureFieldModel.tenant_id == tenant_id,
                    SignatureFieldModel.signature_event_id.is_(None),
                )
                .values(signed_at=now, signature_event_id=event_id)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise AlreadySignedError(str(workflow_id), str(signer_id), str(field_id))

            payload = signature_payload(
                workflow_id, field_id, signer.id, signer.email, field.signature_type,
                str(signature_data), now, details.ip_address, details.user_agent,
                model.document_hash,
            )
            self._append_event(
                model, SignatureEventType.SIGNED, actor_id=actor_id, signer=signer, field=field,
                details=details, signature_data=str(signature_data),
                payload_hash=self._verifier.compute_hash(payload),
                event_id=event_id, occurred_at=now,
            )

            if signer_completes_with([f.to_dto() for f in model.fields if f.signer_id == signer.id], field_id):
                self._transition_signer(
                    model, signer, SignerStatus.SIGNED, actor_id, "sign", values={"signed_at": now},
                )
                self.session.execute(
                    update(PartyModel)
                    .where(
                        PartyModel.tenant_id == tenant_id,
                        PartyModel.contract_id == model.contract_id,
                        func.lower(PartyModel.email) == signer.email.lower(),
                        PartyModel.signed_at.is_(None),
                    )
                    .values(signed_at=now)
                    .execution_options(synchronize_session=False)
                )

            model = self._load(tenant_id, workflow_id)
            if model.status == WorkflowStatus.SENT.value:
                model = self._transition(
                    model, WorkflowStatus.IN_PROGRESS, actor_id, "sign", reason="first signature",
                )

            completed = self._policy(model).is_satisfied([s.to_dto() for s in model.signers])
            if completed:
                model = self._transition(
                    model, WorkflowStatus.COMPLETED, actor_id, "complete",
                    reason=f"{model.completion_policy} policy satisfied",
                    values={"completed_at": now},
                )
            logger.info(
                "signature_recorded",
                extra={
                    "workflow_id": str(workflow_id),
                    "signer_id": str(signer_id),
                    "field_id": str(field_id),
                    "workflow_completed": completed,
                },
            )
            workflow = model.to_dto()

        if completed:
            self._activate_after_completion(tenant_id, workflow, actor_id)
            self._notify_signers("signature.completed", workflow, {s.id for s in workflow.signers})
        else:
            newly_invited = {s.id for s in signers_to_invite(workflow.signers)} - invited_before
            self._notify_signers("signature.requested", workflow, newly_invited)
        return workflow

    def _activate_after_completion(self, tenant_id: UUID, workflow: SignatureWorkflow, actor_id: UUID) -> None:
        try:
            self._lifecycle.activate_contract(tenant_id, workflow.contract_id, actor_id)
        except ContractKernelError as exc:
            logger.warning(
                "contract_activation_after_signing_failed",
                extra={
                    "workflow_id": str(workflow.id),
                    "contract_id": str(workflow.contract_id),
                    "error_code": exc.code,
                },
            )

    def decline(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        signer_id: UUID,
        reason: str,
        details: SignerDetails | None = None,
        actor_id: UUID | None = None,
    ) -> SignatureWorkflow:
        """
        A PENDING signer declines, whatever their order.

        A single decline voids the workflow (DECLINED).  The contract stays
        PENDING_SIGNATURE; cancelling or re-issuing is up to the caller.
        """
        actor_id = actor_id or signer_id
        with self._guarded(tenant_id, ENTITY, workflow_id, actor_id, "decline"):
            if reason is None or not reason.strip():
                raise ValidationError("a reason is required to decline", field="reason")
            model = self._load(tenant_id, workflow_id)
            if model.status not in {s.value for s in SIGNABLE_WORKFLOW_STATUSES}:
                raise InvalidStateError(ENTITY, str(workflow_id), model.status, "decline")
            signer = self._find_signer(model, signer_id)

            now = self._clock.now()
            self._transition_signer(
                model, signer, SignerStatus.DECLINED, actor_id, "decline", reason,
                values={"declined_at": now, "decline_reason": reason.strip()},
            )
            self._append_event(
                model, SignatureEventType.DECLINED, actor_id=actor_id, signer=signer,
                details=details, detail=reason.strip(),
            )
            model = self._transition(
                self._load(tenant_id, workflow_id), WorkflowStatus.DECLINED, actor_id, "decline",
                reason, values={"closed_at": now},
            )
            workflow = model.to_dto()

        self._notify_signers(
            "signature.declined", workflow, {s.id for s in workflow.signers if s.id != signer_id},
        )
        return workflow

    def cancel(self, tenant_id: UUID, workflow_id: UUID, actor_id: UUID, reason: str) -> SignatureWorkflow:
        """SENT / IN_PROGRESS -> CANCELLED.  The contract status is not touched."""
        with self._guarded(tenant_id, ENTITY, workflow_id, actor_id, "cancel"):
            if reason is None or not reason.strip():
                raise ValidationError("a reason is required to cancel", field="reason")
            model = self._load(tenant_id, workflow_id)
            if model.status not in {s.value for s in SIGNABLE_WORKFLOW_STATUSES}:
                raise InvalidStateError(ENTITY, str(workflow_id), model.status, "cancel")
            self._append_event(
                model, SignatureEventType.CANCELLED, actor_id=actor_id, detail=reason.strip(),
            )
            model = self._transition(
                model, WorkflowStatus.CANCELLED, actor_id, "cancel", reason,
                values={"closed_at": self._clock.now()},
            )
            workflow = model.to_dto()

        pending = {s.id for s in workflow.signers if s.status is SignerStatus.PENDING}
        self._notify_signers("signature.cancelled", workflow, pending)
        return workflow

    def record_view(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        signer_id: UUID,
        details: SignerDetails | None = None,
    ) -> SignatureEvent:
        """Append a VIEWED event.  The workflow status is unchanged."""
        with self._guarded(tenant_id, ENTITY, workflow_id, signer_id, "record_view"):
            model = self._load(tenant_id, workflow_id)
            if WorkflowStatus(model.status) in TERMINAL_WORKFLOW_STATUSES:
                raise InvalidStateError(ENTITY, str(workflow_id), model.status, "view")
            signer = self._find_signer(model, signer_id)
            event = self._append_event(
                model, SignatureEventType.VIEWED, actor_id=signer.user_id or signer.id,
                signer=signer, details=details,
            )
            return event.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_signer_view(self, tenant_id: UUID, workflow_id: UUID, signer_id: UUID) -> SignerView:
        """What one signer may see: the workflow header, their fields, and whether they can sign now."""
        workflow = self._load(tenant_id, workflow_id).to_dto()
        signer = workflow.signer(signer_id)
        if signer is None:
            raise SignerNotFoundError(str(signer_id), str(tenant_id))

        is_expired = workflow.expires_at is not None and self._clock.now() > workflow.expires_at
        blocked = bool(blocking_signers(signer, workflow.signers))
        fields = workflow.fields_for(signer_id)
        can_sign = (
            workflow.status in SIGNABLE_WORKFLOW_STATUSES
            and not is_expired
            and signer.status is SignerStatus.PENDING
            and not blocked
            and any(not f.is_signed for f in fields)
        )
        return SignerView(
            workflow_id=workflow.id,
            contract_id=workflow.contract_id,
            title=workflow.title,
            message=workflow.message,
            status=workflow.status,
            expires_at=workflow.expires_at,
            signer=signer,
            fields=fields,
            can_sign=can_sign,
            is_expired=is_expired,
            blocked_by_order=blocked,
        )

    def get_audit_trail(self, tenant_id: UUID, workflow_id: UUID) -> list[SignatureEvent]:
        """The workflow's signature events in creation order."""
        self._load(tenant_id, workflow_id)
        return self._workflows.trail(tenant_id, workflow_id)

    def verify_signature(
        self,
        tenant_id: UUID,
        workflow_id: UUID,
        signature_event_id: UUID,
    ) -> SignatureVerification:
        """
        Recompute the payload hash of a SIGNED event and compare the
        document hash recorded at signing with the stored document.
        """
        model = self._load(tenant_id, workflow_id)
        event = self._workflows.signature_event(tenant_id, workflow_id, signature_event_id)
        if event is None:
            raise SignatureEventNotFoundError(str(signature_event_id), str(tenant_id))
        if event.event_type != SignatureEventType.SIGNED.value:
            raise InvalidStateError(
                "SignatureEvent", str(signature_event_id), event.event_type, "verify",
                detail="only SIGNED events carry a signature",
            )

        payload = signature_payload(
            workflow_id, event.field_id, event.signer_id, event.signer_email or "",
            event.signature_type or "", event.signature_data or "", event.occurred_at,
            event.ip_address, event.user_agent, event.document_hash or "",
        )
        actual_payload_hash = self._verifier.compute_hash(payload)
        payload_ok = self._verifier.verify(payload, event.payload_hash or "")

        actual_document_hash = hash_text(model.document_content)
        expected_document_hash = event.document_hash or ""
        document_ok = (
            actual_document_hash == expected_document_hash
            and model.document_hash == expected_document_hash
        )

        verdict = SignatureVerification(
            signature_event_id=signature_event_id,
            is_valid=payload_ok and document_ok,
            payload_hash_matches=payload_ok,
            document_hash_matches=document_ok,
            expected_payload_hash=event.payload_hash or "",
            actual_payload_hash=actual_payload_hash,
            expected_document_hash=expected_document_hash,
            actual_document_hash=actual_document_hash,
            verified_at=self._clock.now(),
        )
        log = logger.info if verdict.is_valid else logger.warning
        log(
            "signature_verified",
            extra={
                "workflow_id": str(workflow_id),
                "signature_event_id": str(signature_event_id),
                "is_valid": verdict.is_valid,
            },
        )
        return verdict

    # -------------------------------------------------------------------------
    # Expiration sweep
    # -------------------------------------------------------------------------

    def _expire_one(self, tenant_id: UUID, workflow_id: UUID, actor_id: UUID) -> bool:
        with self._guarded(tenant_id, ENTITY, workflow_id, actor_id, "expire_workflow"):
            model = self._load(tenant_id, workflow_id)
            if WorkflowStatus(model.status) in TERMINAL_WORKFLOW_STATUSES or not self._is_expired(model):
                return False
            self._append_event(model, SignatureEventType.EXPIRED, actor_id=actor_id,
                               detail="expiry reached")
            self._transition(
                model, WorkflowStatus.EXPIRED, actor_id, "expire", "expiry reached",
                values={"closed_at": self._clock.now()},
            )
            return True

    def expire_stale_workflows(self, tenant_id: UUID, actor_id: UUID) -> WorkflowSweepResult:
        """
        Move every open workflow past its expires_at to EXPIRED.

        The owning contracts stay PENDING_SIGNATURE.
        """
        expired = skipped = failed = 0
        with self._lock_service.lease(tenant_id, EXPIRATION_LOCK):
            for workflow_id in self._workflows.expired_open_ids(tenant_id, self._clock.now()):
                outcome = run_sweep_item(
                    lambda wid=workflow_id: self._expire_one(tenant_id, wid, actor_id),
                    attempts=self._retry_attempts,
                    backoff_seconds=self._retry_backoff_seconds,
                    sleep=self._sleep,
                    label="workflow_expiration",
                )
                if outcome is None:
                    failed += 1
                elif outcome:
                    expired += 1
                else:
                    skipped += 1

        logger.info(
            "workflow_expiration_sweep_completed",
            extra={"expired": expired, "skipped": skipped, "failed": failed},
        )
        return WorkflowSweepResult(tenant_id=tenant_id, expired=expired, skipped=skipped, failed=failed)
