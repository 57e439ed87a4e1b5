"""
Typed Exception Hierarchy for the Contract Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Contract and signature operations fail for a small number of well-defined
reasons. Callers (HTTP controllers, schedulers) map those reasons to
transport-level responses, so every failure must be:
  1. A TYPED exception class (catch by type, not message)
  2. Carrying a CODE attribute (machine-readable, API-safe)
  3. Carrying structured DATA (ids, states) rather than only a message

Example:
    try:
        engine.sign(tenant_id, workflow_id, signer_id, field_id, data)
    except OutOfOrderError as e:
        api_response(409, code=e.code, blocking=e.blocking_signer_ids)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ContractKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- ContractNotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- SignerNotFoundError
    |   +-- SignatureFieldNotFoundError
    |   +-- SignatureEventNotFoundError
    |   +-- RenewalRuleNotFoundError
    |   +-- RenewalProposalNotFoundError
    |
    +-- StateError
    |   +-- InvalidStateError
    |   +-- OutOfOrderError
    |   +-- AlreadySignedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |   +-- TenantLockHeldError
    |
    +-- UnauthorizedError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|--------------------------------------
Validation   | VALIDATION_ERROR            | Malformed input, before any mutation
NotFound     | CONTRACT_NOT_FOUND          | Unknown contract id within tenant
             | WORKFLOW_NOT_FOUND          | Unknown workflow id within tenant
             | SIGNER_NOT_FOUND            | Signer not part of the workflow
             | SIGNATURE_FIELD_NOT_FOUND   | Field not part of the workflow
             | SIGNATURE_EVENT_NOT_FOUND   | Unknown signature event id
             | RENEWAL_RULE_NOT_FOUND      | Unknown renewal rule id
             | RENEWAL_PROPOSAL_NOT_FOUND  | Unknown renewal proposal id
State        | INVALID_STATE               | Operation illegal from current state
             | OUT_OF_ORDER                | Earlier-order signer still pending
             | ALREADY_SIGNED              | Signer or field already signed
Concurrency  | CONCURRENT_MODIFICATION     | Conditional update matched no row
             | TENANT_LOCK_HELD            | Another sweep holds the tenant lease
Auth         | UNAUTHORIZED                | Actor lacks tenant/role permission
Audit        | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
Immutability | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row
"""

from typing import Any


class ContractKernelError(Exception):
    """Base exception for all contract kernel errors."""

    code: str = "CONTRACT_KERNEL_ERROR"


# Validation


class ValidationError(ContractKernelError):
    """Malformed input, detected before any mutation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, errors: list[str] | None = None):
        self.field = field
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


# Not-found errors (always tenant-scoped)


class NotFoundError(ContractKernelError):
    """Base exception for unknown ids within a tenant scope."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str, tenant_id: str | None = None):
        self.entity_id = entity_id
        self.tenant_id = tenant_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ContractNotFoundError(NotFoundError):
    code: str = "CONTRACT_NOT_FOUND"
    entity_type = "Contract"


class WorkflowNotFoundError(NotFoundError):
    code: str = "WORKFLOW_NOT_FOUND"
    entity_type = "SignatureWorkflow"


class SignerNotFoundError(NotFoundError):
    code: str = "SIGNER_NOT_FOUND"
    entity_type = "Signer"


class SignatureFieldNotFoundError(NotFoundError):
    code: str = "SIGNATURE_FIELD_NOT_FOUND"
    entity_type = "SignatureField"


class SignatureEventNotFoundError(NotFoundError):
    code: str = "SIGNATURE_EVENT_NOT_FOUND"
    entity_type = "SignatureEvent"


class RenewalRuleNotFoundError(NotFoundError):
    code: str = "RENEWAL_RULE_NOT_FOUND"
    entity_type = "RenewalRule"


class RenewalProposalNotFoundError(NotFoundError):
    code: str = "RENEWAL_PROPOSAL_NOT_FOUND"
    entity_type = "RenewalProposal"


# State errors


class StateError(ContractKernelError):
    """Base exception for operations that are illegal in the current state."""

    code: str = "STATE_ERROR"


class InvalidStateError(StateError):
    """Operation not legal from the entity's current state."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        operation: str,
        detail: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.operation = operation
        self.detail = detail
        message = f"Cannot {operation} {entity_type} {entity_id} in status '{current_status}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class OutOfOrderError(StateError):
    """A signer tried to sign before every earlier-order signer completed."""

    code: str = "OUT_OF_ORDER"

    def __init__(
        self,
        workflow_id: str,
        signer_id: str,
        signing_order: int,
        blocking_signer_ids: list[str],
    ):
        self.workflow_id = workflow_id
        self.signer_id = signer_id
        self.signing_order = signing_order
        self.blocking_signer_ids = blocking_signer_ids
        super().__init__(
            f"Signer {signer_id} (order {signing_order}) is blocked by "
            f"{len(blocking_signer_ids)} earlier signer(s) on workflow {workflow_id}"
        )


class AlreadySignedError(StateError):
    """The signer or the field has already been signed."""

    code: str = "ALREADY_SIGNED"

    def __init__(self, workflow_id: str, signer_id: str, field_id: str | None = None):
        self.workflow_id = workflow_id
        self.signer_id = signer_id
        self.field_id = field_id
        target = f"field {field_id}" if field_id else f"signer {signer_id}"
        super().__init__(f"{target} already signed on workflow {workflow_id}")


# Concurrency errors


class ConcurrencyError(ContractKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """A conditional update found the entity no longer in the expected state."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_status: str | None = None,
        actual_status: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"expected '{expected_status}', found '{actual_status}'"
        )


class TenantLockHeldError(ConcurrencyError):
    """Another sweep currently holds the tenant lease."""

    code: str = "TENANT_LOCK_HELD"

    def __init__(self, tenant_id: str, lock_name: str, holder: str | None = None):
        self.tenant_id = tenant_id
        self.lock_name = lock_name
        self.holder = holder
        super().__init__(
            f"Lease '{lock_name}' for tenant {tenant_id} is held by {holder or 'another worker'}"
        )


# Authorization


class UnauthorizedError(ContractKernelError):
    """Actor lacks tenant or role permission for the operation."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: str, operation: str, reason: str | None = None):
        self.actor_id = actor_id
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} is not authorized to {operation}"
            + (f": {reason}" if reason else "")
        )


# Audit


class AuditError(ContractKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability


class ImmutabilityError(ContractKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


def error_payload(exc: ContractKernelError) -> dict[str, Any]:
    """Structured, JSON-safe view of an error for audit and transport layers."""
    payload: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    for key, value in vars(exc).items():
        if key.startswith("_") or key == "args":
            continue
        payload[key] = value if isinstance(value, (int, float, bool, list)) or value is None else str(value)
    return payload
