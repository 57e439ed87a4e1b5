"""
ORM-level append-only enforcement for the kernel's legal records.

===============================================================================
WHAT IS PROTECTED
===============================================================================

  AuditEvent       Hash-chained audit log.  Never updated, never deleted.
  SignatureEvent   The signature trail of a workflow.  Never updated,
                   never deleted.

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events during
flush.  The listeners below raise ImmutabilityViolationError, which aborts
the flush.  Raw SQL bypasses these listeners; AuditorService.validate_chain
detects that kind of tampering after the fact.

===============================================================================
USAGE
===============================================================================

Registration happens when ``contract_kernel.models`` is imported and is
idempotent:

    from contract_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()
"""

from sqlalchemy import event

from contract_kernel.exceptions import ImmutabilityViolationError
from contract_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    verb = "modified" if operation == "UPDATE" else "deleted"
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be {verb}",
    )


def _check_audit_event_update(mapper, connection, target):
    _block("AuditEvent", target, "UPDATE")


def _check_audit_event_delete(mapper, connection, target):
    _block("AuditEvent", target, "DELETE")


def _check_signature_event_update(mapper, connection, target):
    _block("SignatureEvent", target, "UPDATE")


def _check_signature_event_delete(mapper, connection, target):
    _block("SignatureEvent", target, "DELETE")


def _listen_once(target, event_name, listener_fn) -> None:
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def register_immutability_listeners() -> None:
    """Register all append-only listeners (safe to call repeatedly)."""
    from contract_kernel.models.audit_event import AuditEvent
    from contract_kernel.models.signature import SignatureEventModel

    _listen_once(AuditEvent, "before_update", _check_audit_event_update)
    _listen_once(AuditEvent, "before_delete", _check_audit_event_delete)
    _listen_once(SignatureEventModel, "before_update", _check_signature_event_update)
    _listen_once(SignatureEventModel, "before_delete", _check_signature_event_delete)
