"""
AuditorService -- hash-chained, append-only audit log.

Responsibility:
    Creates AuditEvent records for every contract, workflow, signer,
    rule and proposal action (including rejected attempts), links them into
    a SHA-256 hash chain, validates the chain, and serves per-entity traces
    in sequence order so status history can be replayed deterministically.

Architecture position:
    Kernel > Services -- imperative shell, leaf of the service graph.
    Every other service depends on it.

Invariants enforced:
    - Append-only: events are flushed once and never touched again
      (db/immutability.py listeners).
    - Total order: seq is allocated from the locked "audit_event" counter.
    - Chain: hash = H(entity_type | entity_id | action | payload_hash |
      prev_hash); the first event has prev_hash None.

Failure modes:
    - AuditChainBrokenError from validate_chain() on any mismatch.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.exceptions import AuditChainBrokenError, ContractKernelError, error_payload
from contract_kernel.logging_config import get_logger
from contract_kernel.models.audit_event import STATUS_CHANGE_ACTIONS, AuditAction, AuditEvent
from contract_kernel.services.sequence_service import SequenceService
from contract_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for one entity, ordered by seq."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    def replay_status(self) -> str | None:
        """
        Fold the trace into the entity's final status.

        The creation event carries the initial status; each status-change
        event carries ``to_status``.  Rejected attempts change nothing.
        """
        status: str | None = None
        for entry in self.entries:
            if entry.action in STATUS_CHANGE_ACTIONS:
                status = entry.payload.get("to_status", status)
            elif "status" in entry.payload and entry.action != AuditAction.ATTEMPT_REJECTED:
                status = entry.payload["status"]
        return status


class AuditorService:
    """
    Service for creating and validating audit events.

    Contract:
        Flushes each event into the caller's session; never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new AuditEvent row is flushed with a strictly increasing seq
              and prev_hash equal to the previous event's hash.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            tenant_id=str(tenant_id),
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            tenant_id=tenant_id,
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Record a non-transition action (creation, update, notice)."""
        return self._create_audit_event(tenant_id, entity_type, entity_id, action, actor_id, payload)

    def record_status_change(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        from_status: str,
        to_status: str,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Record one state-machine edge: actor, from, to, reason, timestamp."""
        payload: dict[str, Any] = {
            "from_status": from_status,
            "to_status": to_status,
        }
        if reason is not None:
            payload["reason"] = reason
        if details:
            payload["details"] = details
        return self._create_audit_event(tenant_id, entity_type, entity_id, action, actor_id, payload)

    def record_rejected_attempt(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        operation: str,
        error: ContractKernelError,
    ) -> AuditEvent:
        """Record an operation that was refused, so failures stay traceable."""
        return self._create_audit_event(
            tenant_id,
            entity_type,
            entity_id,
            AuditAction.ATTEMPT_REJECTED,
            actor_id,
            {"operation": operation, "error": error_payload(error)},
        )

    # -------------------------------------------------------------------------
    # Validation and queries
    # -------------------------------------------------------------------------

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: at the first event whose hash or
                prev_hash linkage does not match.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, event in enumerate(events):
            expected_payload_hash = hash_payload(event.payload or {})
            if event.payload_hash != expected_payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_payload_hash, event.payload_hash)

            expected_hash = hash_audit_event(
                tenant_id=str(event.tenant_id),
                seq=event.seq,
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0 and event.prev_hash != events[i - 1].hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id), events[i - 1].hash, event.prev_hash or "None"
                )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, tenant_id: UUID, entity_type: str, entity_id: UUID) -> AuditTrace:
        """All audit events for one entity, in seq order."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.tenant_id == tenant_id,
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )
        return AuditTrace(entity_type=entity_type, entity_id=entity_id, entries=entries)
