"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor, the tenant-scoped load helper, the
    conditional status update used for every state transition, and the
    operation guard that turns a refused operation into an audited no-op.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    ContractLifecycleManager, SignatureWorkflowEngine, RenewalRuleEngine
    and TenantLockService extend this class.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit.  Each public operation runs in a
      SAVEPOINT; on a ContractKernelError the savepoint is rolled back, an
      ATTEMPT_REJECTED audit event is written outside it, and the error is
      re-raised.  The entity is therefore left exactly as it was.
    - Status changes are ``UPDATE ... WHERE id = ? AND tenant_id = ? AND
      status = <expected>`` with a version bump.  No matching row means a
      concurrent writer won; ConcurrentModificationError is raised and
      nothing is applied.
    - Every load filters on tenant_id; an id from another tenant is
      reported as not found.

Failure modes:
    - UnauthorizedError when the injected authorizer refuses the actor.
    - ConcurrentModificationError from _conditional_update().
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from contract_kernel.db.base import Base
from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.exceptions import (
    ConcurrentModificationError,
    ContractKernelError,
    NotFoundError,
    UnauthorizedError,
)
from contract_kernel.logging_config import LogContext, get_logger

ModelType = TypeVar("ModelType", bound=Base)

# (tenant_id, actor_id, operation) -> allowed
Authorizer = Callable[[UUID, UUID, str], bool]

logger = get_logger("services.base")

_GUARD_DEPTH_KEY = "contract_kernel.guard_depth"


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT commit.  ``db.engine.session_scope`` owns the boundary
          and commits rejected-attempt events before re-raising.
    """

    def __init__(
        self,
        session: Session,
        auditor: Any = None,
        clock: Clock | None = None,
        authorizer: Authorizer | None = None,
    ):
        self.session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._authorizer = authorizer

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _get_for_tenant(
        self,
        model_cls: type[ModelType],
        tenant_id: UUID,
        entity_id: UUID,
        not_found: type[NotFoundError],
        for_update: bool = False,
    ) -> ModelType:
        stmt = (
            select(model_cls)
            .where(model_cls.id == entity_id, model_cls.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        entity = self.session.execute(stmt).scalar_one_or_none()
        if entity is None:
            raise not_found(str(entity_id), str(tenant_id))
        return entity

    # -------------------------------------------------------------------------
    # Conditional transitions
    # -------------------------------------------------------------------------

    def _conditional_update(
        self,
        model_cls: type[ModelType],
        entity_type: str,
        tenant_id: UUID,
        entity_id: UUID,
        expected_status: str,
        values: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        """
        Apply ``values`` only if the row is still in ``expected_status``.

        Bumps ``version`` when the model has one.  The caller reloads the
        entity afterwards (loads use populate_existing).

        Raises:
            ConcurrentModificationError: zero rows matched.
        """
        stmt = update(model_cls).where(
            model_cls.id == entity_id,
            model_cls.tenant_id == tenant_id,
            model_cls.status == expected_status,
        )
        if expected_version is not None:
            stmt = stmt.where(model_cls.version == expected_version)

        new_values = dict(values)
        if hasattr(model_cls, "version"):
            new_values["version"] = model_cls.version + 1

        result = self.session.execute(
            stmt.values(**new_values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        actual = self.session.execute(
            select(model_cls.status).where(
                model_cls.id == entity_id, model_cls.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        logger.warning(
            "conditional_update_conflict",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "expected_status": expected_status,
                "actual_status": actual,
            },
        )
        raise ConcurrentModificationError(
            entity_type, str(entity_id), expected_status, actual,
        )

    # -------------------------------------------------------------------------
    # Operation guard
    # -------------------------------------------------------------------------

    def _authorize(self, tenant_id: UUID, actor_id: UUID, operation: str) -> None:
        if self._authorizer is None:
            return
        if not self._authorizer(tenant_id, actor_id, operation):
            raise UnauthorizedError(
                str(actor_id), operation, reason=f"not permitted in tenant {tenant_id}",
            )

    @contextmanager
    def _guarded(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        operation: str,
    ) -> Iterator[None]:
        """
        Run one public operation atomically inside a SAVEPOINT.

        Only the outermost guard on a session records the rejected attempt;
        nested operations (a signature activating its contract) leave that
        to their caller.
        """
        depth = self.session.info.get(_GUARD_DEPTH_KEY, 0)
        self.session.info[_GUARD_DEPTH_KEY] = depth + 1
        savepoint = self.session.begin_nested()
        try:
            with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
                self._authorize(tenant_id, actor_id, operation)
                yield
            savepoint.commit()
        except ContractKernelError as exc:
            if savepoint.is_active:
                savepoint.rollback()
            if depth == 0 and self._auditor is not None:
                logger.warning(
                    "operation_rejected",
                    extra={
                        "operation": operation,
                        "entity_type": entity_type,
                        "entity_id": str(entity_id),
                        "error_code": exc.code,
                    },
                )
                self._auditor.record_rejected_attempt(
                    tenant_id, entity_type, entity_id, actor_id, operation, exc,
                )
            raise
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise
        finally:
            self.session.info[_GUARD_DEPTH_KEY] = depth
