"""
SweepRunner -- runs the periodic sweeps tenant by tenant.

Contract:
    For every tenant and every requested sweep kind, opens a fresh session,
    runs the sweep under the tenant's lease, and commits.  A held lease
    skips that (tenant, kind) without failing the run; any other error is
    logged, rolled back and reported, and the run moves on.

Non-goals:
    - NOT a distributed scheduler.  Mutual exclusion between workers comes
      from the per-tenant lease rows, not from this class.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, union
from sqlalchemy.orm import Session

from contract_batch.wiring import KernelEngines
from contract_kernel.exceptions import TenantLockHeldError
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.models.contract import ContractModel
from contract_kernel.models.renewal import RenewalRuleModel

logger = get_logger("batch.runner")

# Tenants are identified by the rows they own
TenantSource = Callable[[Session], Iterable[UUID]]


class SweepKind(str, Enum):
    CONTRACT_EXPIRATION = "contract_expiration"
    WORKFLOW_EXPIRATION = "workflow_expiration"
    RENEWAL_EVALUATION = "renewal_evaluation"


ALL_SWEEPS: tuple[SweepKind, ...] = (
    SweepKind.WORKFLOW_EXPIRATION,
    SweepKind.RENEWAL_EVALUATION,
    SweepKind.CONTRACT_EXPIRATION,
)


class SweepOutcome(str, Enum):
    COMPLETED = "completed"
    LOCKED = "locked"
    FAILED = "failed"


@dataclass(frozen=True)
class TenantSweepReport:
    tenant_id: UUID
    kind: SweepKind
    outcome: SweepOutcome
    result: Any = None
    error: str | None = None


def tenants_with_data(session: Session) -> list[UUID]:
    """Every tenant that owns a contract or a renewal rule."""
    stmt = union(
        select(ContractModel.tenant_id),
        select(RenewalRuleModel.tenant_id),
    )
    return sorted(session.execute(stmt).scalars().all(), key=str)


class SweepRunner:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        engines_factory: Callable[[Session], KernelEngines],
        actor_id: UUID,
        tenant_source: TenantSource = tenants_with_data,
    ):
        self._session_factory = session_factory
        self._engines_factory = engines_factory
        self._actor_id = actor_id
        self._tenant_source = tenant_source

    def _tenants(self) -> list[UUID]:
        session = self._session_factory()
        try:
            return list(self._tenant_source(session))
        finally:
            session.close()

    def _run_sweep(self, engines: KernelEngines, kind: SweepKind, tenant_id: UUID) -> Any:
        if kind is SweepKind.CONTRACT_EXPIRATION:
            return engines.lifecycle.expire_due_contracts(tenant_id, self._actor_id)
        if kind is SweepKind.WORKFLOW_EXPIRATION:
            return engines.workflows.expire_stale_workflows(tenant_id, self._actor_id)
        return engines.renewals.check_and_create_renewals(tenant_id, self._actor_id)

    def run_for_tenant(self, tenant_id: UUID, kind: SweepKind) -> TenantSweepReport:
        session = self._session_factory()
        try:
            with LogContext.bind(tenant_id=tenant_id, actor_id=self._actor_id):
                engines = self._engines_factory(session)
                result = self._run_sweep(engines, kind, tenant_id)
                session.commit()
                return TenantSweepReport(tenant_id, kind, SweepOutcome.COMPLETED, result)
        except TenantLockHeldError as exc:
            session.rollback()
            logger.info(
                "sweep_skipped_lease_held",
                extra={"tenant_id": str(tenant_id), "sweep": kind.value, "holder": exc.holder},
            )
            return TenantSweepReport(tenant_id, kind, SweepOutcome.LOCKED, error=str(exc))
        except Exception as exc:
            session.rollback()
            logger.exception(
                "sweep_failed", extra={"tenant_id": str(tenant_id), "sweep": kind.value},
            )
            return TenantSweepReport(tenant_id, kind, SweepOutcome.FAILED, error=str(exc))
        finally:
            session.close()

    def run_once(self, kinds: Sequence[SweepKind] = ALL_SWEEPS) -> list[TenantSweepReport]:
        """One pass over every tenant.  Workflow expiry runs before renewals and contract expiry."""
        reports = [
            self.run_for_tenant(tenant_id, kind)
            for tenant_id in self._tenants()
            for kind in kinds
        ]
        logger.info(
            "sweep_run_completed",
            extra={
                "report_count": len(reports),
                "failed": sum(1 for r in reports if r.outcome is SweepOutcome.FAILED),
                "locked": sum(1 for r in reports if r.outcome is SweepOutcome.LOCKED),
            },
        )
        return reports
