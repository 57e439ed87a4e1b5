"""
TenantLockService -- per-tenant sweep lease.

Responsibility:
    Guarantees at most one expiration/renewal sweep per (tenant, lock name)
    at a time, across workers.  The lease is a row in ``tenant_leases``
    claimed with a conditional UPDATE (free, expired, or already ours) and
    released by clearing the holder.  A crashed holder loses the lease once
    its TTL passes.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the sweep operations of
    ContractLifecycleManager, SignatureWorkflowEngine and RenewalRuleEngine.

Failure modes:
    - TenantLockHeldError when another holder owns an unexpired lease.
"""

from __future__ import annotations

import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from contract_kernel.exceptions import TenantLockHeldError
from contract_kernel.logging_config import get_logger
from contract_kernel.models.tenant_lease import TenantLeaseModel
from contract_kernel.services.base import BaseService

logger = get_logger("services.tenant_lock")

DEFAULT_LEASE_TTL_SECONDS = 600


def default_holder_name() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class TenantLockService(BaseService[TenantLeaseModel]):
    """Acquire and release tenant-scoped leases inside the caller's transaction."""

    def __init__(self, session, clock=None, holder: str | None = None,
                 ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS):
        super().__init__(session, clock=clock)
        self._holder = holder or default_holder_name()
        self._ttl = timedelta(seconds=ttl_seconds)

    @property
    def holder(self) -> str:
        return self._holder

    def _find(self, tenant_id: UUID, lock_name: str) -> TenantLeaseModel | None:
        return self.session.execute(
            select(TenantLeaseModel)
            .where(
                TenantLeaseModel.tenant_id == tenant_id,
                TenantLeaseModel.lock_name == lock_name,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def acquire(self, tenant_id: UUID, lock_name: str) -> None:
        """
        Claim the lease or raise TenantLockHeldError.

        Re-acquiring a lease we already hold extends it.
        """
        now = self._clock.now()
        expires_at = now + self._ttl

        result = self.session.execute(
            update(TenantLeaseModel)
            .where(
                TenantLeaseModel.tenant_id == tenant_id,
                TenantLeaseModel.lock_name == lock_name,
                or_(
                    TenantLeaseModel.holder.is_(None),
                    TenantLeaseModel.expires_at < now,
                    TenantLeaseModel.holder == self._holder,
                ),
            )
            .values(holder=self._holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info(
                "tenant_lease_acquired",
                extra={"lock_name": lock_name, "holder": self._holder},
            )
            return

        existing = self._find(tenant_id, lock_name)
        if existing is None:
            savepoint = self.session.begin_nested()
            try:
                self.session.add(TenantLeaseModel(
                    tenant_id=tenant_id,
                    lock_name=lock_name,
                    holder=self._holder,
                    acquired_at=now,
                    expires_at=expires_at,
                ))
                self.session.flush()
                savepoint.commit()
                logger.info(
                    "tenant_lease_acquired",
                    extra={"lock_name": lock_name, "holder": self._holder},
                )
                return
            except IntegrityError:
                savepoint.rollback()
                existing = self._find(tenant_id, lock_name)

        holder = existing.holder if existing is not None else None
        logger.info(
            "tenant_lease_busy",
            extra={"lock_name": lock_name, "holder": holder},
        )
        raise TenantLockHeldError(str(tenant_id), lock_name, holder)

    def release(self, tenant_id: UUID, lock_name: str) -> bool:
        """Release the lease if we hold it.  Returns False otherwise."""
        result = self.session.execute(
            update(TenantLeaseModel)
            .where(
                TenantLeaseModel.tenant_id == tenant_id,
                TenantLeaseModel.lock_name == lock_name,
                TenantLeaseModel.holder == self._holder,
            )
            .values(holder=None, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount == 1
        logger.info(
            "tenant_lease_released",
            extra={"lock_name": lock_name, "released": released},
        )
        return released

    @contextmanager
    def lease(self, tenant_id: UUID, lock_name: str) -> Iterator[None]:
        self.acquire(tenant_id, lock_name)
        try:
            yield
        finally:
            self.release(tenant_id, lock_name)
