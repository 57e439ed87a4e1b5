"""
Module: contract_kernel.models.tenant_lease
Responsibility: One row per (tenant, lock name) recording which worker
    currently holds the sweep lease and until when.
Architecture position: Kernel > Models.  May import from db/base.py only.

The row is updated with a conditional UPDATE (free, expired, or already
ours), so a holder that crashed without releasing loses the lease once
expires_at passes.
"""

from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from contract_kernel.db.base import TenantScopedBase, UTCDateTime


class TenantLeaseModel(TenantScopedBase):
    __tablename__ = "tenant_leases"

    __table_args__ = (
        UniqueConstraint("tenant_id", "lock_name", name="uq_tenant_leases_name"),
    )

    lock_name: Mapped[str] = mapped_column(String(50), nullable=False)
    holder: Mapped[str | None] = mapped_column(String(200), nullable=True)
    acquired_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<TenantLease {self.tenant_id}/{self.lock_name} holder={self.holder}>"
