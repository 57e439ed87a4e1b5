"""
ContractKernelConfig schema.

The human-authored YAML settings file is parsed by the loader into these
frozen dataclasses.  They carry data only; bridges.py turns them into the
objects the kernel services accept (completion policies, metadata
allow-lists).
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Signature workflows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowSettings:
    """Defaults applied when a workflow is created."""

    default_expiry_days: int = 30
    completion_policy: str = "all_required"  # all_required, quorum, first_signer
    quorum: int | None = None


@dataclass(frozen=True)
class TenantOverride:
    """Per-tenant completion policy for workflows that do not require every signer."""

    tenant_id: str
    completion_policy: str
    quorum: int | None = None


# ---------------------------------------------------------------------------
# Renewals and sweeps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewalSettings:
    upcoming_days: int = 60
    proposal_grace_days: int = 0


@dataclass(frozen=True)
class SweepSettings:
    """Scheduling, retry and lease parameters shared by the three sweeps."""

    interval_seconds: int = 3600
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.5
    lease_ttl_seconds: int = 600


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetadataFieldDef:
    key: str
    value_type: str  # string, integer, decimal, boolean, date


@dataclass(frozen=True)
class ContractKernelConfig:
    """The complete, validated settings for one deployment."""

    config_id: str
    version: int
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    renewal: RenewalSettings = field(default_factory=RenewalSettings)
    sweep: SweepSettings = field(default_factory=SweepSettings)
    tenant_overrides: tuple[TenantOverride, ...] = ()
    metadata_fields: tuple[MetadataFieldDef, ...] = ()
    checksum: str = ""

    def override_for(self, tenant_id: str) -> TenantOverride | None:
        return next((o for o in self.tenant_overrides if o.tenant_id == tenant_id), None)
