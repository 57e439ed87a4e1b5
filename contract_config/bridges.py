"""
Config -> Kernel Bridges.

Convert ContractKernelConfig values into kernel inputs.  They live here
because contract_kernel never imports contract_config.

Usage:
    config = get_active_config()
    engine = SignatureWorkflowEngine(
        session, auditor, lifecycle,
        completion_policy_for=build_policy_resolver(config),
        metadata_fields=build_metadata_fields(config),
    )
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from contract_config.schema import ContractKernelConfig
from contract_kernel.domain.metadata import (
    DEFAULT_METADATA_FIELDS,
    MetadataFieldType,
)
from contract_kernel.domain.signature import CompletionPolicy, resolve_completion_policy


def build_policy_resolver(config: ContractKernelConfig) -> Callable[[UUID], CompletionPolicy]:
    """Tenant -> completion policy: the tenant override if any, else the workflow default."""
    default = resolve_completion_policy(config.workflow.completion_policy, config.workflow.quorum)
    overrides = {
        o.tenant_id: resolve_completion_policy(o.completion_policy, o.quorum)
        for o in config.tenant_overrides
    }

    def resolve(tenant_id: UUID) -> CompletionPolicy:
        return overrides.get(str(tenant_id), default)

    return resolve


def build_metadata_fields(config: ContractKernelConfig) -> dict[str, MetadataFieldType]:
    """The configured allow-list, or the kernel default when none is configured."""
    if not config.metadata_fields:
        return dict(DEFAULT_METADATA_FIELDS)
    return {f.key: MetadataFieldType(f.value_type) for f in config.metadata_fields}
