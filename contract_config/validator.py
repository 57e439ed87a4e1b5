"""
Configuration validator.

Structural checks that YAML parsing alone cannot express: value ranges,
known completion policy names, quorum presence, metadata value types and
duplicate tenant overrides.  Every problem is collected so a broken file
is reported in one pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from contract_config.schema import ContractKernelConfig

COMPLETION_POLICIES = frozenset({"all_required", "quorum", "first_signer"})
METADATA_VALUE_TYPES = frozenset({"string", "integer", "decimal", "boolean", "date"})


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _check_policy(label: str, policy: str, quorum: int | None, errors: list[str]) -> None:
    if policy not in COMPLETION_POLICIES:
        errors.append(f"{label}: unknown completion policy '{policy}'")
    elif policy == "quorum" and (quorum is None or quorum < 1):
        errors.append(f"{label}: quorum policy requires a quorum of at least 1")


def validate_configuration(config: ContractKernelConfig) -> ValidationResult:
    result = ValidationResult()
    errors = result.errors

    if config.workflow.default_expiry_days is not None and config.workflow.default_expiry_days < 1:
        errors.append("workflow.default_expiry_days must be at least 1")
    _check_policy("workflow", config.workflow.completion_policy, config.workflow.quorum, errors)

    seen: set[str] = set()
    for override in config.tenant_overrides:
        if override.tenant_id in seen:
            errors.append(f"tenant_overrides: duplicate tenant '{override.tenant_id}'")
        seen.add(override.tenant_id)
        _check_policy(
            f"tenant_overrides[{override.tenant_id}]",
            override.completion_policy, override.quorum, errors,
        )

    if config.renewal.upcoming_days < 1:
        errors.append("renewal.upcoming_days must be at least 1")
    if config.renewal.proposal_grace_days < 0:
        errors.append("renewal.proposal_grace_days must not be negative")

    sweep = config.sweep
    if sweep.interval_seconds < 1:
        errors.append("sweep.interval_seconds must be at least 1")
    if sweep.retry_attempts < 1:
        errors.append("sweep.retry_attempts must be at least 1")
    if sweep.retry_backoff_seconds < 0:
        errors.append("sweep.retry_backoff_seconds must not be negative")
    if sweep.lease_ttl_seconds < 1:
        errors.append("sweep.lease_ttl_seconds must be at least 1")

    for field_def in config.metadata_fields:
        if field_def.value_type not in METADATA_VALUE_TYPES:
            errors.append(
                f"metadata_fields.{field_def.key}: unknown value type '{field_def.value_type}'"
            )
    return result
