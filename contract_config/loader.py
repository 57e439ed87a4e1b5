"""
Configuration Loader (``contract_config.loader``).

Responsibility
--------------
Loads the YAML settings file and parses it into the frozen
``contract_config.schema`` dataclasses.  Runtime callers go through
``contract_config.get_active_config()`` instead of calling this directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from contract_config.schema import (
    ContractKernelConfig,
    MetadataFieldDef,
    RenewalSettings,
    SweepSettings,
    TenantOverride,
    WorkflowSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _int(data: dict[str, Any], key: str, default: int | None) -> int | None:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    return value


def parse_workflow(data: dict[str, Any]) -> WorkflowSettings:
    return WorkflowSettings(
        default_expiry_days=_int(data, "default_expiry_days", 30),
        completion_policy=str(data.get("completion_policy", "all_required")),
        quorum=_int(data, "quorum", None),
    )


def parse_tenant_override(data: dict[str, Any]) -> TenantOverride:
    """Parse a TenantOverride; ``tenant_id`` and ``completion_policy`` are required."""
    return TenantOverride(
        tenant_id=str(data["tenant_id"]),
        completion_policy=str(data["completion_policy"]),
        quorum=_int(data, "quorum", None),
    )


def parse_renewal(data: dict[str, Any]) -> RenewalSettings:
    return RenewalSettings(
        upcoming_days=_int(data, "upcoming_days", 60),
        proposal_grace_days=_int(data, "proposal_grace_days", 0),
    )


def parse_sweep(data: dict[str, Any]) -> SweepSettings:
    backoff = data.get("retry_backoff_seconds", 0.5)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)):
        raise ValueError(f"'retry_backoff_seconds' must be a number, got {backoff!r}")
    return SweepSettings(
        interval_seconds=_int(data, "interval_seconds", 3600),
        retry_attempts=_int(data, "retry_attempts", 3),
        retry_backoff_seconds=float(backoff),
        lease_ttl_seconds=_int(data, "lease_ttl_seconds", 600),
    )


def parse_metadata_fields(data: dict[str, Any]) -> tuple[MetadataFieldDef, ...]:
    """``metadata_fields`` is a mapping of key -> value type."""
    return tuple(
        MetadataFieldDef(key=str(key), value_type=str(value_type))
        for key, value_type in sorted(data.items())
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> ContractKernelConfig:
    return ContractKernelConfig(
        config_id=str(data["config_id"]),
        version=_int(data, "version", 1),
        workflow=parse_workflow(data.get("workflow") or {}),
        renewal=parse_renewal(data.get("renewal") or {}),
        sweep=parse_sweep(data.get("sweep") or {}),
        tenant_overrides=tuple(
            parse_tenant_override(o) for o in data.get("tenant_overrides") or ()
        ),
        metadata_fields=parse_metadata_fields(data.get("metadata_fields") or {}),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> ContractKernelConfig:
    return parse_config(load_yaml_file(path))
