"""
contract_config -- single public entrypoint for kernel settings.

Responsibility:
    Provides the only way to obtain configuration at runtime through
    ``get_active_config()``.  Services never read files or environment
    variables themselves; the batch wiring passes the values in.

Architecture position:
    Configuration -- sits above ``contract_kernel`` and below
    ``contract_batch``.  The kernel never imports from ``contract_config``;
    bridges.py translates settings into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` -- parse or structural validation failures.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from contract_config.loader import load_config_file
from contract_config.schema import ContractKernelConfig
from contract_config.validator import validate_configuration

_logger = logging.getLogger("contract_kernel.config")

CONFIG_PATH_ENV = "CONTRACT_CONFIG_PATH"

# Default configuration set shipped with the package
_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> ContractKernelConfig:
    """The only public configuration entrypoint.

    Resolution order: the ``path`` argument, then the ``CONTRACT_CONFIG_PATH``
    environment variable, then the packaged ``sets/default.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If the settings fail validation.
    """
    resolved = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)
    config = load_config_file(resolved)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )

    _logger.info(
        "CONTRACT_CONFIG_TRACE",
        extra={
            "trace_type": "CONTRACT_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "config_path": str(resolved),
            "tenant_override_count": len(config.tenant_overrides),
        },
    )
    return config


__all__ = ["CONFIG_PATH_ENV", "ContractKernelConfig", "get_active_config"]
