"""
sourcing_config -- single public entrypoint for sourcing configuration.

Responsibility:
    ``get_active_config()`` resolves which YAML file governs this process
    and returns the parsed ``SourcingConfig``.

Resolution order:
    1. explicit ``config_path`` argument
    2. ``SOURCING_CONFIG`` environment variable
    3. bundled ``sets/default.yaml``

Audit relevance:
    Every call emits a ``SOURCING_CONFIG_TRACE`` log record with the source
    path and the checksum of the effective configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

from sourcing_config.loader import compute_checksum, load_config_file
from sourcing_config.schema import SourcingConfig
from sourcing_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "SOURCING_CONFIG"
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> SourcingConfig:
    """Load the configuration that governs this process."""
    if config_path is not None:
        path = Path(config_path)
    elif os.environ.get(CONFIG_ENV_VAR):
        path = Path(os.environ[CONFIG_ENV_VAR])
    else:
        path = _DEFAULT_CONFIG_PATH

    config = load_config_file(path)
    _logger.info(
        "SOURCING_CONFIG_TRACE",
        extra={
            "trace_type": "SOURCING_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": compute_checksum(config),
        },
    )
    return config


__all__ = ["SourcingConfig", "get_active_config", "load_config_file", "CONFIG_ENV_VAR"]
