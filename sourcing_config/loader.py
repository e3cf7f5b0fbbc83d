"""
Configuration Loader (``sourcing_config.loader``).

Responsibility
--------------
Load a YAML configuration file and parse it into a ``SourcingConfig``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from sourcing_config.schema import SourcingConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}, got {type(data).__name__}")
    return data


def parse_config(data: dict[str, Any]) -> SourcingConfig:
    """Parse a raw mapping (optionally nested under ``sourcing:``)."""
    section = data.get("sourcing", data)
    if section is None:
        section = {}
    return SourcingConfig.from_dict(section)


def load_config_file(path: Path) -> SourcingConfig:
    """Load and parse one YAML configuration file."""
    return parse_config(load_yaml_file(path))


def compute_checksum(config: SourcingConfig) -> str:
    """Deterministic SHA-256 of the effective configuration."""
    canonical = json.dumps(config.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
