"""
costcontrol_config -- single public entrypoint for configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It reads YAML from, in order: an explicit path, the
    ``COSTCONTROL_CONFIG`` environment variable, or the packaged
    ``defaults.yaml``; validates it; and returns a frozen
    ``CostControlConfig``.

Architecture position:
    Sits above ``costcontrol_kernel`` and below ``costcontrol_modules`` /
    ``costcontrol_services``.  The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ValueError`` / ``KeyError`` -- schema validation failures.

Audit relevance:
    Every successful call emits a ``COSTCONTROL_CONFIG_TRACE`` log entry
    with config_id, version and checksum, tying stored budgets to the
    configuration that produced their defaults.
"""

from __future__ import annotations

import os
from pathlib import Path

from costcontrol_config.loader import load_yaml_file, parse_config
from costcontrol_config.schema import CostControlConfig, MarkupDefaults
from costcontrol_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "COSTCONTROL_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> CostControlConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: Optional explicit YAML file.  Falls back to
            ``$COSTCONTROL_CONFIG`` and then the packaged defaults.

    Returns:
        A validated, frozen ``CostControlConfig``.
    """
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    config = parse_config(load_yaml_file(source))
    _logger.info(
        "COSTCONTROL_CONFIG_TRACE",
        extra={
            "trace_type": "COSTCONTROL_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
            "role_count": len(config.role_permissions),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "CostControlConfig",
    "MarkupDefaults",
    "get_active_config",
]
