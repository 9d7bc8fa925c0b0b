"""
YAML loading and parsing for cost-control configuration.

Internal to ``costcontrol_config``; callers use ``get_active_config()``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from costcontrol_config.schema import CostControlConfig, MarkupDefaults
from costcontrol_kernel.utils.hashing import hash_payload

_PERCENT_FIELDS = ("overhead_pct", "financial_pct", "profit_pct", "tax_pct")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if ``path`` does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_percent(name: str, value: Any) -> Decimal:
    """
    Parse a percentage given as a string or int.

    YAML floats are refused because they have already lost exactness.

    Raises:
        ValueError: not a number, a float, or outside [0, 100].
    """
    if isinstance(value, float):
        raise ValueError(f"{name}: quote decimal values in YAML (got float {value!r})")
    try:
        pct = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name}: not a number: {value!r}") from exc
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ValueError(f"{name}: must be between 0 and 100, got {value!r}")
    return pct


def parse_config(data: dict[str, Any]) -> CostControlConfig:
    """
    Build a ``CostControlConfig`` from a parsed YAML mapping.

    Raises:
        KeyError: ``config_id`` missing.
        ValueError: invalid percentages, depth, prefix or role map.
    """
    markups_data = data.get("markups", {}) or {}
    markups = MarkupDefaults(
        **{f: parse_percent(f"markups.{f}", markups_data.get(f, "0")) for f in _PERCENT_FIELDS}
    )

    apu_data = data.get("apu", {}) or {}
    indirect = parse_percent(
        "apu.default_indirect_cost_pct", apu_data.get("default_indirect_cost_pct", "0")
    )

    wbs_data = data.get("wbs", {}) or {}
    max_depth = int(wbs_data.get("max_depth", 6))
    if max_depth < 1:
        raise ValueError(f"wbs.max_depth must be >= 1, got {max_depth}")

    budget_data = data.get("budget", {}) or {}
    prefix = str(budget_data.get("version_code_prefix", "V"))
    if not prefix or len(prefix) > 10:
        raise ValueError("budget.version_code_prefix must be 1-10 characters")

    rbac_data = data.get("rbac", {}) or {}
    role_map = rbac_data.get("role_permissions", {}) or {}
    if not isinstance(role_map, dict):
        raise ValueError("rbac.role_permissions must be a mapping of role -> permissions")
    role_permissions = tuple(
        (str(role), frozenset(str(p) for p in (perms or ())))
        for role, perms in sorted(role_map.items())
    )

    return CostControlConfig(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        markups=markups,
        default_indirect_cost_pct=indirect,
        wbs_max_depth=max_depth,
        version_code_prefix=prefix,
        role_permissions=role_permissions,
        checksum=hash_payload(data),
    )
