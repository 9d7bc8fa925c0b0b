"""
Configuration schema -- frozen dataclasses produced by the loader.

Nothing here reads files; ``costcontrol_config.loader`` builds these from
parsed YAML and ``get_active_config()`` is the only public way to obtain
one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class MarkupDefaults:
    """Global markup percentages applied to new budget versions."""

    overhead_pct: Decimal = Decimal("0")
    financial_pct: Decimal = Decimal("0")
    profit_pct: Decimal = Decimal("0")
    tax_pct: Decimal = Decimal("0")


@dataclass(frozen=True)
class CostControlConfig:
    """
    Runtime configuration for the cost-control core.

    Guarantees:
        - Percentages are Decimal in [0, 100].
        - ``wbs_max_depth`` >= 1.
        - ``checksum`` is the SHA-256 of the canonical source mapping.
    """

    config_id: str
    version: int
    markups: MarkupDefaults = field(default_factory=MarkupDefaults)
    default_indirect_cost_pct: Decimal = Decimal("0")
    wbs_max_depth: int = 6
    version_code_prefix: str = "V"
    role_permissions: tuple[tuple[str, frozenset[str]], ...] = ()
    checksum: str = ""

    def permissions_for(self, roles: tuple[str, ...]) -> frozenset[str]:
        """Union of the permissions granted to ``roles``."""
        granted: set[str] = set()
        for name, perms in self.role_permissions:
            if name in roles:
                granted |= perms
        return frozenset(granted)
