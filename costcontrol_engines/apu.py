"""
costcontrol_engines.apu -- Unit price analysis (APU) from weighted resource consumptions.

Responsibility:
    Given the resources one unit of work consumes (materials, labor,
    equipment, subcontracts), compute each resource's per-unit subtotal,
    the unit direct cost, an optional indirect uplift and the total unit
    price, plus per-type subtotals.  Also extends a resource to a line's
    quantity (``ResourceConsumption.extended_cost``), which is how a line's
    direct cost total is built.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Resource types form a closed set (``ResourceType``); every kind
      shares the same cost interface.
    - An empty resource list is valid and yields zero cost (imported and
      manually priced lines have no APU).
    - quantity_per_unit >= 0 and unit_cost >= 0.

Failure modes:
    - ValidationError for negative quantities/costs or an indirect
      percentage outside [0, 100].
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, localcontext
from enum import Enum

from costcontrol_engines.markup import validate_percentage
from costcontrol_engines.tracer import traced_engine
from costcontrol_kernel.db.types import ZERO, as_decimal, to_storage
from costcontrol_kernel.exceptions import ValidationError

_PRECISION = 60


class ResourceType(str, Enum):
    """Kinds of resource an APU line can consume."""

    MATERIAL = "material"
    LABOR = "labor"
    EQUIPMENT = "equipment"
    SUBCONTRACT = "subcontract"


@dataclass(frozen=True)
class ResourceConsumption:
    """One resource consumed per unit of work."""

    resource_type: ResourceType
    quantity_per_unit: Decimal
    unit_cost: Decimal
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.resource_type, ResourceType):
            raise ValidationError(
                "resource_type", self.resource_type, "unknown resource type"
            )
        if as_decimal(self.quantity_per_unit) < ZERO:
            raise ValidationError(
                "quantity_per_unit", self.quantity_per_unit, "cannot be negative"
            )
        if as_decimal(self.unit_cost) < ZERO:
            raise ValidationError("unit_cost", self.unit_cost, "cannot be negative")

    def subtotal(self) -> Decimal:
        """Cost per unit of work: unit_cost x quantity_per_unit (exact)."""
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return as_decimal(self.unit_cost) * as_decimal(self.quantity_per_unit)

    def extended_cost(self, line_quantity: Decimal) -> Decimal:
        """quantity_per_unit x unit_cost x line quantity, at stored precision."""
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return to_storage(self.subtotal() * as_decimal(line_quantity))


@dataclass(frozen=True)
class ResourceLine:
    """Itemized APU row."""

    resource_type: ResourceType
    description: str
    quantity_per_unit: Decimal
    unit_cost: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class APUResult:
    """Unit price analysis result."""

    resources: tuple[ResourceLine, ...]
    direct_cost: Decimal
    indirect_cost_pct: Decimal
    indirect_cost: Decimal
    total_unit_price: Decimal
    subtotals_by_type: tuple[tuple[ResourceType, Decimal], ...]

    def subtotal_for(self, resource_type: ResourceType) -> Decimal:
        for kind, amount in self.subtotals_by_type:
            if kind is resource_type:
                return amount
        return ZERO


class APUCalculator:
    """
    Pure APU calculator.

    Guarantees:
        - direct_cost = sum of subtotals, in input order.
        - indirect_cost = direct_cost x pct / 100.
        - total_unit_price = direct_cost + indirect_cost.
        - Results are exact; callers quantize when storing.
    """

    @traced_engine("apu", "1.0", fingerprint_fields=("resources", "indirect_cost_pct"))
    def analyze(
        self,
        *,
        resources: Sequence[ResourceConsumption],
        indirect_cost_pct: Decimal = ZERO,
    ) -> APUResult:
        pct = validate_percentage("indirect_cost_pct", indirect_cost_pct)
        by_type: dict[ResourceType, Decimal] = {kind: ZERO for kind in ResourceType}
        rows: list[ResourceLine] = []
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            direct = ZERO
            for resource in resources:
                subtotal = resource.subtotal()
                rows.append(
                    ResourceLine(
                        resource_type=resource.resource_type,
                        description=resource.description,
                        quantity_per_unit=as_decimal(resource.quantity_per_unit),
                        unit_cost=as_decimal(resource.unit_cost),
                        subtotal=subtotal,
                    )
                )
                direct += subtotal
                by_type[resource.resource_type] += subtotal
            indirect = direct * pct.scaleb(-2)
            total = direct + indirect

        return APUResult(
            resources=tuple(rows),
            direct_cost=direct,
            indirect_cost_pct=pct,
            indirect_cost=indirect,
            total_unit_price=total,
            subtotals_by_type=tuple((kind, by_type[kind]) for kind in ResourceType),
        )

    def line_direct_cost(
        self,
        resources: Sequence[ResourceConsumption],
        line_quantity: Decimal,
    ) -> tuple[tuple[Decimal, ...], Decimal]:
        """
        Extended resource totals and their sum for a line of ``line_quantity``.

        The line's stored direct cost total is exactly the sum of the
        stored resource totals.
        """
        totals = tuple(r.extended_cost(line_quantity) for r in resources)
        return totals, sum(totals, ZERO)
