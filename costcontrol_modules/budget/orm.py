"""
SQLAlchemy ORM persistence models for the Budget module.

Responsibility
--------------
Persist budget versions, their priced lines and the APU resources behind
each line.  Every derived amount (resource totals, line direct cost,
markup breakdown, sale price) is stored as computed so reads never
re-derive it.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``BudgetService`` and
``BudgetSelector``.  Inherits from ``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (fixed 9 places) -- NEVER float.
* Enum fields stored as String(20) using the enum values.
* ``(project_id, version_code)`` is unique.
* Lines and resources cascade with their parent; the ORM immutability
  listeners refuse any write beneath a non-DRAFT version.

Audit relevance
---------------
* ``baselined_*`` / ``approved_*`` stamp who locked a version and when.
* ``copied_from_version_id`` records version lineage.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costcontrol_kernel.db.base import TrackedBase


class BudgetVersionModel(TrackedBase):
    """
    A budget version of a project.

    Maps to the ``BudgetVersion`` DTO in ``costcontrol_modules.budget.models``.

    Guarantees:
        - ``status`` follows draft -> baseline -> approved and never returns
          to draft.
        - Status changes go through a compare-and-swap UPDATE in
          ``BudgetService``.
    """

    __tablename__ = "budget_versions"

    __table_args__ = (
        UniqueConstraint("project_id", "version_code", name="uq_budget_version_code"),
        Index("idx_budget_version_project", "project_id"),
        Index("idx_budget_version_status", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(ForeignKey("projects.id"), nullable=False)
    version_code: Mapped[str] = mapped_column(String(20), nullable=False)
    version_type: Mapped[str] = mapped_column(String(20), nullable=False, default="initial")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    markup_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="simple")

    global_overhead_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    global_financial_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    global_profit_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    global_tax_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    copied_from_version_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("budget_versions.id"), nullable=True
    )
    baselined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    baselined_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    lines: Mapped[list["BudgetLineModel"]] = relationship(
        "BudgetLineModel",
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="BudgetLineModel.sort_order",
    )

    def rates(self):
        from costcontrol_engines.markup import MarkupRates

        return MarkupRates(
            overhead_pct=self.global_overhead_pct,
            financial_pct=self.global_financial_pct,
            profit_pct=self.global_profit_pct,
            tax_pct=self.global_tax_pct,
        )

    def to_dto(self):
        from costcontrol_modules.budget.models import (
            BudgetVersion,
            MarkupMode,
            VersionStatus,
            VersionType,
        )

        return BudgetVersion(
            id=self.id,
            project_id=self.project_id,
            version_code=self.version_code,
            version_type=VersionType(self.version_type),
            status=VersionStatus(self.status),
            markup_mode=MarkupMode(self.markup_mode),
            global_rates=self.rates(),
            notes=self.notes,
            copied_from_version_id=self.copied_from_version_id,
            baselined_at=self.baselined_at,
            baselined_by_id=self.baselined_by_id,
            approved_at=self.approved_at,
            approved_by_id=self.approved_by_id,
        )

    def __repr__(self) -> str:
        return f"<BudgetVersionModel {self.version_code} [{self.status}]>"


class BudgetLineModel(TrackedBase):
    """
    A priced line of a budget version on one BUDGET_ITEM WBS node.

    Maps to the ``BudgetLine`` DTO.

    Guarantees:
        - For APU lines ``direct_cost_total`` is exactly the sum of the
          resources' ``total_cost``.
        - ``sale_price_total`` is the stored markup chain result (or the
          imported figure for IMPORTED lines).
    """

    __tablename__ = "budget_lines"

    __table_args__ = (
        Index("idx_budget_line_version", "version_id"),
        Index("idx_budget_line_wbs_node", "wbs_node_id"),
    )

    version_id: Mapped[UUID] = mapped_column(ForeignKey("budget_versions.id"), nullable=False)
    wbs_node_id: Mapped[UUID] = mapped_column(ForeignKey("wbs_nodes.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    cost_basis: Mapped[str] = mapped_column(String(20), nullable=False, default="unit_cost")

    direct_unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    direct_cost_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    overhead_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    financial_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    profit_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    sale_price_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    # None = inherit the version's global percentage
    overhead_pct: Mapped[Decimal | None] = mapped_column(nullable=True)
    financial_pct: Mapped[Decimal | None] = mapped_column(nullable=True)
    profit_pct: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_pct: Mapped[Decimal | None] = mapped_column(nullable=True)

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped["BudgetVersionModel"] = relationship(
        "BudgetVersionModel",
        back_populates="lines",
    )
    resources: Mapped[list["BudgetResourceModel"]] = relationship(
        "BudgetResourceModel",
        back_populates="line",
        cascade="all, delete-orphan",
        order_by="BudgetResourceModel.sort_order",
    )

    def overrides(self) -> dict[str, Decimal | None]:
        return {
            "overhead_pct": self.overhead_pct,
            "financial_pct": self.financial_pct,
            "profit_pct": self.profit_pct,
            "tax_pct": self.tax_pct,
        }

    def to_dto(self, include_resources: bool = True):
        from costcontrol_modules.budget.models import BudgetLine, CostBasis

        return BudgetLine(
            id=self.id,
            version_id=self.version_id,
            wbs_node_id=self.wbs_node_id,
            description=self.description,
            unit=self.unit,
            quantity=self.quantity,
            cost_basis=CostBasis(self.cost_basis),
            direct_unit_cost=self.direct_unit_cost,
            direct_cost_total=self.direct_cost_total,
            overhead_amount=self.overhead_amount,
            financial_amount=self.financial_amount,
            profit_amount=self.profit_amount,
            tax_amount=self.tax_amount,
            sale_price_total=self.sale_price_total,
            overhead_pct=self.overhead_pct,
            financial_pct=self.financial_pct,
            profit_pct=self.profit_pct,
            tax_pct=self.tax_pct,
            sort_order=self.sort_order,
            resources=(
                tuple(r.to_dto() for r in self.resources) if include_resources else ()
            ),
        )

    def __repr__(self) -> str:
        return f"<BudgetLineModel {self.description} qty={self.quantity}>"


class BudgetResourceModel(TrackedBase):
    """
    One APU resource consumed per unit of a budget line.

    Guarantees:
        - ``total_cost`` = quantity_per_unit x unit_cost x line.quantity at
          stored precision, recomputed whenever either side changes.
    """

    __tablename__ = "budget_resources"

    __table_args__ = (
        Index("idx_budget_resource_line", "line_id"),
    )

    line_id: Mapped[UUID] = mapped_column(ForeignKey("budget_lines.id"), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity_per_unit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    line: Mapped["BudgetLineModel"] = relationship(
        "BudgetLineModel",
        back_populates="resources",
    )

    def to_consumption(self):
        from costcontrol_engines.apu import ResourceConsumption, ResourceType

        return ResourceConsumption(
            resource_type=ResourceType(self.resource_type),
            quantity_per_unit=self.quantity_per_unit,
            unit_cost=self.unit_cost,
            description=self.description,
        )

    def to_dto(self):
        from costcontrol_engines.apu import ResourceType
        from costcontrol_modules.budget.models import BudgetResource

        return BudgetResource(
            id=self.id,
            line_id=self.line_id,
            resource_type=ResourceType(self.resource_type),
            description=self.description,
            unit=self.unit,
            quantity_per_unit=self.quantity_per_unit,
            unit_cost=self.unit_cost,
            total_cost=self.total_cost,
            sort_order=self.sort_order,
        )

    def __repr__(self) -> str:
        return f"<BudgetResourceModel {self.resource_type} {self.description}>"
