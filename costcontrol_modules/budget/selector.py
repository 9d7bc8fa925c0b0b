"""
BudgetSelector -- read-only budget line repository and rollups.

Responsibility:
    Lists versions and lines and aggregates stored line columns per
    version and per WBS subtree.  Amounts are summed exactly as stored;
    markups are never re-derived on read.

Architecture position:
    Modules > Budget.  Extends the kernel ``BaseSelector``; never flushes
    or commits.  WBS subtree sums use ``WbsTree.rollup``.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from costcontrol_config import CostControlConfig, get_active_config
from costcontrol_engines.apu import APUCalculator
from costcontrol_engines.wbs_tree import WbsTree
from costcontrol_kernel.db.types import ZERO
from costcontrol_kernel.exceptions import NotFoundError
from costcontrol_kernel.selectors.base import BaseSelector
from costcontrol_modules.budget.models import (
    APUDetail,
    BudgetLine,
    BudgetVersion,
    CostTotals,
    VersionRollup,
    VersionStatus,
    WbsRollupRow,
)
from costcontrol_modules.budget.orm import BudgetLineModel, BudgetVersionModel
from costcontrol_modules.wbs.orm import WbsNodeModel

ZERO_TOTALS = CostTotals(ZERO, ZERO, ZERO, ZERO, ZERO, ZERO)


def _add(a: CostTotals, b: CostTotals) -> CostTotals:
    return CostTotals(
        direct_cost=a.direct_cost + b.direct_cost,
        overhead=a.overhead + b.overhead,
        financial=a.financial + b.financial,
        profit=a.profit + b.profit,
        tax=a.tax + b.tax,
        sale=a.sale + b.sale,
    )


def _line_totals(line: BudgetLineModel) -> CostTotals:
    return CostTotals(
        direct_cost=line.direct_cost_total,
        overhead=line.overhead_amount,
        financial=line.financial_amount,
        profit=line.profit_amount,
        tax=line.tax_amount,
        sale=line.sale_price_total,
    )


class BudgetSelector(BaseSelector):
    """Query budget versions, lines and rollups."""

    def __init__(self, session, config: CostControlConfig | None = None):
        super().__init__(session)
        self._config = config

    def _version(self, version_id: UUID) -> BudgetVersionModel:
        version = self.session.get(BudgetVersionModel, version_id)
        if version is None:
            raise NotFoundError("BudgetVersion", str(version_id))
        return version

    def _lines(self, version_id: UUID) -> list[BudgetLineModel]:
        return list(
            self.session.execute(
                select(BudgetLineModel)
                .where(BudgetLineModel.version_id == version_id)
                .order_by(BudgetLineModel.sort_order, BudgetLineModel.id)
            ).scalars()
        )

    def get_version(self, version_id: UUID) -> BudgetVersion:
        return self._version(version_id).to_dto()

    def list_versions(
        self, project_id: UUID, status: VersionStatus | None = None
    ) -> list[BudgetVersion]:
        """Versions of a project, oldest first."""
        stmt = select(BudgetVersionModel).where(BudgetVersionModel.project_id == project_id)
        if status is not None:
            stmt = stmt.where(BudgetVersionModel.status == VersionStatus(status).value)
        versions = [row.to_dto() for row in self.session.execute(stmt).scalars()]
        # V2 before V10
        return sorted(versions, key=lambda v: (len(v.version_code), v.version_code))

    def list_budget_lines(
        self, version_id: UUID, include_resources: bool = False
    ) -> list[BudgetLine]:
        """Lines of a version ordered by sort_order."""
        self._version(version_id)
        return [line.to_dto(include_resources=include_resources) for line in self._lines(version_id)]

    def get_budget_line(self, line_id: UUID) -> BudgetLine:
        line = self.session.get(BudgetLineModel, line_id)
        if line is None:
            raise NotFoundError("BudgetLine", str(line_id))
        return line.to_dto()

    def get_version_rollup(self, version_id: UUID) -> VersionRollup:
        """Sums of the stored breakdown columns over all lines."""
        version = self._version(version_id)
        lines = self._lines(version_id)
        totals = ZERO_TOTALS
        for line in lines:
            totals = _add(totals, _line_totals(line))
        return VersionRollup(
            version_id=version.id,
            version_code=version.version_code,
            status=VersionStatus(version.status),
            line_count=len(lines),
            totals=totals,
        )

    def get_wbs_rollup(
        self, version_id: UUID, include_empty: bool = False
    ) -> list[WbsRollupRow]:
        """
        Subtree totals for every WBS node of the version's project.

        Rows come in pre-order (parents before children, siblings by
        sort order).  Nodes with no lines beneath them are skipped unless
        ``include_empty`` is set.
        """
        version = self._version(version_id)
        nodes = list(
            self.session.execute(
                select(WbsNodeModel).where(WbsNodeModel.project_id == version.project_id)
            ).scalars()
        )
        tree = WbsTree(n.to_ref() for n in nodes)

        own: dict[UUID, CostTotals] = defaultdict(lambda: ZERO_TOTALS)
        own_counts: dict[UUID, int] = defaultdict(int)
        for line in self._lines(version_id):
            own[line.wbs_node_id] = _add(own[line.wbs_node_id], _line_totals(line))
            own_counts[line.wbs_node_id] += 1

        totals = tree.rollup(dict(own), ZERO_TOTALS, _add)
        counts = tree.rollup(dict(own_counts), 0)

        rows: list[WbsRollupRow] = []
        for root in tree.roots():
            for node_id in tree.subtree_ids(root.id):
                if not include_empty and counts[node_id] == 0:
                    continue
                ref = tree.get(node_id)
                rows.append(
                    WbsRollupRow(
                        wbs_node_id=node_id,
                        code=ref.code,
                        name=ref.name,
                        depth=tree.depth(node_id),
                        line_count=counts[node_id],
                        totals=totals[node_id],
                    )
                )
        return rows

    def get_apu_detail(self, line_id: UUID) -> APUDetail:
        """
        A line's resources run through the APU engine.

        The configured ``default_indirect_cost_pct`` is applied to the
        analysis only; stored line costs are never affected.
        """
        line = self.session.get(BudgetLineModel, line_id)
        if line is None:
            raise NotFoundError("BudgetLine", str(line_id))
        config = self._config or get_active_config()
        analysis = APUCalculator().analyze(
            resources=[r.to_consumption() for r in line.resources],
            indirect_cost_pct=config.default_indirect_cost_pct,
        )
        extended: Decimal = sum((r.total_cost for r in line.resources), ZERO)
        return APUDetail(line=line.to_dto(), analysis=analysis, extended_direct_cost=extended)
