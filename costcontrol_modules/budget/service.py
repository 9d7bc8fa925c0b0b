"""
Budget Module Service (``costcontrol_modules.budget.service``).

Responsibility
--------------
Orchestrates budget authoring and the version lifecycle: version creation
and copy, global and per-line markups, budget lines priced by unit cost,
APU resources or import, and the draft -> baseline -> approved state
machine with the project baseline pointer.

Architecture position
---------------------
**Modules layer**.  ``BudgetService`` is the sole write entry point for
budget versions, lines and resources.  Pricing is delegated to
``MarkupCalculator`` and ``APUCalculator``; numbering to the kernel
``SequenceService``; domain events to ``OutboxPublisher``.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` and re-raise on failure).
* Lines and resources change only while their version is DRAFT.
* A line's stored breakdown is recomputed on every input change, so the
  stored values are always the calculator's output for the stored inputs.
  IMPORTED lines keep their imported totals.
* Status changes read the version ``FOR UPDATE`` and write with a
  compare-and-swap UPDATE on the expected status.
* BASELINE and APPROVED never return to DRAFT.

Failure modes
-------------
* ``ImmutableVersionError`` -- edit of a non-DRAFT version or a downgrade.
* ``StateTransitionError`` -- transition outside the workflow, guard
  failure, baseline pointer at a DRAFT version.
* ``AuthorizationError`` -- approval denied by the access policy.
* ``ConcurrencyConflictError`` -- the status changed underneath us.
* ``ValidationError`` / ``NotFoundError`` -- bad input.

Audit relevance
---------------
``budget_version.baselined`` and ``budget_version.approved`` outbox rows
are written in the same transaction as the status change.  Every
operation logs a structured event carrying the version id.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from decimal import Decimal, localcontext
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from costcontrol_config import CostControlConfig, get_active_config
from costcontrol_engines.apu import APUCalculator, ResourceConsumption, ResourceType
from costcontrol_engines.markup import (
    MarkupBreakdown,
    MarkupCalculator,
    MarkupRates,
    validate_percentage,
)
from costcontrol_engines.wbs_tree import WbsCategory
from costcontrol_kernel.db.types import ZERO, as_decimal, to_storage
from costcontrol_kernel.domain.access import AccessPolicy
from costcontrol_kernel.domain.clock import Clock, SystemClock
from costcontrol_kernel.domain.identity import IdGenerator
from costcontrol_kernel.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    ImmutableVersionError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from costcontrol_kernel.logging_config import LogContext, get_logger
from costcontrol_kernel.services.outbox_service import OutboxPublisher
from costcontrol_kernel.services.project_service import ProjectService
from costcontrol_kernel.services.sequence_service import SequenceService, version_sequence
from costcontrol_modules.budget.models import (
    BudgetLine,
    BudgetResource,
    BudgetVersion,
    CostBasis,
    MarkupMode,
    VersionStatus,
    VersionType,
)
from costcontrol_modules.budget.orm import (
    BudgetLineModel,
    BudgetResourceModel,
    BudgetVersionModel,
)
from costcontrol_modules.budget.workflows import BUDGET_VERSION_WORKFLOW, HAS_BUDGET_LINES
from costcontrol_modules.wbs.orm import WbsNodeModel

logger = get_logger("modules.budget.service")

_PCT_FIELDS = ("overhead_pct", "financial_pct", "profit_pct", "tax_pct")


def _non_negative(field: str, value: Decimal | int | str) -> Decimal:
    amount = as_decimal(value)
    if not amount.is_finite() or amount < ZERO:
        raise ValidationError(field, value, "cannot be negative")
    return to_storage(amount)


def _optional_pct(field: str, value: Decimal | int | str | None) -> Decimal | None:
    if value is None:
        return None
    return to_storage(validate_percentage(field, value))


def _per_unit(total: Decimal, quantity: Decimal) -> Decimal:
    if quantity <= ZERO:
        return ZERO
    with localcontext() as ctx:
        ctx.prec = 60
        return to_storage(total / quantity)


def _coerce(enum_cls, field: str, value):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(field, value, f"unknown {enum_cls.__name__}") from exc


class BudgetService:
    """
    Orchestrates budget versions, lines and APU resources.

    Contract
    --------
    * Public methods return frozen DTOs from ``costcontrol_modules.budget.models``.
    * The access policy is consulted for approval only; authoring is not
      gated here.

    Guarantees
    ----------
    * Session is committed only when the whole operation succeeds.
    * Clock and id generator are injectable for deterministic tests.

    Non-goals
    ---------
    * Does NOT resolve actor roles (delegated to ``AccessPolicy``).
    * Does NOT deliver events (the outbox relay is external).
    """

    def __init__(
        self,
        session: Session,
        access_policy: AccessPolicy,
        config: CostControlConfig | None = None,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
    ):
        self._session = session
        self._access = access_policy
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._projects = ProjectService(session)
        self._sequences = SequenceService(session)
        self._outbox = OutboxPublisher(session, clock=self._clock, id_generator=id_generator)
        self._markup = MarkupCalculator()
        self._apu = APUCalculator()

    # =========================================================================
    # Loading helpers
    # =========================================================================

    def _get_version(self, version_id: UUID) -> BudgetVersionModel:
        version = self._session.get(BudgetVersionModel, version_id)
        if version is None:
            raise NotFoundError("BudgetVersion", str(version_id))
        return version

    def _lock_version(self, version_id: UUID) -> BudgetVersionModel:
        version = self._session.execute(
            select(BudgetVersionModel)
            .where(BudgetVersionModel.id == version_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if version is None:
            raise NotFoundError("BudgetVersion", str(version_id))
        return version

    def _get_line(self, line_id: UUID) -> BudgetLineModel:
        line = self._session.get(BudgetLineModel, line_id)
        if line is None:
            raise NotFoundError("BudgetLine", str(line_id))
        return line

    def _get_resource(self, resource_id: UUID) -> BudgetResourceModel:
        resource = self._session.get(BudgetResourceModel, resource_id)
        if resource is None:
            raise NotFoundError("BudgetResource", str(resource_id))
        return resource

    def _lines_of(self, version_id: UUID) -> list[BudgetLineModel]:
        return list(
            self._session.execute(
                select(BudgetLineModel)
                .where(BudgetLineModel.version_id == version_id)
                .order_by(BudgetLineModel.sort_order, BudgetLineModel.id)
            ).scalars()
        )

    def _line_count(self, version_id: UUID) -> int:
        return self._session.execute(
            select(func.count(BudgetLineModel.id)).where(
                BudgetLineModel.version_id == version_id
            )
        ).scalar_one()

    def _next_sort_order(self, version_id: UUID) -> int:
        current = self._session.execute(
            select(func.max(BudgetLineModel.sort_order)).where(
                BudgetLineModel.version_id == version_id
            )
        ).scalar_one()
        return (current or 0) + 1

    def _require_draft(self, version: BudgetVersionModel) -> None:
        if version.status != VersionStatus.DRAFT.value:
            raise ImmutableVersionError(str(version.id), version.status)

    def _draft_line(self, line_id: UUID) -> tuple[BudgetLineModel, BudgetVersionModel]:
        line = self._get_line(line_id)
        version = self._get_version(line.version_id)
        self._require_draft(version)
        return line, version

    def _check_wbs_target(self, version: BudgetVersionModel, wbs_node_id: UUID) -> WbsNodeModel:
        node = self._session.get(WbsNodeModel, wbs_node_id)
        if node is None:
            raise NotFoundError("WbsNode", str(wbs_node_id))
        if node.project_id != version.project_id:
            raise ValidationError("wbs_node_id", wbs_node_id, "node belongs to another project")
        if node.category != WbsCategory.BUDGET_ITEM.value:
            raise ValidationError(
                "wbs_node_id", wbs_node_id, f"budget lines need a budget_item node, not {node.category}"
            )
        if not node.is_active:
            raise ValidationError("wbs_node_id", wbs_node_id, "node is inactive")
        return node

    # =========================================================================
    # Pricing
    # =========================================================================

    def _rates_for(self, line: BudgetLineModel, version: BudgetVersionModel) -> MarkupRates:
        return version.rates().resolve(**line.overrides())

    def _reprice(self, line: BudgetLineModel, version: BudgetVersionModel) -> None:
        """Recompute a line's stored direct cost and breakdown from its inputs."""
        if line.cost_basis == CostBasis.IMPORTED.value:
            return
        rates = self._rates_for(line, version)
        quantity = line.quantity

        if line.cost_basis == CostBasis.APU.value:
            consumptions = [r.to_consumption() for r in line.resources]
            totals, direct_total = self._apu.line_direct_cost(consumptions, quantity)
            for resource, total in zip(line.resources, totals):
                resource.total_cost = total
            unit_direct = self._apu.analyze(resources=consumptions).direct_cost
            _, extended = self._markup.line_breakdown(
                unit_direct_cost=unit_direct, quantity=quantity, rates=rates
            )
            # Direct cost is the exact sum of the stored resource totals
            extended = dataclasses.replace(extended, direct_cost=direct_total)
            line.direct_unit_cost = to_storage(unit_direct)
        else:
            _, extended = self._markup.line_breakdown(
                unit_direct_cost=line.direct_unit_cost, quantity=quantity, rates=rates
            )
        self._store_breakdown(line, extended)

    @staticmethod
    def _store_breakdown(line: BudgetLineModel, breakdown: MarkupBreakdown) -> None:
        line.direct_cost_total = breakdown.direct_cost
        line.overhead_amount = breakdown.overhead_amount
        line.financial_amount = breakdown.financial_amount
        line.profit_amount = breakdown.profit_amount
        line.tax_amount = breakdown.tax_amount
        line.sale_price_total = breakdown.total_sale

    def _check_overrides_allowed(
        self, version: BudgetVersionModel, overrides: dict[str, Decimal | None]
    ) -> None:
        if version.markup_mode != MarkupMode.ADVANCED.value and any(
            v is not None for v in overrides.values()
        ):
            raise ValidationError(
                "markup_mode",
                version.markup_mode,
                "per-line markups need a version in advanced markup mode",
            )

    # =========================================================================
    # Versions
    # =========================================================================

    def create_version(
        self,
        project_id: UUID,
        actor_id: UUID,
        version_type: VersionType | str = VersionType.INITIAL,
        notes: str | None = None,
        preload_from_wbs: bool = False,
    ) -> BudgetVersion:
        """
        Create a DRAFT version with the next ``V{n}`` code and config markups.

        With ``preload_from_wbs`` one zero-cost line is added per active
        BUDGET_ITEM node, taking the node's name, unit and quantity.
        """
        try:
            self._projects.get_project(project_id)
            kind = _coerce(VersionType, "version_type", version_type)
            number = self._sequences.next_value(version_sequence(project_id))
            defaults = self._config.markups
            version = BudgetVersionModel(
                project_id=project_id,
                version_code=f"{self._config.version_code_prefix}{number}",
                version_type=kind.value,
                status=VersionStatus.DRAFT.value,
                markup_mode=MarkupMode.SIMPLE.value,
                global_overhead_pct=to_storage(defaults.overhead_pct),
                global_financial_pct=to_storage(defaults.financial_pct),
                global_profit_pct=to_storage(defaults.profit_pct),
                global_tax_pct=to_storage(defaults.tax_pct),
                notes=notes,
                created_by_id=actor_id,
            )
            self._session.add(version)
            self._session.flush()

            preloaded = 0
            if preload_from_wbs:
                nodes = self._session.execute(
                    select(WbsNodeModel).where(
                        WbsNodeModel.project_id == project_id,
                        WbsNodeModel.category == WbsCategory.BUDGET_ITEM.value,
                        WbsNodeModel.is_active.is_(True),
                    )
                ).scalars()
                ordered = sorted(nodes, key=lambda n: tuple(int(p) for p in n.code.split(".")))
                for index, node in enumerate(ordered, start=1):
                    line = BudgetLineModel(
                        version_id=version.id,
                        wbs_node_id=node.id,
                        description=node.name,
                        unit=node.unit,
                        quantity=to_storage(node.quantity or ZERO),
                        cost_basis=CostBasis.UNIT_COST.value,
                        direct_unit_cost=ZERO,
                        sort_order=index,
                        created_by_id=actor_id,
                    )
                    line.version = version
                    self._reprice(line, version)
                    self._session.add(line)
                    preloaded += 1
                self._session.flush()

            dto = version.to_dto()
            self._session.commit()
            logger.info("budget_version_created", extra={
                "project_id": str(project_id),
                "version_id": str(dto.id),
                "version_code": dto.version_code,
                "preloaded_lines": preloaded,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def update_version(
        self,
        version_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
        version_type: VersionType | str | None = None,
    ) -> BudgetVersion:
        """Change notes or type of a DRAFT version."""
        try:
            version = self._get_version(version_id)
            self._require_draft(version)
            if notes is not None:
                version.notes = notes
            if version_type is not None:
                version.version_type = _coerce(VersionType, "version_type", version_type).value
            version.updated_by_id = actor_id
            self._session.flush()
            dto = version.to_dto()
            self._session.commit()
            logger.info("budget_version_updated", extra={"version_id": str(version_id)})
            return dto
        except Exception:
            self._session.rollback()
            raise

    def set_global_markups(
        self,
        version_id: UUID,
        actor_id: UUID,
        overhead_pct: Decimal | None = None,
        financial_pct: Decimal | None = None,
        profit_pct: Decimal | None = None,
        tax_pct: Decimal | None = None,
        apply_to_all_lines: bool = False,
    ) -> BudgetVersion:
        """
        Change the version's global percentages and reprice its lines.

        ``None`` keeps a percentage.  Lines inheriting a changed percentage
        are repriced; with ``apply_to_all_lines`` every line's overrides
        are cleared first so all lines follow the new globals.
        """
        try:
            version = self._get_version(version_id)
            self._require_draft(version)
            rates = version.rates().resolve(
                overhead_pct=overhead_pct,
                financial_pct=financial_pct,
                profit_pct=profit_pct,
                tax_pct=tax_pct,
            )
            version.global_overhead_pct = to_storage(rates.overhead_pct)
            version.global_financial_pct = to_storage(rates.financial_pct)
            version.global_profit_pct = to_storage(rates.profit_pct)
            version.global_tax_pct = to_storage(rates.tax_pct)
            version.updated_by_id = actor_id

            lines = self._lines_of(version_id)
            for line in lines:
                if apply_to_all_lines:
                    for field in _PCT_FIELDS:
                        setattr(line, field, None)
                self._reprice(line, version)
                line.updated_by_id = actor_id
            self._session.flush()
            dto = version.to_dto()
            self._session.commit()
            logger.info("budget_version_markups_set", extra={
                "version_id": str(version_id),
                "apply_to_all_lines": apply_to_all_lines,
                "repriced_lines": len(lines),
                **{k: str(v) for k, v in rates.as_dict().items()},
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def set_markup_mode(
        self, version_id: UUID, mode: MarkupMode | str, actor_id: UUID
    ) -> BudgetVersion:
        """Switch SIMPLE/ADVANCED.  Going SIMPLE clears and reprices line overrides."""
        try:
            version = self._get_version(version_id)
            self._require_draft(version)
            new_mode = _coerce(MarkupMode, "markup_mode", mode)
            cleared = 0
            if new_mode is MarkupMode.SIMPLE:
                for line in self._lines_of(version_id):
                    if any(getattr(line, f) is not None for f in _PCT_FIELDS):
                        for field in _PCT_FIELDS:
                            setattr(line, field, None)
                        self._reprice(line, version)
                        line.updated_by_id = actor_id
                        cleared += 1
            version.markup_mode = new_mode.value
            version.updated_by_id = actor_id
            self._session.flush()
            dto = version.to_dto()
            self._session.commit()
            logger.info("budget_version_markup_mode_set", extra={
                "version_id": str(version_id),
                "markup_mode": new_mode.value,
                "cleared_overrides": cleared,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def copy_version(
        self,
        source_version_id: UUID,
        actor_id: UUID,
        version_type: VersionType | str = VersionType.REVISION,
        notes: str | None = None,
    ) -> BudgetVersion:
        """
        New DRAFT version with copies of every line and resource of the source.

        Stored amounts are copied as-is, so the copy's rollup equals the
        source's.  The source is not modified.
        """
        try:
            source = self._get_version(source_version_id)
            kind = _coerce(VersionType, "version_type", version_type)
            number = self._sequences.next_value(version_sequence(source.project_id))
            copy = BudgetVersionModel(
                project_id=source.project_id,
                version_code=f"{self._config.version_code_prefix}{number}",
                version_type=kind.value,
                status=VersionStatus.DRAFT.value,
                markup_mode=source.markup_mode,
                global_overhead_pct=source.global_overhead_pct,
                global_financial_pct=source.global_financial_pct,
                global_profit_pct=source.global_profit_pct,
                global_tax_pct=source.global_tax_pct,
                notes=notes if notes is not None else source.notes,
                copied_from_version_id=source.id,
                created_by_id=actor_id,
            )
            self._session.add(copy)
            self._session.flush()

            source_lines = self._lines_of(source.id)
            for line in source_lines:
                self._session.add(self._clone_line(line, copy.id, line.sort_order, actor_id))
            self._session.flush()
            dto = copy.to_dto()
            self._session.commit()
            logger.info("budget_version_copied", extra={
                "source_version_id": str(source.id),
                "version_id": str(dto.id),
                "version_code": dto.version_code,
                "line_count": len(source_lines),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    @staticmethod
    def _clone_line(
        line: BudgetLineModel, version_id: UUID, sort_order: int, actor_id: UUID
    ) -> BudgetLineModel:
        clone = BudgetLineModel(
            version_id=version_id,
            wbs_node_id=line.wbs_node_id,
            description=line.description,
            unit=line.unit,
            quantity=line.quantity,
            cost_basis=line.cost_basis,
            direct_unit_cost=line.direct_unit_cost,
            direct_cost_total=line.direct_cost_total,
            overhead_amount=line.overhead_amount,
            financial_amount=line.financial_amount,
            profit_amount=line.profit_amount,
            tax_amount=line.tax_amount,
            sale_price_total=line.sale_price_total,
            overhead_pct=line.overhead_pct,
            financial_pct=line.financial_pct,
            profit_pct=line.profit_pct,
            tax_pct=line.tax_pct,
            sort_order=sort_order,
            created_by_id=actor_id,
        )
        clone.resources = [
            BudgetResourceModel(
                resource_type=r.resource_type,
                description=r.description,
                unit=r.unit,
                quantity_per_unit=r.quantity_per_unit,
                unit_cost=r.unit_cost,
                total_cost=r.total_cost,
                sort_order=r.sort_order,
                created_by_id=actor_id,
            )
            for r in line.resources
        ]
        return clone

    # =========================================================================
    # Lines
    # =========================================================================

    def add_line(
        self,
        version_id: UUID,
        wbs_node_id: UUID,
        actor_id: UUID,
        description: str,
        quantity: Decimal,
        unit: str | None = None,
        direct_unit_cost: Decimal = ZERO,
        sort_order: int | None = None,
        overhead_pct: Decimal | None = None,
        financial_pct: Decimal | None = None,
        profit_pct: Decimal | None = None,
        tax_pct: Decimal | None = None,
    ) -> BudgetLine:
        """Add a UNIT_COST line priced at ``direct_unit_cost`` x ``quantity``."""
        try:
            version = self._get_version(version_id)
            self._require_draft(version)
            self._check_wbs_target(version, wbs_node_id)
            if not (description or "").strip():
                raise ValidationError("description", description, "description is required")
            overrides = {
                "overhead_pct": _optional_pct("overhead_pct", overhead_pct),
                "financial_pct": _optional_pct("financial_pct", financial_pct),
                "profit_pct": _optional_pct("profit_pct", profit_pct),
                "tax_pct": _optional_pct("tax_pct", tax_pct),
            }
            self._check_overrides_allowed(version, overrides)

            line = BudgetLineModel(
                version_id=version.id,
                wbs_node_id=wbs_node_id,
                description=description.strip(),
                unit=unit,
                quantity=_non_negative("quantity", quantity),
                cost_basis=CostBasis.UNIT_COST.value,
                direct_unit_cost=_non_negative("direct_unit_cost", direct_unit_cost),
                sort_order=self._next_sort_order(version_id) if sort_order is None else sort_order,
                created_by_id=actor_id,
                **overrides,
            )
            self._reprice(line, version)
            self._session.add(line)
            self._session.flush()
            dto = line.to_dto()
            self._session.commit()
            logger.info("budget_line_added", extra={
                "version_id": str(version_id),
                "line_id": str(dto.id),
                "sale_price_total": str(dto.sale_price_total),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def import_line(
        self,
        version_id: UUID,
        wbs_node_id: UUID,
        actor_id: UUID,
        description: str,
        quantity: Decimal,
        direct_cost_total: Decimal,
        sale_price_total: Decimal,
        unit: str | None = None,
        sort_order: int | None = None,
    ) -> BudgetLine:
        """
        Add an IMPORTED line whose totals come from an external estimate.

        Imported totals are never recomputed; markup amounts are stored as
        zero and the sale price is kept as given.
        """
        try:
            version = self._get_version(version_id)
            self._require_draft(version)
            self._check_wbs_target(version, wbs_node_id)
            if not (description or "").strip():
                raise ValidationError("description", description, "description is required")
            qty = _non_negative("quantity", quantity)
            direct_total = _non_negative("direct_cost_total", direct_cost_total)
            sale_total = _non_negative("sale_price_total", sale_price_total)

            line = BudgetLineModel(
                version_id=version.id,
                wbs_node_id=wbs_node_id,
                description=description.strip(),
                unit=unit,
                quantity=qty,
                cost_basis=CostBasis.IMPORTED.value,
                direct_unit_cost=_per_unit(direct_total, qty),
                direct_cost_total=direct_total,
                overhead_amount=ZERO,
                financial_amount=ZERO,
                profit_amount=ZERO,
                tax_amount=ZERO,
                sale_price_total=sale_total,
                sort_order=self._next_sort_order(version_id) if sort_order is None else sort_order,
                created_by_id=actor_id,
            )
            self._session.add(line)
            self._session.flush()
            dto = line.to_dto()
            self._session.commit()
            logger.info("budget_line_imported", extra={
                "version_id": str(version_id),
                "line_id": str(dto.id),
                "sale_price_total": str(sale_total),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def import_lines_from_version(
        self,
        source_version_id: UUID,
        target_version_id: UUID,
        actor_id: UUID,
        line_ids: Sequence[UUID] | None = None,
    ) -> list[BudgetLine]:
        """
        Copy lines (with resources) from another version of the same project
        into a DRAFT target, appended after the target's lines and repriced
        under the target's markups.
        """
        try:
            source = self._get_version(source_version_id)
            target = self._get_version(target_version_id)
            self._require_draft(target)
            if source.project_id != target.project_id:
                raise ValidationError(
                    "source_version_id", source_version_id, "versions belong to different projects"
                )
            if source.id == target.id:
                raise ValidationError(
                    "source_version_id", source_version_id, "cannot import a version into itself"
                )
            wanted = set(line_ids) if line_ids is not None else None
            source_lines = [
                line for line in self._lines_of(source.id)
                if wanted is None or line.id in wanted
            ]
            if wanted is not None and len(source_lines) != len(wanted):
                found = {line.id for line in source_lines}
                missing = sorted(str(i) for i in wanted - found)
                raise ValidationError("line_ids", missing[0], "line is not part of the source version")

            keep_overrides = target.markup_mode == MarkupMode.ADVANCED.value
            next_order = self._next_sort_order(target.id)
            imported: list[BudgetLineModel] = []
            for offset, line in enumerate(source_lines):
                clone = self._clone_line(line, target.id, next_order + offset, actor_id)
                if not keep_overrides:
                    for field in _PCT_FIELDS:
                        setattr(clone, field, None)
                clone.version = target
                self._reprice(clone, target)
                self._session.add(clone)
                imported.append(clone)
            self._session.flush()
            dtos = [line.to_dto() for line in imported]
            self._session.commit()
            logger.info("budget_lines_imported", extra={
                "source_version_id": str(source.id),
                "version_id": str(target.id),
                "line_count": len(dtos),
            })
            return dtos
        except Exception:
            self._session.rollback()
            raise

    def update_line(
        self,
        line_id: UUID,
        actor_id: UUID,
        description: str | None = None,
        unit: str | None = None,
        direct_unit_cost: Decimal | None = None,
        sort_order: int | None = None,
        wbs_node_id: UUID | None = None,
    ) -> BudgetLine:
        """
        Edit descriptive fields or the unit cost of a DRAFT line.

        Setting ``direct_unit_cost`` on a line without resources makes it a
        UNIT_COST line.  APU lines with resources and IMPORTED lines refuse
        a unit cost.
        """
        try:
            line, version = self._draft_line(line_id)
            if description is not None:
                if not description.strip():
                    raise ValidationError("description", description, "description is required")
                line.description = description.strip()
            if unit is not None:
                line.unit = unit
            if sort_order is not None:
                line.sort_order = int(sort_order)
            if wbs_node_id is not None:
                self._check_wbs_target(version, wbs_node_id)
                line.wbs_node_id = wbs_node_id
            if direct_unit_cost is not None:
                if line.cost_basis == CostBasis.IMPORTED.value:
                    raise ValidationError(
                        "direct_unit_cost", direct_unit_cost, "imported lines keep their imported totals"
                    )
                if line.resources:
                    raise ValidationError(
                        "direct_unit_cost", direct_unit_cost, "line cost comes from its APU resources"
                    )
                line.cost_basis = CostBasis.UNIT_COST.value
                line.direct_unit_cost = _non_negative("direct_unit_cost", direct_unit_cost)
                self._reprice(line, version)
            line.updated_by_id = actor_id
            self._session.flush()
            dto = line.to_dto()
            self._session.commit()
            logger.info("budget_line_updated", extra={
                "version_id": str(version.id), "line_id": str(line_id),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def update_line_quantity(
        self, line_id: UUID, quantity: Decimal, actor_id: UUID
    ) -> BudgetLine:
        """Change a line's quantity; resource totals and breakdown follow."""
        try:
            line, version = self._draft_line(line_id)
            if line.cost_basis == CostBasis.IMPORTED.value:
                raise ValidationError(
                    "quantity", quantity, "imported lines keep their imported totals"
                )
            line.quantity = _non_negative("quantity", quantity)
            self._reprice(line, version)
            line.updated_by_id = actor_id
            self._session.flush()
            dto = line.to_dto()
            self._session.commit()
            logger.info("budget_line_quantity_updated", extra={
                "version_id": str(version.id),
                "line_id": str(line_id),
                "quantity": str(dto.quantity),
                "sale_price_total": str(dto.sale_price_total),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def set_line_markups(
        self,
        line_id: UUID,
        actor_id: UUID,
        overhead_pct: Decimal | None = None,
        financial_pct: Decimal | None = None,
        profit_pct: Decimal | None = None,
        tax_pct: Decimal | None = None,
    ) -> BudgetLine:
        """
        Replace a line's four overrides.  ``None`` means inherit the global.

        Requires the version to be in ADVANCED markup mode.
        """
        try:
            line, version = self._draft_line(line_id)
            if version.markup_mode != MarkupMode.ADVANCED.value:
                raise ValidationError(
                    "markup_mode",
                    version.markup_mode,
                    "per-line markups need a version in advanced markup mode",
                )
            if line.cost_basis == CostBasis.IMPORTED.value:
                raise ValidationError(
                    "cost_basis", line.cost_basis, "imported lines keep their imported totals"
                )
            line.overhead_pct = _optional_pct("overhead_pct", overhead_pct)
            line.financial_pct = _optional_pct("financial_pct", financial_pct)
            line.profit_pct = _optional_pct("profit_pct", profit_pct)
            line.tax_pct = _optional_pct("tax_pct", tax_pct)
            self._reprice(line, version)
            line.updated_by_id = actor_id
            self._session.flush()
            dto = line.to_dto()
            self._session.commit()
            logger.info("budget_line_markups_set", extra={
                "version_id": str(version.id),
                "line_id": str(line_id),
                "sale_price_total": str(dto.sale_price_total),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def delete_line(self, line_id: UUID, actor_id: UUID) -> None:
        """Delete a DRAFT line and its resources."""
        try:
            line, version = self._draft_line(line_id)
            self._session.delete(line)
            self._session.flush()
            self._session.commit()
            logger.info("budget_line_deleted", extra={
                "version_id": str(version.id),
                "line_id": str(line_id),
                "actor_id": str(actor_id),
            })
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # APU resources
    # =========================================================================

    def add_resource(
        self,
        line_id: UUID,
        actor_id: UUID,
        resource_type: ResourceType | str,
        quantity_per_unit: Decimal,
        unit_cost: Decimal,
        description: str = "",
        unit: str | None = None,
        sort_order: int | None = None,
    ) -> BudgetResource:
        """Add an APU resource; the line becomes an APU line and is repriced."""
        try:
            line, version = self._draft_line(line_id)
            if line.cost_basis == CostBasis.IMPORTED.value:
                raise ValidationError(
                    "cost_basis", line.cost_basis, "imported lines have no APU resources"
                )
            kind = _coerce(ResourceType, "resource_type", resource_type)
            consumption = ResourceConsumption(
                resource_type=kind,
                quantity_per_unit=_non_negative("quantity_per_unit", quantity_per_unit),
                unit_cost=_non_negative("unit_cost", unit_cost),
                description=description,
            )
            order = (
                sort_order
                if sort_order is not None
                else max((r.sort_order for r in line.resources), default=0) + 1
            )
            resource = BudgetResourceModel(
                resource_type=kind.value,
                description=description,
                unit=unit,
                quantity_per_unit=consumption.quantity_per_unit,
                unit_cost=consumption.unit_cost,
                total_cost=ZERO,
                sort_order=order,
                created_by_id=actor_id,
            )
            line.resources.append(resource)
            line.cost_basis = CostBasis.APU.value
            self._reprice(line, version)
            line.updated_by_id = actor_id
            self._session.flush()
            dto = resource.to_dto()
            self._session.commit()
            logger.info("budget_resource_added", extra={
                "line_id": str(line_id),
                "resource_id": str(dto.id),
                "resource_type": kind.value,
                "total_cost": str(dto.total_cost),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def update_resource(
        self,
        resource_id: UUID,
        actor_id: UUID,
        quantity_per_unit: Decimal | None = None,
        unit_cost: Decimal | None = None,
        description: str | None = None,
        unit: str | None = None,
    ) -> BudgetResource:
        """Edit an APU resource and reprice its line."""
        try:
            resource = self._get_resource(resource_id)
            line, version = self._draft_line(resource.line_id)
            if quantity_per_unit is not None:
                resource.quantity_per_unit = _non_negative("quantity_per_unit", quantity_per_unit)
            if unit_cost is not None:
                resource.unit_cost = _non_negative("unit_cost", unit_cost)
            if description is not None:
                resource.description = description
            if unit is not None:
                resource.unit = unit
            resource.updated_by_id = actor_id
            self._reprice(line, version)
            line.updated_by_id = actor_id
            self._session.flush()
            dto = resource.to_dto()
            self._session.commit()
            logger.info("budget_resource_updated", extra={
                "line_id": str(line.id),
                "resource_id": str(resource_id),
                "total_cost": str(dto.total_cost),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    def delete_resource(self, resource_id: UUID, actor_id: UUID) -> BudgetLine:
        """Remove an APU resource and return the repriced line."""
        try:
            resource = self._get_resource(resource_id)
            line, version = self._draft_line(resource.line_id)
            line.resources.remove(resource)
            self._reprice(line, version)
            line.updated_by_id = actor_id
            self._session.flush()
            dto = line.to_dto()
            self._session.commit()
            logger.info("budget_resource_deleted", extra={
                "line_id": str(line.id),
                "resource_id": str(resource_id),
                "direct_cost_total": str(dto.direct_cost_total),
            })
            return dto
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def baseline_version(self, version_id: UUID, actor_id: UUID) -> BudgetVersion:
        """DRAFT -> BASELINE.  Needs at least one line."""
        return self.transition_version(version_id, VersionStatus.BASELINE, actor_id)

    def approve_version(self, version_id: UUID, actor_id: UUID) -> BudgetVersion:
        """BASELINE -> APPROVED.  Needs ``budget_version.approve``."""
        return self.transition_version(version_id, VersionStatus.APPROVED, actor_id)

    def transition_version(
        self,
        version_id: UUID,
        to_status: VersionStatus | str,
        actor_id: UUID,
    ) -> BudgetVersion:
        """
        Move a version along ``BUDGET_VERSION_WORKFLOW``.

        Raises:
            ImmutableVersionError: target is DRAFT from a locked state.
            StateTransitionError: no such transition, or its guard failed.
            AuthorizationError: the policy denied a gated transition.
            ConcurrencyConflictError: the status changed after our read.
        """
        try:
            target = _coerce(VersionStatus, "to_status", to_status)
            with LogContext.bind(version_id=version_id, actor_id=actor_id):
                version = self._lock_version(version_id)
                current = version.status

                if target is VersionStatus.DRAFT and current != VersionStatus.DRAFT.value:
                    raise ImmutableVersionError(
                        str(version_id),
                        current,
                        f"a {current} version never returns to draft; copy it instead",
                    )
                transition = BUDGET_VERSION_WORKFLOW.find_transition(current, target.value)
                if transition is None:
                    reason = (
                        "intermediate states cannot be skipped"
                        if BUDGET_VERSION_WORKFLOW.is_reachable(current, target.value)
                        else "transition not allowed"
                    )
                    raise StateTransitionError(
                        "BudgetVersion", str(version_id), current, target.value, reason
                    )

                line_count = self._line_count(version_id)
                if transition.guard is HAS_BUDGET_LINES and line_count == 0:
                    raise StateTransitionError(
                        "BudgetVersion",
                        str(version_id),
                        current,
                        target.value,
                        "a version without budget lines cannot be baselined",
                    )
                if transition.requires_authorization and not self._access.is_authorized_for(
                    actor_id, transition.authorization_action
                ):
                    raise AuthorizationError(str(actor_id), transition.authorization_action)

                now = self._clock.now()
                stamps: dict[str, object] = {}
                if target is VersionStatus.BASELINE:
                    stamps = {"baselined_at": now, "baselined_by_id": actor_id}
                elif target is VersionStatus.APPROVED:
                    stamps = {"approved_at": now, "approved_by_id": actor_id}
                self._compare_and_swap_status(version, current, target.value, actor_id, stamps)

                sale_total = self._session.execute(
                    select(BudgetLineModel.sale_price_total).where(
                        BudgetLineModel.version_id == version_id
                    )
                ).scalars()
                self._outbox.publish(
                    event_type=transition.event_type,
                    entity_type="budget_version",
                    entity_id=version.id,
                    payload={
                        "version_id": version.id,
                        "version_code": version.version_code,
                        "from_status": current,
                        "to_status": target.value,
                        "line_count": line_count,
                        "sale_price_total": sum(sale_total, ZERO),
                    },
                    project_id=version.project_id,
                    actor_id=actor_id,
                )
                dto = version.to_dto()
                self._session.commit()
                logger.info(transition.event_type.replace(".", "_"), extra={
                    "version_code": dto.version_code,
                    "from_status": current,
                    "to_status": target.value,
                    "line_count": line_count,
                })
                return dto
        except Exception:
            self._session.rollback()
            raise

    def _compare_and_swap_status(
        self,
        version: BudgetVersionModel,
        expected: str,
        new_status: str,
        actor_id: UUID,
        stamps: dict[str, object],
    ) -> None:
        result = self._session.execute(
            update(BudgetVersionModel)
            .where(
                BudgetVersionModel.id == version.id,
                BudgetVersionModel.status == expected,
            )
            .values(status=new_status, updated_by_id=actor_id, **stamps)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("budget_version_status_conflict", extra={
                "version_id": str(version.id), "expected_status": expected,
            })
            raise ConcurrencyConflictError(
                "BudgetVersion", str(version.id), f"status is no longer {expected}"
            )
        self._session.refresh(version)

    def set_baseline_pointer(
        self, project_id: UUID, version_id: UUID, actor_id: UUID
    ) -> BudgetVersion:
        """
        Point the project's current baseline at a BASELINE or APPROVED version.

        Idempotent; the version rows are never modified.
        """
        try:
            project = self._projects.get_project(project_id, for_update=True)
            version = self._get_version(version_id)
            if version.project_id != project_id:
                raise ValidationError("version_id", version_id, "version belongs to another project")
            if version.status == VersionStatus.DRAFT.value:
                raise StateTransitionError(
                    "BudgetVersion",
                    str(version_id),
                    version.status,
                    VersionStatus.BASELINE.value,
                    "a draft version cannot be the project baseline",
                )
            previous = project.baseline_version_id
            if previous != version.id:
                project.baseline_version_id = version.id
                project.updated_by_id = actor_id
                self._session.flush()
            dto = version.to_dto()
            self._session.commit()
            logger.info("project_baseline_pointer_set", extra={
                "project_id": str(project_id),
                "version_id": str(version_id),
                "previous_version_id": str(previous) if previous else None,
                "changed": previous != version.id,
            })
            return dto
        except Exception:
            self._session.rollback()
            raise
