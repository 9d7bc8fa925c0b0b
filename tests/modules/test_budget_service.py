"""
Tests for BudgetService and BudgetSelector.

Covers versions and codes, line pricing under global and per-line markups,
APU resources, imported lines, the draft -> baseline -> approved lifecycle,
locking, copies and rollups.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from costcontrol_engines.apu import ResourceType
from costcontrol_kernel.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    ImmutabilityViolationError,
    ImmutableVersionError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from costcontrol_kernel.models.project import Project
from costcontrol_kernel.selectors.outbox_selector import OutboxSelector
from costcontrol_modules.budget.models import (
    CostBasis,
    MarkupMode,
    VersionStatus,
    VersionType,
)
from costcontrol_modules.budget.orm import BudgetLineModel, BudgetVersionModel

STANDARD_MARKUPS = {
    "overhead_pct": Decimal("10"),
    "financial_pct": Decimal("5"),
    "profit_pct": Decimal("15"),
    "tax_pct": Decimal("21"),
}


@pytest.fixture
def marked_up_version(draft_version, budget_service, test_actor_id):
    return budget_service.set_global_markups(draft_version.id, test_actor_id, **STANDARD_MARKUPS)


@pytest.fixture
def footing_line(marked_up_version, wbs_items, budget_service, test_actor_id):
    return budget_service.add_line(
        marked_up_version.id, wbs_items["footing"].id, test_actor_id,
        description="Concrete footing", quantity=Decimal("50"), unit="m3",
        direct_unit_cost=Decimal("20"),
    )


# ============================================================================
# Versions
# ============================================================================


class TestVersions:

    def test_new_version_is_draft_with_sequential_code(self, project, budget_service, test_actor_id):
        first = budget_service.create_version(project.id, test_actor_id)
        second = budget_service.create_version(project.id, test_actor_id, version_type="change_order")
        assert first.version_code == "V1"
        assert second.version_code == "V2"
        assert first.status is VersionStatus.DRAFT
        assert second.version_type is VersionType.CHANGE_ORDER
        assert first.markup_mode is MarkupMode.SIMPLE

    def test_codes_are_per_project(self, create_project, budget_service, test_actor_id):
        a, b = create_project(), create_project()
        budget_service.create_version(a.id, test_actor_id)
        assert budget_service.create_version(b.id, test_actor_id).version_code == "V1"

    def test_unknown_project(self, budget_service, test_actor_id):
        with pytest.raises(NotFoundError):
            budget_service.create_version(uuid4(), test_actor_id)

    def test_preload_from_wbs(self, project, wbs_items, budget_service, budget_selector, test_actor_id):
        version = budget_service.create_version(project.id, test_actor_id, preload_from_wbs=True)
        lines = budget_selector.list_budget_lines(version.id)
        assert [line.description for line in lines] == ["Concrete footing", "Rebar", "Paint walls"]
        assert lines[0].quantity == Decimal("50")
        assert all(line.sale_price_total == 0 for line in lines)

    def test_update_version(self, draft_version, budget_service, test_actor_id):
        updated = budget_service.update_version(draft_version.id, test_actor_id, notes="Tender")
        assert updated.notes == "Tender"
        assert not updated.is_locked

    def test_list_versions(self, project, budget_service, budget_selector, test_actor_id):
        for _ in range(3):
            budget_service.create_version(project.id, test_actor_id)
        codes = [v.version_code for v in budget_selector.list_versions(project.id)]
        assert codes == ["V1", "V2", "V3"]


# ============================================================================
# Lines and markups
# ============================================================================


class TestLinePricing:

    def test_line_stores_the_ordered_breakdown(self, footing_line):
        assert footing_line.cost_basis is CostBasis.UNIT_COST
        assert footing_line.direct_cost_total == Decimal("1000")
        assert footing_line.overhead_amount == Decimal("100")
        assert footing_line.financial_amount == Decimal("55")
        assert footing_line.profit_amount == Decimal("165")
        assert footing_line.tax_amount == Decimal("277.20")
        assert footing_line.sale_price_total == Decimal("1597.20")

    def test_changing_globals_reprices_lines(
        self, marked_up_version, footing_line, budget_service, budget_selector, test_actor_id
    ):
        budget_service.set_global_markups(marked_up_version.id, test_actor_id, tax_pct=Decimal("0"))
        line = budget_selector.get_budget_line(footing_line.id)
        assert line.tax_amount == 0
        assert line.sale_price_total == Decimal("1320")

    def test_quantity_change_reprices(self, footing_line, budget_service, test_actor_id):
        line = budget_service.update_line_quantity(footing_line.id, Decimal("25"), test_actor_id)
        assert line.direct_cost_total == Decimal("500")
        assert line.sale_price_total == Decimal("798.60")

    def test_percentage_out_of_range(self, marked_up_version, budget_service, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.set_global_markups(
                marked_up_version.id, test_actor_id, profit_pct=Decimal("101")
            )

    def test_negative_quantity(self, marked_up_version, wbs_items, budget_service, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.add_line(
                marked_up_version.id, wbs_items["footing"].id, test_actor_id,
                description="Bad", quantity=Decimal("-1"),
            )

    def test_line_needs_budget_item_node(self, draft_version, wbs_items, budget_service, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            budget_service.add_line(
                draft_version.id, wbs_items["foundations"].id, test_actor_id,
                description="On a task", quantity=Decimal("1"),
            )
        assert exc_info.value.field == "wbs_node_id"

    def test_line_needs_active_node(
        self, draft_version, wbs_items, wbs_service, budget_service, test_actor_id
    ):
        wbs_service.deactivate_node(wbs_items["rebar"].id, test_actor_id)
        with pytest.raises(ValidationError):
            budget_service.add_line(
                draft_version.id, wbs_items["rebar"].id, test_actor_id,
                description="Rebar", quantity=Decimal("1"),
            )

    def test_delete_line(self, footing_line, budget_service, budget_selector, test_actor_id):
        budget_service.delete_line(footing_line.id, test_actor_id)
        with pytest.raises(NotFoundError):
            budget_selector.get_budget_line(footing_line.id)


class TestMarkupModes:

    def test_overrides_need_advanced_mode(self, marked_up_version, wbs_items, budget_service, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            budget_service.add_line(
                marked_up_version.id, wbs_items["footing"].id, test_actor_id,
                description="Footing", quantity=Decimal("1"), profit_pct=Decimal("0"),
            )
        assert exc_info.value.field == "markup_mode"

    def test_line_override_in_advanced_mode(
        self, marked_up_version, footing_line, budget_service, test_actor_id
    ):
        budget_service.set_markup_mode(marked_up_version.id, MarkupMode.ADVANCED, test_actor_id)
        line = budget_service.set_line_markups(footing_line.id, test_actor_id, profit_pct=Decimal("0"))
        assert line.has_overrides
        assert line.profit_amount == 0
        assert line.tax_amount == Decimal("242.55")
        assert line.sale_price_total == Decimal("1397.55")

    def test_back_to_simple_clears_overrides(
        self, marked_up_version, footing_line, budget_service, budget_selector, test_actor_id
    ):
        budget_service.set_markup_mode(marked_up_version.id, "advanced", test_actor_id)
        budget_service.set_line_markups(footing_line.id, test_actor_id, profit_pct=Decimal("0"))
        budget_service.set_markup_mode(marked_up_version.id, "simple", test_actor_id)
        line = budget_selector.get_budget_line(footing_line.id)
        assert not line.has_overrides
        assert line.sale_price_total == Decimal("1597.20")

    def test_apply_to_all_lines_clears_overrides(
        self, marked_up_version, footing_line, budget_service, budget_selector, test_actor_id
    ):
        budget_service.set_markup_mode(marked_up_version.id, "advanced", test_actor_id)
        budget_service.set_line_markups(footing_line.id, test_actor_id, profit_pct=Decimal("0"))
        budget_service.set_global_markups(
            marked_up_version.id, test_actor_id, profit_pct=Decimal("15"), apply_to_all_lines=True
        )
        line = budget_selector.get_budget_line(footing_line.id)
        assert line.profit_pct is None
        assert line.sale_price_total == Decimal("1597.20")


# ============================================================================
# APU
# ============================================================================


class TestApuLines:

    @pytest.fixture
    def apu_line(self, marked_up_version, wbs_items, budget_service, test_actor_id):
        line = budget_service.add_line(
            marked_up_version.id, wbs_items["footing"].id, test_actor_id,
            description="Concrete footing", quantity=Decimal("50"),
        )
        budget_service.add_resource(
            line.id, test_actor_id, ResourceType.MATERIAL, Decimal("1.05"), Decimal("10"), "Ready-mix"
        )
        budget_service.add_resource(
            line.id, test_actor_id, "labor", Decimal("0.5"), Decimal("15"), "Crew hour"
        )
        budget_service.add_resource(
            line.id, test_actor_id, ResourceType.EQUIPMENT, Decimal("0.25"), Decimal("8"), "Vibrator"
        )
        return line

    def test_resources_drive_the_line(self, apu_line, budget_selector):
        line = budget_selector.get_budget_line(apu_line.id)
        assert line.cost_basis is CostBasis.APU
        assert line.direct_unit_cost == Decimal("20")
        assert line.direct_cost_total == Decimal("1000")
        assert line.sale_price_total == Decimal("1597.20")
        assert [r.total_cost for r in line.resources] == [
            Decimal("525"), Decimal("375"), Decimal("100"),
        ]

    def test_apu_detail(self, apu_line, budget_selector):
        detail = budget_selector.get_apu_detail(apu_line.id)
        assert detail.analysis.direct_cost == Decimal("20")
        assert detail.analysis.subtotal_for(ResourceType.LABOR) == Decimal("7.5")
        assert detail.extended_direct_cost == Decimal("1000")

    def test_update_resource_reprices(self, apu_line, budget_service, budget_selector, test_actor_id):
        material = budget_selector.get_budget_line(apu_line.id).resources[0]
        budget_service.update_resource(material.id, test_actor_id, unit_cost=Decimal("12"))
        line = budget_selector.get_budget_line(apu_line.id)
        assert line.direct_cost_total == Decimal("1105")

    def test_delete_resource_reprices(self, apu_line, budget_service, budget_selector, test_actor_id):
        equipment = budget_selector.get_budget_line(apu_line.id).resources[2]
        line = budget_service.delete_resource(equipment.id, test_actor_id)
        assert line.direct_cost_total == Decimal("900")
        assert len(line.resources) == 2

    def test_unit_cost_refused_when_resources_exist(self, apu_line, budget_service, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.update_line(apu_line.id, test_actor_id, direct_unit_cost=Decimal("5"))

    def test_quantity_change_scales_resources(self, apu_line, budget_service, test_actor_id):
        line = budget_service.update_line_quantity(apu_line.id, Decimal("10"), test_actor_id)
        assert line.direct_cost_total == Decimal("200")
        assert [r.total_cost for r in line.resources] == [
            Decimal("105"), Decimal("75"), Decimal("20"),
        ]


# ============================================================================
# Imported lines
# ============================================================================


class TestImportedLines:

    @pytest.fixture
    def imported(self, marked_up_version, wbs_items, budget_service, test_actor_id):
        return budget_service.import_line(
            marked_up_version.id, wbs_items["paint"].id, test_actor_id,
            description="Paint (subcontractor quote)", quantity=Decimal("300"),
            direct_cost_total=Decimal("1200"), sale_price_total=Decimal("1800"),
        )

    def test_totals_are_kept(self, imported):
        assert imported.cost_basis is CostBasis.IMPORTED
        assert imported.direct_unit_cost == Decimal("4")
        assert imported.sale_price_total == Decimal("1800")
        assert imported.overhead_amount == 0

    def test_globals_do_not_reprice_imported_lines(
        self, marked_up_version, imported, budget_service, budget_selector, test_actor_id
    ):
        budget_service.set_global_markups(marked_up_version.id, test_actor_id, tax_pct=Decimal("0"))
        assert budget_selector.get_budget_line(imported.id).sale_price_total == Decimal("1800")

    def test_quantity_change_refused(self, imported, budget_service, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.update_line_quantity(imported.id, Decimal("10"), test_actor_id)

    def test_resources_refused(self, imported, budget_service, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.add_resource(
                imported.id, test_actor_id, ResourceType.LABOR, Decimal("1"), Decimal("1")
            )


class TestImportFromVersion:

    def test_lines_are_repriced_under_target_markups(
        self, project, baselined_budget, budget_service, test_actor_id
    ):
        target = budget_service.create_version(project.id, test_actor_id)
        budget_service.set_global_markups(target.id, test_actor_id, tax_pct=Decimal("21"))
        imported = budget_service.import_lines_from_version(
            baselined_budget["version"].id, target.id, test_actor_id,
            line_ids=[baselined_budget["footing"].id],
        )
        assert len(imported) == 1
        assert imported[0].sale_price_total == Decimal("1210")
        assert imported[0].version_id == target.id

    def test_cross_project_refused(self, create_project, baselined_budget, budget_service, test_actor_id):
        other = create_project()
        target = budget_service.create_version(other.id, test_actor_id)
        with pytest.raises(ValidationError):
            budget_service.import_lines_from_version(
                baselined_budget["version"].id, target.id, test_actor_id
            )


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:

    def test_baseline_requires_lines(self, draft_version, budget_service, test_actor_id):
        with pytest.raises(StateTransitionError):
            budget_service.baseline_version(draft_version.id, test_actor_id)

    def test_baseline_stamps_and_publishes(
        self, session, baselined_budget, test_actor_id
    ):
        version = baselined_budget["version"]
        assert version.status is VersionStatus.BASELINE
        assert version.baselined_by_id == test_actor_id
        assert version.baselined_at is not None

        [event] = OutboxSelector(session).list_for_entity("budget_version", version.id)
        assert event.event_type == "budget_version.baselined"
        assert event.payload["line_count"] == 2
        assert Decimal(event.payload["sale_price_total"]) == Decimal("2500")

    def test_baseline_logs(self, draft_version, wbs_items, budget_service, test_actor_id, captured_logs):
        budget_service.add_line(
            draft_version.id, wbs_items["footing"].id, test_actor_id,
            description="Footing", quantity=Decimal("1"), direct_unit_cost=Decimal("1"),
        )
        budget_service.baseline_version(draft_version.id, test_actor_id)
        assert any(r["message"] == "budget_version_baselined" for r in captured_logs())

    def test_cannot_skip_baseline(self, draft_version, wbs_items, budget_service, test_actor_id):
        budget_service.add_line(
            draft_version.id, wbs_items["footing"].id, test_actor_id,
            description="Footing", quantity=Decimal("1"),
        )
        with pytest.raises(StateTransitionError) as exc_info:
            budget_service.approve_version(draft_version.id, test_actor_id)
        assert "skipped" in exc_info.value.reason

    def test_approval_needs_permission(self, baselined_budget, budget_service, estimator_id, captured_logs):
        with pytest.raises(AuthorizationError):
            budget_service.approve_version(baselined_budget["version"].id, estimator_id)
        assert any(r["message"] == "authorization_denied" for r in captured_logs())

    def test_approve(self, baselined_budget, budget_service, test_actor_id):
        approved = budget_service.approve_version(baselined_budget["version"].id, test_actor_id)
        assert approved.status is VersionStatus.APPROVED
        assert approved.approved_by_id == test_actor_id
        assert approved.is_billable
        assert approved.is_locked

    def test_approved_is_terminal(self, baselined_budget, budget_service, test_actor_id):
        version_id = baselined_budget["version"].id
        budget_service.approve_version(version_id, test_actor_id)
        with pytest.raises(StateTransitionError):
            budget_service.transition_version(version_id, "baseline", test_actor_id)

    def test_never_back_to_draft(self, baselined_budget, budget_service, test_actor_id):
        with pytest.raises(ImmutableVersionError):
            budget_service.transition_version(
                baselined_budget["version"].id, VersionStatus.DRAFT, test_actor_id
            )

    def test_status_race_is_detected(
        self, session, draft_version, wbs_items, budget_service, test_actor_id, monkeypatch
    ):
        budget_service.add_line(
            draft_version.id, wbs_items["footing"].id, test_actor_id,
            description="Footing", quantity=Decimal("1"),
        )
        original_lock = budget_service._lock_version

        def lock_then_lose_race(version_id):
            version = original_lock(version_id)
            session.execute(
                update(BudgetVersionModel)
                .where(BudgetVersionModel.id == version_id)
                .values(status="baseline")
                .execution_options(synchronize_session=False)
            )
            return version

        monkeypatch.setattr(budget_service, "_lock_version", lock_then_lose_race)
        with pytest.raises(ConcurrencyConflictError):
            budget_service.baseline_version(draft_version.id, test_actor_id)


class TestLocking:

    def test_service_edits_refused(self, baselined_budget, wbs_items, budget_service, test_actor_id):
        version_id = baselined_budget["version"].id
        with pytest.raises(ImmutableVersionError):
            budget_service.add_line(
                version_id, wbs_items["rebar"].id, test_actor_id,
                description="Rebar", quantity=Decimal("1"),
            )
        with pytest.raises(ImmutableVersionError):
            budget_service.update_line_quantity(
                baselined_budget["footing"].id, Decimal("60"), test_actor_id
            )
        with pytest.raises(ImmutableVersionError):
            budget_service.set_global_markups(version_id, test_actor_id, tax_pct=Decimal("10"))
        with pytest.raises(ImmutableVersionError):
            budget_service.delete_line(baselined_budget["footing"].id, test_actor_id)

    def test_orm_line_update_blocked(self, session, baselined_budget):
        line = session.get(BudgetLineModel, baselined_budget["footing"].id)
        line.quantity = Decimal("60")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_orm_version_update_blocked(self, session, baselined_budget):
        version = session.get(BudgetVersionModel, baselined_budget["version"].id)
        version.global_tax_pct = Decimal("10")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_orm_downgrade_blocked(self, session, baselined_budget):
        version = session.get(BudgetVersionModel, baselined_budget["version"].id)
        version.status = "draft"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


# ============================================================================
# Copies, rollups, baseline pointer
# ============================================================================


class TestCopyAndRollups:

    def test_copy_matches_source_rollup(self, baselined_budget, budget_service, budget_selector, test_actor_id):
        source = baselined_budget["version"]
        copy = budget_service.copy_version(source.id, test_actor_id)
        assert copy.status is VersionStatus.DRAFT
        assert copy.version_code == "V2"
        assert copy.copied_from_version_id == source.id
        baselined = budget_service.baseline_version(copy.id, test_actor_id)
        assert baselined.status is VersionStatus.BASELINE
        assert budget_selector.get_version_rollup(copy.id).totals == (
            budget_selector.get_version_rollup(source.id).totals
        )
        assert budget_selector.get_version(source.id).status is VersionStatus.BASELINE

    def test_version_rollup(self, baselined_budget, budget_selector):
        rollup = budget_selector.get_version_rollup(baselined_budget["version"].id)
        assert rollup.line_count == 2
        assert rollup.totals.direct_cost == Decimal("2500")
        assert rollup.totals.sale == Decimal("2500")

    def test_wbs_rollup(self, baselined_budget, wbs_items, budget_selector):
        rows = budget_selector.get_wbs_rollup(baselined_budget["version"].id)
        by_code = {row.code: row for row in rows}
        assert list(by_code) == ["1", "1.1", "1.1.1", "2", "2.1"]
        assert by_code["1"].totals.sale == Decimal("1000")
        assert by_code["2"].totals.sale == Decimal("1500")
        assert by_code["1.1.1"].depth == 3

    def test_wbs_rollup_with_empty_nodes(self, baselined_budget, budget_selector):
        rows = budget_selector.get_wbs_rollup(baselined_budget["version"].id, include_empty=True)
        rebar = next(row for row in rows if row.code == "1.1.2")
        assert rebar.line_count == 0
        assert rebar.totals.sale == 0

    def test_baseline_pointer(self, session, project, baselined_budget, budget_service, test_actor_id):
        version_id = baselined_budget["version"].id
        budget_service.set_baseline_pointer(project.id, version_id, test_actor_id)
        budget_service.set_baseline_pointer(project.id, version_id, test_actor_id)
        assert session.get(Project, project.id).baseline_version_id == version_id

    def test_draft_cannot_be_the_baseline(self, project, draft_version, budget_service, test_actor_id):
        with pytest.raises(StateTransitionError):
            budget_service.set_baseline_pointer(project.id, draft_version.id, test_actor_id)
