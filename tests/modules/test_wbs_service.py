"""
Tests for WBS authoring: codes, category rules, depth, moves, deactivation
and guarded deletion.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from costcontrol_engines.wbs_tree import WbsCategory
from costcontrol_kernel.exceptions import (
    NotFoundError,
    ValidationError,
    WbsNodeReferencedError,
)
from costcontrol_modules.wbs.orm import WbsNodeModel
from costcontrol_modules.wbs.service import WbsService


class TestCreateNode:

    def test_codes_follow_the_tree(self, wbs_items):
        assert wbs_items["structure"].code == "1"
        assert wbs_items["foundations"].code == "1.1"
        assert wbs_items["footing"].code == "1.1.1"
        assert wbs_items["rebar"].code == "1.1.2"
        assert wbs_items["finishes"].code == "2"
        assert wbs_items["paint"].code == "2.1"

    def test_budget_item_carries_unit_and_quantity(self, wbs_items):
        footing = wbs_items["footing"]
        assert footing.is_budget_item
        assert footing.unit == "m3"
        assert footing.quantity == Decimal("50")

    def test_budget_item_cannot_be_root(self, project, wbs_service, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            wbs_service.create_node(project.id, "Loose item", WbsCategory.BUDGET_ITEM, test_actor_id)
        assert exc_info.value.field == "category"

    def test_budget_item_has_no_children(self, project, wbs_items, wbs_service, test_actor_id):
        with pytest.raises(ValidationError):
            wbs_service.create_node(
                project.id, "Sub item", WbsCategory.TASK, test_actor_id,
                parent_id=wbs_items["footing"].id,
            )

    def test_unknown_category(self, project, wbs_service, test_actor_id):
        with pytest.raises(ValidationError):
            wbs_service.create_node(project.id, "X", "milestone", test_actor_id)

    def test_negative_quantity(self, project, wbs_items, wbs_service, test_actor_id):
        with pytest.raises(ValidationError):
            wbs_service.create_node(
                project.id, "Bad", WbsCategory.BUDGET_ITEM, test_actor_id,
                parent_id=wbs_items["foundations"].id, quantity=Decimal("-1"),
            )

    def test_unknown_parent(self, project, wbs_service, test_actor_id):
        with pytest.raises(NotFoundError):
            wbs_service.create_node(
                project.id, "Orphan", WbsCategory.TASK, test_actor_id, parent_id=uuid4()
            )

    def test_parent_from_other_project(self, create_project, wbs_items, wbs_service, test_actor_id):
        other = create_project()
        with pytest.raises(ValidationError):
            wbs_service.create_node(
                other.id, "Cross", WbsCategory.TASK, test_actor_id,
                parent_id=wbs_items["structure"].id,
            )

    def test_max_depth(self, session, project, config, test_actor_id):
        service = WbsService(session, config=replace(config, wbs_max_depth=2))
        root = service.create_node(project.id, "Phase", WbsCategory.PHASE, test_actor_id)
        task = service.create_node(project.id, "Task", WbsCategory.TASK, test_actor_id, parent_id=root.id)
        with pytest.raises(ValidationError):
            service.create_node(
                project.id, "Too deep", WbsCategory.BUDGET_ITEM, test_actor_id, parent_id=task.id
            )

    def test_codes_are_not_reused_after_deactivation(
        self, project, wbs_items, wbs_service, test_actor_id
    ):
        wbs_service.deactivate_node(wbs_items["rebar"].id, test_actor_id)
        formwork = wbs_service.create_node(
            project.id, "Formwork", WbsCategory.BUDGET_ITEM, test_actor_id,
            parent_id=wbs_items["foundations"].id,
        )
        assert formwork.code == "1.1.3"


class TestMoveNode:

    def test_move_recodes_subtree(self, wbs_items, wbs_service, wbs_selector, test_actor_id):
        moved = wbs_service.move_node(
            wbs_items["foundations"].id, wbs_items["finishes"].id, test_actor_id
        )
        assert moved.code == "2.2"
        assert wbs_selector.get_node(wbs_items["footing"].id).code == "2.2.1"
        assert wbs_selector.get_node(wbs_items["rebar"].id).code == "2.2.2"

    def test_move_into_own_subtree_rejected(self, wbs_items, wbs_service, test_actor_id):
        with pytest.raises(ValidationError):
            wbs_service.move_node(
                wbs_items["structure"].id, wbs_items["foundations"].id, test_actor_id
            )

    def test_move_respects_categories(self, wbs_items, wbs_service, test_actor_id):
        with pytest.raises(ValidationError):
            wbs_service.move_node(wbs_items["footing"].id, None, test_actor_id)

    def test_move_to_same_parent_is_noop(self, wbs_items, wbs_service, test_actor_id):
        same = wbs_service.move_node(
            wbs_items["footing"].id, wbs_items["foundations"].id, test_actor_id
        )
        assert same.code == "1.1.1"


class TestTreeViews:

    def test_list_tree(self, project, wbs_items, wbs_selector):
        roots = wbs_selector.list_tree(project.id)
        assert [r.node.code for r in roots] == ["1", "2"]
        foundations = roots[0].children[0]
        assert foundations.depth == 2
        assert [c.node.code for c in foundations.children] == ["1.1.1", "1.1.2"]

    def test_reorder_changes_sibling_order_not_codes(
        self, project, wbs_items, wbs_service, wbs_selector, test_actor_id
    ):
        wbs_service.reorder_node(wbs_items["finishes"].id, 0, test_actor_id)
        roots = wbs_selector.list_tree(project.id)
        assert [r.node.code for r in roots] == ["2", "1"]

    def test_deactivate_cascades(self, project, wbs_items, wbs_service, wbs_selector, test_actor_id):
        count = wbs_service.deactivate_node(wbs_items["structure"].id, test_actor_id)
        assert count == 4
        assert [n.code for n in wbs_selector.list_nodes(project.id)] == ["2", "2.1"]
        assert len(wbs_selector.list_nodes(project.id, include_inactive=True)) == 6

    def test_budget_item_ids(self, project, wbs_items, wbs_selector):
        assert wbs_selector.budget_item_ids(project.id) == [
            wbs_items["footing"].id, wbs_items["rebar"].id, wbs_items["paint"].id,
        ]

    def test_update_node(self, wbs_items, wbs_service, test_actor_id):
        updated = wbs_service.update_node(
            wbs_items["footing"].id, test_actor_id, name="Footing C30", quantity=Decimal("55")
        )
        assert updated.name == "Footing C30"
        assert updated.quantity == Decimal("55")
        assert updated.code == "1.1.1"


class TestDeleteNode:

    def test_unreferenced_subtree_is_deleted(self, project, wbs_items, wbs_service, wbs_selector, test_actor_id):
        deleted = wbs_service.delete_node(wbs_items["foundations"].id, test_actor_id)
        assert deleted == 3
        assert [n.code for n in wbs_selector.list_nodes(project.id)] == ["1", "2", "2.1"]

    def test_referenced_subtree_is_refused(
        self, wbs_items, wbs_service, wbs_selector, draft_version, budget_service, test_actor_id
    ):
        budget_service.add_line(
            draft_version.id, wbs_items["footing"].id, test_actor_id,
            description="Footing", quantity=Decimal("1"), direct_unit_cost=Decimal("1"),
        )
        with pytest.raises(WbsNodeReferencedError) as exc_info:
            wbs_service.delete_node(wbs_items["structure"].id, test_actor_id)
        assert exc_info.value.line_count == 1
        assert wbs_selector.get_node(wbs_items["structure"].id).is_active

    def test_flush_level_guard(
        self, session, wbs_items, draft_version, budget_service, test_actor_id
    ):
        budget_service.add_line(
            draft_version.id, wbs_items["paint"].id, test_actor_id,
            description="Paint", quantity=Decimal("1"), direct_unit_cost=Decimal("1"),
        )
        session.delete(session.get(WbsNodeModel, wbs_items["paint"].id))
        with pytest.raises(WbsNodeReferencedError):
            session.flush()
        session.rollback()
