"""
Tests for the ORM-level immutability listeners.

These write straight through the session, bypassing the services, to
prove frozen rows stay frozen whatever code path touches them.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from costcontrol_kernel.db import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from costcontrol_kernel.exceptions import ImmutabilityViolationError
from costcontrol_kernel.models.outbox import OutboxEvent, OutboxStatus
from costcontrol_modules.budget.orm import (
    BudgetLineModel,
    BudgetResourceModel,
    BudgetVersionModel,
)


@pytest.fixture
def baseline_event(session, baselined_budget):
    return session.execute(
        select(OutboxEvent).where(OutboxEvent.entity_id == baselined_budget["version"].id)
    ).scalar_one()


class TestBudgetVersions:

    def test_draft_rows_are_writable(self, session, draft_version):
        version = session.get(BudgetVersionModel, draft_version.id)
        version.notes = "still drafting"
        session.flush()

    def test_audit_fields_may_change(self, session, baselined_budget, test_actor_id):
        version = session.get(BudgetVersionModel, baselined_budget["version"].id)
        version.updated_by_id = test_actor_id
        session.flush()

    def test_baselined_version_cannot_be_deleted(self, session, baselined_budget):
        session.delete(session.get(BudgetVersionModel, baselined_budget["version"].id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_violation_is_logged(self, session, baselined_budget, captured_logs):
        version = session.get(BudgetVersionModel, baselined_budget["version"].id)
        version.notes = "late change"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
        [record] = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert record["entity_type"] == "BudgetVersion"
        assert record["field"] == "notes"


class TestBudgetLines:

    def test_line_cannot_move_into_a_frozen_version(
        self, session, project, wbs_items, baselined_budget, budget_service, test_actor_id
    ):
        draft = budget_service.create_version(project.id, test_actor_id)
        line = budget_service.add_line(
            draft.id, wbs_items["rebar"].id, test_actor_id,
            description="Rebar", quantity=Decimal("1"),
        )
        row = session.get(BudgetLineModel, line.id)
        row.version_id = baselined_budget["version"].id
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_resource_cannot_be_added_to_a_frozen_line(
        self, session, baselined_budget, test_actor_id
    ):
        session.add(BudgetResourceModel(
            line_id=baselined_budget["footing"].id,
            resource_type="labor",
            description="Extra crew",
            quantity_per_unit=Decimal("1"),
            unit_cost=Decimal("1"),
            total_cost=Decimal("50"),
            sort_order=0,
            created_by_id=test_actor_id,
        ))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestOutbox:

    def test_delivery_state_may_change(self, session, baseline_event):
        baseline_event.status = OutboxStatus.PUBLISHED.value
        baseline_event.attempts = 1
        session.flush()

    def test_content_is_fixed(self, session, baseline_event):
        baseline_event.payload = {"forged": True}
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestRegistration:

    def test_registration_is_idempotent(self, session, baselined_budget):
        register_immutability_listeners()
        register_immutability_listeners()
        line = session.get(BudgetLineModel, baselined_budget["footing"].id)
        line.description = "changed"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_unregistered_listeners_allow_writes(self, session, baselined_budget):
        unregister_immutability_listeners()
        try:
            line = session.get(BudgetLineModel, baselined_budget["footing"].id)
            line.description = "changed"
            session.flush()
        finally:
            register_immutability_listeners()
        session.rollback()
