"""
ORM-Level Immutability Enforcement.

===============================================================================
WHAT THIS PROTECTS
===============================================================================

Budgets that have been baselined are the contractual reference for billing,
and issued certifications are sealed documents.  Neither may change through
the ORM once locked.  The services already refuse such edits with specific
errors (``ImmutableVersionError``, ``ImmutableCertificationError``); these
listeners are the backstop for any code path that reaches the session
directly.

    session.flush()
         |
         v
    [before_flush]  --> WBS node deletions ----------> WbsNodeReferencedError
         |
         v
    [before_insert / before_update / before_delete]
         |          --> _check_*() ------------------> ImmutabilityViolationError
         v
    SQL sent to database (only if checks pass)

Bulk ``UPDATE`` statements bypass mapper events.  The budget version
compare-and-swap uses one on purpose; tests use one to simulate tampering
that the certification seal must then detect.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When immutable
------------------------|------------------------------------------------------
BudgetVersionModel      | Status left DRAFT (audit fields excepted)
BudgetLineModel         | Parent version not DRAFT (insert, update, delete)
BudgetResourceModel     | Version of its line not DRAFT (insert, update, delete)
CertificationModel      | ISSUED: only the decision fields may change
                        | APPROVED / REJECTED: nothing
CertificationLineModel  | Parent certification not DRAFT
OutboxEvent             | Event content always; delivery fields stay mutable
WbsNodeModel (delete)   | While any budget line references the node

Parent status is read through the flush connection, not the identity map,
so a stale in-memory parent cannot open a hole.

===============================================================================
USAGE
===============================================================================

    from costcontrol_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to tamper with rows call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from costcontrol_kernel.exceptions import ImmutabilityViolationError
from costcontrol_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Fields an ISSUED certification may still receive when it is decided
CERTIFICATION_DECISION_FIELDS = frozenset(
    {"status", "approved_by_id", "decided_at", "notes"}
) | AUDIT_FIELDS

OUTBOX_CONTENT_FIELDS = frozenset(
    {"event_type", "entity_type", "entity_id", "project_id", "payload", "payload_hash",
     "occurred_at", "actor_id"}
)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    extra = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "operation": operation,
        "reason": reason,
    }
    if field is not None:
        extra["field"] = field
    logger.error("immutability_violation_blocked", extra=extra)
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    """Column attributes with pending changes.  Relationships are ignored."""
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if insp.attrs[attr.key].history.has_changes()
    ]


def _previous_status(target) -> str:
    """Status as it was before this flush."""
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


# =============================================================================
# Budget versions, lines and resources
# =============================================================================


def _version_status(connection, version_id) -> str | None:
    from costcontrol_modules.budget.orm import BudgetVersionModel

    table = BudgetVersionModel.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == version_id)
    ).scalar_one_or_none()


def _version_status_of_line(connection, line_id) -> str | None:
    from costcontrol_modules.budget.orm import BudgetLineModel, BudgetVersionModel

    lines = BudgetLineModel.__table__
    versions = BudgetVersionModel.__table__
    return connection.execute(
        select(versions.c.status)
        .join(lines, lines.c.version_id == versions.c.id)
        .where(lines.c.id == line_id)
    ).scalar_one_or_none()


def _check_budget_version_update(mapper, connection, target):
    """
    Block edits to a version once it has left DRAFT.

    The DRAFT -> BASELINE transition itself is allowed; anything after it,
    including a move back to DRAFT, is not.
    """
    previous = _previous_status(target)
    if previous == "draft":
        return
    for key in _changed_columns(target):
        if key in AUDIT_FIELDS:
            continue
        _blocked(
            "BudgetVersion", target.id, "UPDATE",
            f"Cannot modify field '{key}' on a {previous} budget version",
            field=key,
        )


def _check_budget_version_delete(mapper, connection, target):
    status = _version_status(connection, target.id)
    if status is not None and status != "draft":
        _blocked("BudgetVersion", target.id, "DELETE", f"{status} budget versions cannot be deleted")


def _check_budget_line_write(operation: str):
    def _check(mapper, connection, target):
        version_ids = {target.version_id}
        if operation == "UPDATE":
            # Moving a line out of a locked version is a write to that version
            version_ids.update(get_history(target, "version_id").deleted)
        for version_id in version_ids:
            status = _version_status(connection, version_id)
            if status is not None and status != "draft":
                _blocked(
                    "BudgetLine", target.id, operation,
                    f"Budget lines cannot change once the version is {status}",
                )

    _check.__name__ = f"_check_budget_line_{operation.lower()}"
    return _check


def _check_budget_resource_write(operation: str):
    def _check(mapper, connection, target):
        status = _version_status_of_line(connection, target.line_id)
        if status is not None and status != "draft":
            _blocked(
                "BudgetResource", target.id, operation,
                f"APU resources cannot change once the version is {status}",
            )

    _check.__name__ = f"_check_budget_resource_{operation.lower()}"
    return _check


_check_budget_line_insert = _check_budget_line_write("INSERT")
_check_budget_line_update = _check_budget_line_write("UPDATE")
_check_budget_line_delete = _check_budget_line_write("DELETE")
_check_budget_resource_insert = _check_budget_resource_write("INSERT")
_check_budget_resource_update = _check_budget_resource_write("UPDATE")
_check_budget_resource_delete = _check_budget_resource_write("DELETE")


# =============================================================================
# Certifications
# =============================================================================


def _certification_status(connection, certification_id) -> str | None:
    from costcontrol_modules.certification.orm import CertificationModel

    table = CertificationModel.__table__
    return connection.execute(
        select(table.c.status).where(table.c.id == certification_id)
    ).scalar_one_or_none()


def _check_certification_update(mapper, connection, target):
    """
    Freeze issued certifications.

    ISSUED may move to APPROVED or REJECTED and record who decided and
    when.  APPROVED and REJECTED are final.
    """
    previous = _previous_status(target)
    if previous == "draft":
        return
    allowed = CERTIFICATION_DECISION_FIELDS if previous == "issued" else AUDIT_FIELDS
    for key in _changed_columns(target):
        if key not in allowed:
            _blocked(
                "Certification", target.id, "UPDATE",
                f"Cannot modify field '{key}' on a {previous} certification",
                field=key,
            )
    if previous == "issued" and target.status not in ("issued", "approved", "rejected"):
        _blocked(
            "Certification", target.id, "UPDATE",
            f"An issued certification cannot move to {target.status}",
            field="status",
        )


def _check_certification_delete(mapper, connection, target):
    status = _certification_status(connection, target.id)
    if status is not None and status != "draft":
        _blocked("Certification", target.id, "DELETE", f"{status} certifications cannot be deleted")


def _check_certification_line_write(operation: str):
    def _check(mapper, connection, target):
        status = _certification_status(connection, target.certification_id)
        if status is not None and status != "draft":
            _blocked(
                "CertificationLine", target.id, operation,
                f"Certification lines cannot change once the certification is {status}",
            )

    _check.__name__ = f"_check_certification_line_{operation.lower()}"
    return _check


_check_certification_line_insert = _check_certification_line_write("INSERT")
_check_certification_line_update = _check_certification_line_write("UPDATE")
_check_certification_line_delete = _check_certification_line_write("DELETE")


# =============================================================================
# Outbox
# =============================================================================


def _check_outbox_event_update(mapper, connection, target):
    """Event content is fixed at publish time; delivery state is not."""
    for key in _changed_columns(target):
        if key in OUTBOX_CONTENT_FIELDS:
            _blocked(
                "OutboxEvent", target.id, "UPDATE",
                f"Cannot modify field '{key}' of a published event",
                field=key,
            )


# =============================================================================
# WBS node deletion
# =============================================================================


def _check_wbs_node_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete WBS nodes that budget lines point at.

    Runs in ``before_flush`` so the deletion is rejected before the flush
    plan is built.
    """
    from costcontrol_kernel.exceptions import WbsNodeReferencedError
    from costcontrol_modules.budget.orm import BudgetLineModel
    from costcontrol_modules.wbs.orm import WbsNodeModel

    for obj in list(session.deleted):
        if not isinstance(obj, WbsNodeModel):
            continue
        with session.no_autoflush:
            count = session.execute(
                select(func.count())
                .select_from(BudgetLineModel)
                .where(BudgetLineModel.wbs_node_id == obj.id)
            ).scalar_one()
        if count:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "WbsNode",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "wbs_node_has_budget_lines",
                },
            )
            raise WbsNodeReferencedError(node_id=str(obj.id), line_count=count)


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from costcontrol_kernel.models.outbox import OutboxEvent
    from costcontrol_modules.budget.orm import (
        BudgetLineModel,
        BudgetResourceModel,
        BudgetVersionModel,
    )
    from costcontrol_modules.certification.orm import (
        CertificationLineModel,
        CertificationModel,
    )

    return (
        (BudgetVersionModel, "before_update", _check_budget_version_update),
        (BudgetVersionModel, "before_delete", _check_budget_version_delete),
        (BudgetLineModel, "before_insert", _check_budget_line_insert),
        (BudgetLineModel, "before_update", _check_budget_line_update),
        (BudgetLineModel, "before_delete", _check_budget_line_delete),
        (BudgetResourceModel, "before_insert", _check_budget_resource_insert),
        (BudgetResourceModel, "before_update", _check_budget_resource_update),
        (BudgetResourceModel, "before_delete", _check_budget_resource_delete),
        (CertificationModel, "before_update", _check_certification_update),
        (CertificationModel, "before_delete", _check_certification_delete),
        (CertificationLineModel, "before_insert", _check_certification_line_insert),
        (CertificationLineModel, "before_update", _check_certification_line_update),
        (CertificationLineModel, "before_delete", _check_certification_line_delete),
        (OutboxEvent, "before_update", _check_outbox_event_update),
    )


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    if not event.contains(Session, "before_flush", _check_wbs_node_deletion_before_flush):
        event.listen(Session, "before_flush", _check_wbs_node_deletion_before_flush)
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: only for tests that must write a frozen row to prove the
    seal or the services catch it.
    """
    _safe_remove_listener(Session, "before_flush", _check_wbs_node_deletion_before_flush)
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
