"""
Typed Exception Hierarchy for the Cost-Control Core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (UI, reporting, import jobs) decide user-facing behavior from the
TYPE and CODE of an error, never from its message text:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        service.add_line(...)
    except Exception as e:
        if "locked" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way:
    try:
        service.add_line(...)
    except ImmutableVersionError as e:
        api_response(code=e.code, version=e.entity_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CostControlError (base)
    |
    +-- ValidationError
    +-- NotFoundError
    +-- ImmutabilityError
    |   +-- ImmutableVersionError
    |   +-- ImmutableCertificationError
    |   +-- ImmutabilityViolationError
    |   +-- WbsNodeReferencedError
    +-- StateTransitionError
    +-- AuthorizationError
    +-- ConcurrencyConflictError
    +-- IntegrityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                      | When Raised
--------------------------|---------------------------------------------------
VALIDATION_ERROR          | Bad input: pct out of [0,100], negative quantity,
                          | progress over 100%, wrong WBS category
NOT_FOUND                 | Referenced entity does not exist
IMMUTABLE_VERSION         | Editing lines/resources of a non-DRAFT version,
                          | or downgrading a version to DRAFT
IMMUTABLE_CERTIFICATION   | Editing a non-DRAFT certification or its lines
IMMUTABILITY_VIOLATION    | ORM listener blocked a write to a frozen row
WBS_NODE_REFERENCED       | Hard delete of a WBS node used by budget lines
INVALID_STATE_TRANSITION  | Transition not in the workflow, guard failed,
                          | billing against a DRAFT version
NOT_AUTHORIZED            | Access policy denied an approval/rejection
CONCURRENCY_CONFLICT      | Lost a race on version status or numbering
SEAL_MISMATCH             | Re-verification of an issued certification failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConcurrencyConflictError: retry the WHOLE operation from a fresh read.
   The core never retries on its own.

2. IntegrityError: fatal for that certification.  Report it; never
   re-seal or auto-correct the stored amounts.

3. ImmutabilityError subclasses can be caught as a group:

    except ImmutabilityError as e:
        return {"error": e.code, "entity": e.entity_id}

NOTE: ``IntegrityError`` here is the seal-verification error.  Code that
also handles SQLAlchemy's constraint errors imports those as
``sqlalchemy.exc.IntegrityError as DBIntegrityError``.
"""

from __future__ import annotations

from typing import Any


class CostControlError(Exception):
    """
    Base exception for all cost-control errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COST_CONTROL_ERROR"


# Validation


class ValidationError(CostControlError):
    """Input rejected; the offending field is carried in ``field``."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class NotFoundError(CostControlError):
    """Entity with the given ID was not found."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Immutability


class ImmutabilityError(CostControlError):
    """Base exception for writes against locked records."""

    code: str = "IMMUTABILITY_ERROR"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id} is immutable: {reason}")


class ImmutableVersionError(ImmutabilityError):
    """Budget version (or one of its lines/resources) is locked."""

    code: str = "IMMUTABLE_VERSION"

    def __init__(self, version_id: str, status: str, reason: str | None = None):
        self.status = status
        super().__init__(
            "BudgetVersion",
            version_id,
            reason or f"version is {status}; only draft versions can be edited",
        )


class ImmutableCertificationError(ImmutabilityError):
    """Certification is no longer DRAFT."""

    code: str = "IMMUTABLE_CERTIFICATION"

    def __init__(self, certification_id: str, status: str):
        self.status = status
        super().__init__(
            "Certification",
            certification_id,
            f"certification is {status}; only draft certifications can be edited",
        )


class ImmutabilityViolationError(ImmutabilityError):
    """
    An ORM-level write to a frozen row was blocked.

    Raised by the listeners in ``costcontrol_kernel.db.immutability``; the
    services normally reject the operation earlier with a more specific
    subclass.
    """

    code: str = "IMMUTABILITY_VIOLATION"


class WbsNodeReferencedError(ImmutabilityError):
    """WBS node (or a descendant) is referenced by budget lines."""

    code: str = "WBS_NODE_REFERENCED"

    def __init__(self, node_id: str, line_count: int):
        self.line_count = line_count
        super().__init__(
            "WbsNode",
            node_id,
            f"referenced by {line_count} budget line(s); deactivate instead",
        )


# State machine


class StateTransitionError(CostControlError):
    """Transition is not allowed from the current state."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        attempted_state: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.reason = reason
        message = (
            f"Cannot move {entity_type} {entity_id} "
            f"from {current_state} to {attempted_state}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class AuthorizationError(CostControlError):
    """Access policy denied the action to the actor."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"Actor {actor_id} is not authorized for {action}")


# Concurrency


class ConcurrencyConflictError(CostControlError):
    """Another transaction changed the row first; retry from a fresh read."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, detail: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        message = f"Concurrent modification of {entity_type} {entity_id}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# Integrity


class IntegrityError(CostControlError):
    """Stored certification data no longer matches its integrity seal."""

    code: str = "SEAL_MISMATCH"

    def __init__(self, certification_id: str, expected_seal: str, actual_seal: str):
        self.certification_id = certification_id
        self.expected_seal = expected_seal
        self.actual_seal = actual_seal
        super().__init__(
            f"Integrity seal mismatch on certification {certification_id}: "
            f"stored {expected_seal}, recomputed {actual_seal}"
        )
