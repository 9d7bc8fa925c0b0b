"""
OutboxPublisher -- the core's event sink.

Responsibility:
    Writes one PENDING ``OutboxEvent`` row per domain event inside the
    caller's open transaction.  If the state change rolls back, the event
    row rolls back with it; if it commits, a separate relay (outside this
    package) picks the row up and delivers it.  Nothing is ever sent to a
    message bus from here.

Architecture position:
    Kernel > Services.  Called by module services right after the state
    change it describes has been flushed.

Event types emitted by the core:
    budget_version.baselined, budget_version.approved,
    certification.issued, certification.approved, certification.rejected
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from costcontrol_kernel.domain.clock import Clock, SystemClock
from costcontrol_kernel.domain.identity import IdGenerator, UUID4Generator
from costcontrol_kernel.logging_config import get_logger
from costcontrol_kernel.models.outbox import OutboxEvent, OutboxStatus
from costcontrol_kernel.services.base import BaseService
from costcontrol_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.outbox")


class OutboxPublisher(BaseService[OutboxEvent]):
    """
    Records outbox rows in the caller's transaction.

    Guarantees:
        - The payload is stored as plain JSON (Decimals as normalized
          strings, UUIDs as strings) with its SHA-256 hash.
        - flush only; never commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._ids = id_generator or UUID4Generator()

    def publish(
        self,
        event_type: str,
        entity_type: str,
        entity_id: UUID,
        payload: dict[str, Any],
        project_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> OutboxEvent:
        """Append a PENDING event row and flush it."""
        safe_payload = to_json_safe(payload)
        event = OutboxEvent(
            id=self._ids.new_id(),
            project_id=project_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=safe_payload,
            payload_hash=hash_payload(safe_payload),
            status=OutboxStatus.PENDING.value,
            occurred_at=self._clock.now(),
            attempts=0,
            actor_id=actor_id,
        )
        self.session.add(event)
        self.session.flush()
        logger.info(
            "outbox_event_recorded",
            extra={
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "outbox_event_id": str(event.id),
            },
        )
        return event
