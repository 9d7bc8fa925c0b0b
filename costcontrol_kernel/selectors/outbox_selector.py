"""
OutboxSelector -- read side of the outbox for relays and audits.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from costcontrol_kernel.models.outbox import OutboxEvent, OutboxStatus
from costcontrol_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OutboxEventDTO:
    id: UUID
    project_id: UUID | None
    event_type: str
    entity_type: str
    entity_id: UUID
    payload: dict[str, Any]
    payload_hash: str
    status: str
    occurred_at: datetime


class OutboxSelector(BaseSelector):
    """Query pending and historical outbox rows."""

    def list_pending(self, limit: int = 100) -> list[OutboxEventDTO]:
        """Oldest PENDING events first."""
        rows = self.session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == OutboxStatus.PENDING.value)
            .order_by(OutboxEvent.occurred_at, OutboxEvent.id)
            .limit(limit)
        ).scalars()
        return [self._to_dto(row) for row in rows]

    def list_for_entity(self, entity_type: str, entity_id: UUID) -> list[OutboxEventDTO]:
        rows = self.session.execute(
            select(OutboxEvent)
            .where(
                OutboxEvent.entity_type == entity_type,
                OutboxEvent.entity_id == entity_id,
            )
            .order_by(OutboxEvent.occurred_at, OutboxEvent.id)
        ).scalars()
        return [self._to_dto(row) for row in rows]

    @staticmethod
    def _to_dto(row: OutboxEvent) -> OutboxEventDTO:
        return OutboxEventDTO(
            id=row.id,
            project_id=row.project_id,
            event_type=row.event_type,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            payload=dict(row.payload),
            payload_hash=row.payload_hash,
            status=row.status,
            occurred_at=row.occurred_at,
        )
