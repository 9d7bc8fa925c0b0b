"""
OutboxEvent -- domain events recorded in the same transaction as the change.

Responsibility:
    Persists ``{event_type, entity_type, entity_id, payload}`` rows for a
    separate relay to deliver.  The core only ever INSERTs PENDING rows;
    status/published_at/attempts are the relay's to update.

Invariants enforced:
    - payload and payload_hash never change after insert (the ORM listener
      in db/immutability.py blocks it).
    - payload_hash = sha256(canonical JSON of payload).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from costcontrol_kernel.db.base import Base


class OutboxStatus(str, Enum):
    """Delivery state of an outbox row."""

    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


class OutboxEvent(Base):
    """A pending or delivered domain event."""

    __tablename__ = "outbox_events"

    __table_args__ = (
        Index("idx_outbox_status_occurred", "status", "occurred_at"),
        Index("idx_outbox_entity", "entity_type", "entity_id"),
    )

    project_id: Mapped[UUID | None] = mapped_column(nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID]
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutboxStatus.PENDING.value
    )
    occurred_at: Mapped[datetime]
    published_at: Mapped[datetime | None] = mapped_column(nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.event_type} {self.entity_type}:{self.entity_id}>"
