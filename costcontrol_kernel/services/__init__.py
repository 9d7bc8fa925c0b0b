"""Kernel services (write side, flush only)."""

from costcontrol_kernel.services.outbox_service import OutboxPublisher
from costcontrol_kernel.services.project_service import ProjectService
from costcontrol_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["OutboxPublisher", "ProjectService", "SequenceCounter", "SequenceService"]
