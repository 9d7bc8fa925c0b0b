"""Kernel-owned persistence models."""

from costcontrol_kernel.models.outbox import OutboxEvent, OutboxStatus
from costcontrol_kernel.models.project import Project

__all__ = ["OutboxEvent", "OutboxStatus", "Project"]
