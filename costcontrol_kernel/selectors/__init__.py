"""Kernel selectors (read side)."""

from costcontrol_kernel.selectors.base import BaseSelector
from costcontrol_kernel.selectors.outbox_selector import OutboxEventDTO, OutboxSelector

__all__ = ["BaseSelector", "OutboxEventDTO", "OutboxSelector"]
