"""Database layer - engine, base classes, types, and immutability listeners."""

from costcontrol_kernel.db.base import (
    STORAGE_DECIMAL_PLACES,
    UUID,
    Base,
    FixedDecimal,
    TrackedBase,
    UUIDString,
)
from costcontrol_kernel.db.engine import create_tables, get_engine, get_session
from costcontrol_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from costcontrol_kernel.db.types import as_decimal, round_money, to_storage

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
    "Base",
    "TrackedBase",
    "UUIDString",
    "FixedDecimal",
    "UUID",
    "STORAGE_DECIMAL_PLACES",
    "as_decimal",
    "round_money",
    "to_storage",
]
