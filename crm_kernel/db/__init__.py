"""Database layer - engine, base classes and rounding."""

from crm_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from crm_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from crm_kernel.db.types import round_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "round_money",
]
