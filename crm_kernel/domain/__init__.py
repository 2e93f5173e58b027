"""
Pure domain layer.

Value helpers and state machine definitions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O
"""

from crm_kernel.domain.values import (
    normalize_percent,
    safe_divide,
    to_decimal,
)
from crm_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Guard",
    "Transition",
    "Workflow",
    "normalize_percent",
    "safe_divide",
    "to_decimal",
]
