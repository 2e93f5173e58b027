"""
CRM Modules.

Domain modules built on the CRM kernel.  Each module contains:
- Domain models (frozen DTOs and enums)
- ORM persistence models
- Workflows (state machines and gate policy)
- Configuration schema
- Services that own their transaction boundaries

Modules:
- Opportunity: opportunities, line items, revenue schedules, splits
"""

from crm_modules import opportunity

__all__ = ["opportunity"]
