"""
CRM Kernel - Opportunity Revenue Engine infrastructure

Shared building blocks for the commission CRM revenue engine:
- Declarative ORM base with UUID keys and audit timestamps
- Transactional session scope
- Fixed-point money and percent utilities
- Locked monotonic sequences
- Typed exceptions and structured logging
"""

__version__ = "0.1.0"
