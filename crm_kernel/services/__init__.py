"""Services for the CRM kernel (write side)."""

from crm_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "SequenceCounter",
    "SequenceService",
]
