"""
Module ORM Registry (``crm_modules._orm_registry``).

Ensures every SQLAlchemy ORM model is imported so that ``Base.metadata``
holds the full schema before ``create_tables()`` runs.  Kernel tables are
registered first because module tables may reference them.

MUST NOT be imported at module level by ``crm_kernel``; the kernel pulls it
in lazily from ``crm_kernel.db.engine.create_tables``.
"""


def import_all_orm_models() -> None:
    """Import kernel and module ORM models.  Idempotent."""
    import crm_kernel.services.sequence_service  # noqa: F401
    import crm_modules.opportunity.orm  # noqa: F401
