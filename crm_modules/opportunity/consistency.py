"""
Module: crm_modules.opportunity.consistency
Responsibility:
    Enforces the single vendor/distributor pair per opportunity.  Every
    line item on an opportunity must resolve to the same
    ``(distributor_account_id, vendor_account_id)`` pair.

Architecture:
    crm_modules layer -- reads line items through the caller's Session.
    Does not lock; OpportunityService locks the opportunity row before
    calling so concurrent writers cannot both pass against a stale read.

Invariants:
    - Items whose pair is entirely empty set no precedent.
    - The first line item (creation order) with a non-empty pair is the
      canonical pair.
    - The same pair is accepted any number of times.

Failure modes:
    - VendorDistributorMismatchError when the candidate differs from the
      canonical pair.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_kernel.exceptions import VendorDistributorMismatchError
from crm_kernel.logging_config import get_logger
from crm_modules.opportunity.models import VendorDistributorPair
from crm_modules.opportunity.orm import LineItemModel

logger = get_logger("modules.opportunity.consistency")


class ConsistencyEnforcer:
    """Checks candidate pairs against an opportunity's existing line items."""

    def __init__(self, session: Session, tenant_id: UUID):
        self._session = session
        self._tenant_id = tenant_id

    def canonical_pair(
        self,
        opportunity_id: UUID,
        exclude_line_item_id: UUID | None = None,
    ) -> tuple[UUID, VendorDistributorPair] | None:
        """(line item id, pair) of the first item that sets a precedent."""
        stmt = (
            select(
                LineItemModel.id,
                LineItemModel.distributor_account_id,
                LineItemModel.vendor_account_id,
            )
            .where(
                LineItemModel.opportunity_id == opportunity_id,
                LineItemModel.tenant_id == self._tenant_id,
            )
            .order_by(LineItemModel.created_at, LineItemModel.id)
        )
        if exclude_line_item_id is not None:
            stmt = stmt.where(LineItemModel.id != exclude_line_item_id)

        for line_item_id, distributor_id, vendor_id in self._session.execute(stmt):
            pair = VendorDistributorPair(distributor_id, vendor_id)
            if not pair.is_empty:
                return line_item_id, pair
        return None

    def assert_consistent(
        self,
        opportunity_id: UUID,
        candidate: VendorDistributorPair,
        exclude_line_item_id: UUID | None = None,
    ) -> None:
        """
        Reject a candidate pair that differs from the opportunity's pair.

        Preconditions:
            - For updates, ``exclude_line_item_id`` is the item being
              changed so its own current pair is ignored.

        Raises:
            VendorDistributorMismatchError: carries the existing pair, the
                candidate pair and the line item that set the precedent.
        """
        canonical = self.canonical_pair(opportunity_id, exclude_line_item_id)
        if canonical is None:
            return

        line_item_id, existing = canonical
        if candidate == existing:
            return

        logger.warning(
            "vendor_distributor_mismatch",
            extra={
                "opportunity_id": str(opportunity_id),
                "conflicting_line_item_id": str(line_item_id),
                "existing_pair": existing.as_strings(),
                "candidate_pair": candidate.as_strings(),
            },
        )
        raise VendorDistributorMismatchError(
            opportunity_id=opportunity_id,
            existing_pair=existing.as_strings(),
            candidate_pair=candidate.as_strings(),
            conflicting_line_item_id=line_item_id,
        )
