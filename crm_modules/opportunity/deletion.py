"""
Module: crm_modules.opportunity.deletion
Responsibility:
    Deletion guard for line items.  Decides whether a line item and its
    revenue schedules may be destroyed, and performs the dependent-first
    cascade when they may.

Architecture:
    crm_modules layer -- reads schedules through the caller's Session and
    ledger counts through a ``LedgerReader``.  ``delete_cascade`` writes
    bulk statements into the caller's transaction and never commits.

Invariants:
    - Blocking categories are checked in priority order: applied monies,
      deposit matches, reconciliation items, linked deposit lines.  The
      first schedule in the highest matching category is reported.
    - Applied monies means |actual usage|, |actual usage adjustment|,
      |actual commission| or |actual commission adjustment| above the
      configured tolerance on any schedule.
    - The cascade re-checks the guard, then removes activities, tickets,
      deposit matches and reconciliation items, unlinks deposit lines,
      deletes the schedules and finally the line item.

Failure modes:
    - LineItemNotFoundError -- unknown line item for the tenant.
    - DeletionBlockedError -- from assert_can_delete / delete_cascade.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from crm_kernel.exceptions import DeletionBlockedError, LineItemNotFoundError
from crm_kernel.logging_config import get_logger
from crm_modules.opportunity.helpers import has_applied_monies
from crm_modules.opportunity.ledger import LedgerCounts, LedgerReader, OrmLedgerReader
from crm_modules.opportunity.models import DeletionBlockCategory, DeletionDecision
from crm_modules.opportunity.orm import (
    ActivityModel,
    DepositLineItemModel,
    DepositLineMatchModel,
    LineItemModel,
    ReconciliationItemModel,
    RevenueScheduleModel,
    TicketModel,
)

logger = get_logger("modules.opportunity.deletion")


@dataclass(frozen=True)
class CascadeResult:
    line_item_id: UUID
    opportunity_id: UUID
    schedules_deleted: int
    activities_deleted: int
    tickets_deleted: int
    deposit_matches_deleted: int
    reconciliation_items_deleted: int
    deposit_lines_unlinked: int


class DeletionGuard:
    """Applied-money and ledger-link guard over a line item's schedules."""

    def __init__(
        self,
        session: Session,
        tenant_id: UUID,
        ledger: LedgerReader | None = None,
        applied_money_tolerance: Decimal = Decimal("0.0001"),
    ):
        self._session = session
        self._tenant_id = tenant_id
        self._ledger = ledger or OrmLedgerReader(session, tenant_id)
        self._tolerance = applied_money_tolerance

    def _line_item(self, line_item_id: UUID) -> LineItemModel:
        line_item = self._session.execute(
            select(LineItemModel).where(
                LineItemModel.id == line_item_id,
                LineItemModel.tenant_id == self._tenant_id,
            )
        ).scalar_one_or_none()
        if line_item is None:
            raise LineItemNotFoundError(line_item_id)
        return line_item

    def _schedules(self, line_item_id: UUID) -> list[RevenueScheduleModel]:
        return list(self._session.execute(
            select(RevenueScheduleModel)
            .where(
                RevenueScheduleModel.line_item_id == line_item_id,
                RevenueScheduleModel.tenant_id == self._tenant_id,
            )
            .order_by(RevenueScheduleModel.schedule_date, RevenueScheduleModel.schedule_number)
        ).scalars())

    def _blocking_category(
        self,
        schedule: RevenueScheduleModel,
        counts: LedgerCounts,
        category: DeletionBlockCategory,
    ) -> bool:
        if category is DeletionBlockCategory.APPLIED_MONIES:
            return has_applied_monies(schedule.to_dto(), self._tolerance)
        if category is DeletionBlockCategory.DEPOSIT_MATCHES:
            return counts.deposit_matches > 0
        if category is DeletionBlockCategory.RECONCILIATION_ITEMS:
            return counts.reconciliation_items > 0
        return counts.deposit_lines > 0

    def can_delete(self, line_item_id: UUID) -> DeletionDecision:
        """
        Decide whether the line item may be deleted.

        Postconditions:
            - ``allowed`` is False iff some schedule has applied money or a
              ledger link; ``category`` and ``schedule_*`` then name the
              first schedule in the highest-priority category.
        """
        self._line_item(line_item_id)
        schedules = self._schedules(line_item_id)
        ledger = self._ledger.counts(s.id for s in schedules)

        for category in DeletionBlockCategory:
            for schedule in schedules:
                counts = ledger.get(schedule.id, LedgerCounts())
                if self._blocking_category(schedule, counts, category):
                    return DeletionDecision(
                        line_item_id=line_item_id,
                        allowed=False,
                        category=category,
                        schedule_id=schedule.id,
                        schedule_number=schedule.schedule_number,
                    )

        return DeletionDecision(line_item_id=line_item_id, allowed=True)

    def assert_can_delete(self, line_item_id: UUID) -> DeletionDecision:
        decision = self.can_delete(line_item_id)
        if not decision.allowed:
            logger.warning(
                "line_item_deletion_blocked",
                extra={
                    "line_item_id": str(line_item_id),
                    "schedule_id": str(decision.schedule_id),
                    "category": decision.category.value,
                },
            )
            raise DeletionBlockedError(
                line_item_id=line_item_id,
                schedule_id=decision.schedule_id,
                schedule_number=decision.schedule_number,
                category=decision.category.value,
                reason=decision.reason,
            )
        return decision

    def delete_cascade(self, line_item_id: UUID) -> CascadeResult:
        """
        Delete a line item with its schedules and their dependents.

        Preconditions:
            - Called inside the caller's transaction; nothing is committed.

        Raises:
            DeletionBlockedError: the guard no longer allows deletion.
        """
        self.assert_can_delete(line_item_id)
        line_item = self._line_item(line_item_id)
        opportunity_id = line_item.opportunity_id
        schedule_ids = [s.id for s in self._schedules(line_item_id)]

        activities = tickets = matches = reconciliations = unlinked = 0
        if schedule_ids:
            activities = self._session.execute(
                delete(ActivityModel).where(ActivityModel.revenue_schedule_id.in_(schedule_ids))
            ).rowcount
            tickets = self._session.execute(
                delete(TicketModel).where(TicketModel.revenue_schedule_id.in_(schedule_ids))
            ).rowcount
            matches = self._session.execute(
                delete(DepositLineMatchModel)
                .where(DepositLineMatchModel.revenue_schedule_id.in_(schedule_ids))
            ).rowcount
            reconciliations = self._session.execute(
                delete(ReconciliationItemModel)
                .where(ReconciliationItemModel.revenue_schedule_id.in_(schedule_ids))
            ).rowcount
            unlinked = self._session.execute(
                update(DepositLineItemModel)
                .where(DepositLineItemModel.primary_revenue_schedule_id.in_(schedule_ids))
                .values(primary_revenue_schedule_id=None)
            ).rowcount
            self._session.execute(
                delete(RevenueScheduleModel).where(RevenueScheduleModel.id.in_(schedule_ids))
            )

        self._session.execute(delete(LineItemModel).where(LineItemModel.id == line_item_id))
        self._session.expire_all()

        logger.info(
            "line_item_deleted",
            extra={
                "line_item_id": str(line_item_id),
                "opportunity_id": str(opportunity_id),
                "schedules_deleted": len(schedule_ids),
            },
        )
        return CascadeResult(
            line_item_id=line_item_id,
            opportunity_id=opportunity_id,
            schedules_deleted=len(schedule_ids),
            activities_deleted=activities,
            tickets_deleted=tickets,
            deposit_matches_deleted=matches,
            reconciliation_items_deleted=reconciliations,
            deposit_lines_unlinked=unlinked,
        )
