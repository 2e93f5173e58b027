"""
Module: crm_modules.opportunity.ledger
Responsibility:
    Read-only view of the reconciliation ledger for a set of revenue
    schedules: how many deposit matches, reconciliation items and deposit
    line items (as primary schedule) reference each one.

Architecture:
    crm_modules layer.  ``LedgerReader`` is the contract the deletion
    guard consumes; ``OrmLedgerReader`` is the default implementation over
    the module's own ledger tables.  Hosts with a separate reconciliation
    store supply their own reader.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crm_modules.opportunity.orm import (
    DepositLineItemModel,
    DepositLineMatchModel,
    ReconciliationItemModel,
)


@dataclass(frozen=True)
class LedgerCounts:
    deposit_matches: int = 0
    reconciliation_items: int = 0
    deposit_lines: int = 0


class LedgerReader(Protocol):
    def counts(self, schedule_ids: Iterable[UUID]) -> dict[UUID, LedgerCounts]:
        """Ledger reference counts per schedule id (absent ids mean zero)."""
        ...


class OrmLedgerReader:
    """LedgerReader over the deposit/reconciliation ORM tables."""

    def __init__(self, session: Session, tenant_id: UUID):
        self._session = session
        self._tenant_id = tenant_id

    def _grouped(self, model, column, ids: list[UUID]) -> dict[UUID, int]:
        rows = self._session.execute(
            select(column, func.count())
            .where(model.tenant_id == self._tenant_id, column.in_(ids))
            .group_by(column)
        )
        return {schedule_id: count for schedule_id, count in rows}

    def counts(self, schedule_ids: Iterable[UUID]) -> dict[UUID, LedgerCounts]:
        ids = list(schedule_ids)
        if not ids:
            return {}

        matches = self._grouped(
            DepositLineMatchModel, DepositLineMatchModel.revenue_schedule_id, ids,
        )
        reconciliations = self._grouped(
            ReconciliationItemModel, ReconciliationItemModel.revenue_schedule_id, ids,
        )
        deposit_lines = self._grouped(
            DepositLineItemModel, DepositLineItemModel.primary_revenue_schedule_id, ids,
        )

        return {
            schedule_id: LedgerCounts(
                deposit_matches=matches.get(schedule_id, 0),
                reconciliation_items=reconciliations.get(schedule_id, 0),
                deposit_lines=deposit_lines.get(schedule_id, 0),
            )
            for schedule_id in ids
        }
