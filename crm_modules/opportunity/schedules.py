"""
Module: crm_modules.opportunity.schedules
Responsibility:
    Revenue schedule generator.  Turns a line item, a period count, a
    start date and an optional commission-rate override into N dated
    revenue schedules with per-period usage and commission.

Architecture:
    crm_modules layer -- writes through the caller's Session and never
    commits; the schedules share the transaction of the line-item write
    that produced them.  Numbers come from the kernel SequenceService.

Invariants:
    - Exactly ``period_count`` schedules, dated on consecutive
      first-of-month values ``cadence.step_months`` apart.
    - Per-period usage and commission are rounded independently
      (accepted slack of n x 0.005 against the total).
    - An opportunity without an account is rejected before any write.
    - Schedule numbers are ``floor + next per-tenant sequence value``.

Failure modes:
    - MissingAccountError -- opportunity has no account.
    - ValidationError -- bad period count, rate or cadence.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from crm_kernel.domain.values import ZERO, normalize_percent
from crm_kernel.exceptions import MissingAccountError, ValidationError
from crm_kernel.logging_config import get_logger
from crm_kernel.services.sequence_service import SequenceService
from crm_modules.opportunity.helpers import (
    per_period_amounts,
    schedule_dates,
    total_expected_revenue,
)
from crm_modules.opportunity.models import ScheduleCadence, ScheduleStatus
from crm_modules.opportunity.orm import LineItemModel, OpportunityModel, RevenueScheduleModel

logger = get_logger("modules.opportunity.schedules")


def parse_cadence(value: ScheduleCadence | str) -> ScheduleCadence:
    if isinstance(value, ScheduleCadence):
        return value
    try:
        return ScheduleCadence(str(value).strip().lower())
    except ValueError:
        raise ValidationError("cadence", value, "must be monthly, quarterly or one_time") from None


class RevenueScheduleGenerator:
    """
    Creates revenue schedules for one tenant.

    Contract:
        Adds rows to the caller's Session and flushes; the caller owns the
        transaction boundary.
    """

    def __init__(
        self,
        session: Session,
        tenant_id: UUID,
        actor_id: UUID,
        sequence: SequenceService | None = None,
        number_floor: int = 10000,
    ):
        self._session = session
        self._tenant_id = tenant_id
        self._actor_id = actor_id
        self._sequence = sequence or SequenceService(session)
        self._number_floor = number_floor

    def next_schedule_number(self) -> str:
        name = SequenceService.tenant_sequence(SequenceService.REVENUE_SCHEDULE, self._tenant_id)
        return str(self._number_floor + self._sequence.next_value(name))

    def generate(
        self,
        line_item: LineItemModel,
        opportunity: OpportunityModel,
        period_count: int,
        start_date: date,
        rate_override=None,
        cadence: ScheduleCadence | str = ScheduleCadence.MONTHLY,
    ) -> list[RevenueScheduleModel]:
        """
        Generate ``period_count`` schedules for ``line_item``.

        Preconditions:
            - ``line_item`` is flushed (has an id) and belongs to
              ``opportunity``.
            - ``rate_override`` is None, a fraction or whole percentage.

        Postconditions:
            - Returns the new schedules ordered by date, status Projected.

        Raises:
            MissingAccountError: opportunity has no account.
            ValidationError: period_count <= 0, bad rate, or one_time
                cadence with more than one period.
        """
        cadence = parse_cadence(cadence)
        if isinstance(period_count, bool) or not isinstance(period_count, int) or period_count <= 0:
            raise ValidationError("period_count", period_count, "must be a positive integer")
        if cadence is ScheduleCadence.ONE_TIME and period_count != 1:
            raise ValidationError("period_count", period_count, "one_time cadence takes exactly one period")
        if opportunity.account_id is None:
            raise MissingAccountError(opportunity.id)

        if rate_override is not None:
            rate = normalize_percent(rate_override, "commission_rate")
        else:
            rate = normalize_percent(line_item.commission_rate, "commission_rate")
        rate = ZERO if rate is None else rate

        total = total_expected_revenue(
            line_item.quantity, line_item.unit_price, line_item.expected_revenue,
        )
        usage, commission = per_period_amounts(total, period_count, rate)

        schedules: list[RevenueScheduleModel] = []
        for schedule_date in schedule_dates(start_date, period_count, cadence.step_months):
            schedule = RevenueScheduleModel(
                tenant_id=self._tenant_id,
                line_item_id=line_item.id,
                opportunity_id=opportunity.id,
                account_id=opportunity.account_id,
                product_id=line_item.product_id,
                distributor_account_id=line_item.distributor_account_id,
                vendor_account_id=line_item.vendor_account_id,
                schedule_number=self.next_schedule_number(),
                schedule_date=schedule_date,
                status=ScheduleStatus.PROJECTED.value,
                expected_usage=usage,
                usage_adjustment=Decimal("0"),
                expected_commission=commission,
                commission_adjustment=Decimal("0"),
                expected_commission_rate=rate,
                created_by_id=self._actor_id,
            )
            self._session.add(schedule)
            schedules.append(schedule)

        self._session.flush()

        logger.info(
            "revenue_schedules_generated",
            extra={
                "line_item_id": str(line_item.id),
                "opportunity_id": str(opportunity.id),
                "period_count": period_count,
                "cadence": cadence.value,
                "start_date": schedules[0].schedule_date.isoformat(),
                "per_period_usage": str(usage),
                "per_period_commission": str(commission),
                "first_number": schedules[0].schedule_number,
            },
        )
        return schedules
