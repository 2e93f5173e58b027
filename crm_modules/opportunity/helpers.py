"""
Module: crm_modules.opportunity.helpers
Responsibility:
    Pure calculation functions for the revenue engine: the per-schedule
    financial rollup (gross -> net -> actual -> variance at usage and
    commission level), percentage-split resolution and payouts, the
    reconciliation status rule, and the period math used by the
    schedule generator.

Architecture:
    crm_modules layer -- pure functions, ZERO I/O.
    Called by schedules.py, service.py and the read paths.  Has no
    knowledge of sessions or ORM models; takes and returns DTOs.

Invariants:
    - All arithmetic is Decimal; floats never reach these functions.
    - Intermediate values keep full precision; money is rounded to
      2 places only in the returned results (round_money, HALF_UP).
    - Every division is guarded: a zero or missing denominator gives 0.

Failure modes:
    - compute_rollup and compute_split_payouts never raise on valid DTOs.
    - ValidationError from resolve_split_percentages and
      per_period_amounts on out-of-range input.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from crm_kernel.db.types import round_money
from crm_kernel.domain.values import (
    ONE,
    ZERO,
    normalize_percent,
    safe_divide,
    to_decimal,
)
from crm_kernel.exceptions import ValidationError
from crm_modules.opportunity.models import (
    LineItem,
    Product,
    RevenueSchedule,
    RollupResult,
    ScheduleStatus,
    SplitDisplayMode,
    SplitPayouts,
    SplitPercentages,
)

# Absolute floor below which a variance always counts as reconciled
RECONCILIATION_EPSILON = Decimal("0.005")


def _d(value: Decimal | None) -> Decimal:
    return ZERO if value is None else value


# =============================================================================
# Schedule math
# =============================================================================


def first_of_month_plus(start: date, months: int) -> date:
    """
    Advance ``start`` by whole months, landing on the first of the month.

    Day-of-month is not preserved: 2025-01-31 + 1 -> 2025-02-01.
    """
    index = start.year * 12 + (start.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def schedule_dates(start: date, period_count: int, step_months: int = 1) -> list[date]:
    """Consecutive first-of-month dates, ``step_months`` apart."""
    return [first_of_month_plus(start, i * step_months) for i in range(period_count)]


def total_expected_revenue(
    quantity: Decimal,
    unit_price: Decimal,
    explicit: Decimal | None = None,
) -> Decimal:
    """Explicit expected revenue when given, else round(quantity x price, 2)."""
    if explicit is not None:
        return explicit
    return round_money(quantity * unit_price)


def per_period_amounts(
    total: Decimal,
    period_count: int,
    rate: Decimal,
) -> tuple[Decimal, Decimal]:
    """
    Equal per-period usage and commission for a schedule batch.

    Preconditions:
        - ``period_count`` > 0.
        - ``rate`` is a fraction (already normalized).

    Postconditions:
        - usage = round(total / n, 2); commission = round(usage x rate, 2).
        - Rounding is independent per period, so usage x n may differ from
          ``total`` by up to n x 0.005.
    """
    if period_count <= 0:
        raise ValidationError("period_count", period_count, "must be greater than zero")
    usage = round_money(total / period_count)
    commission = round_money(usage * rate)
    return usage, commission


# =============================================================================
# Rollup
# =============================================================================


def resolve_commission_rate(
    schedule: RevenueSchedule,
    line_item: LineItem | None = None,
    product: Product | None = None,
) -> Decimal | None:
    """First known rate of schedule snapshot, line-item snapshot, product."""
    for candidate in (
        schedule.expected_commission_rate,
        line_item.commission_rate if line_item else None,
        product.commission_rate if product else None,
    ):
        if candidate is not None:
            return normalize_percent(candidate, "commission_rate")
    return None


def compute_rollup(
    schedule: RevenueSchedule,
    line_item: LineItem | None = None,
    product: Product | None = None,
) -> RollupResult:
    """
    Gross / net / actual / variance cascade for one revenue schedule.

    Cascade:
        usage_gross       = expected_usage, else quantity x unit_price
        usage_net         = usage_gross + usage_adjustment
        usage_balance     = usage_net - actual_usage
        commission_gross  = expected_commission, else usage_net x rate
        commission_net    = commission_gross + commission_adjustment
        commission_diff   = commission_net - actual_commission
        expected_rate     = known rate, else commission_net / usage_net
        actual_rate       = actual_commission / actual_usage
        rate_difference   = expected_rate - actual_rate

    Actual figures include their posted adjustments.

    Postconditions:
        - Pure and idempotent; never raises for a well-formed schedule.
        - A zero denominator yields a zero rate.
        - Money fields are rounded to 2 places; rates are not rounded.
    """
    if schedule.expected_usage is not None:
        usage_gross = schedule.expected_usage
    elif line_item is not None:
        usage_gross = line_item.quantity * line_item.unit_price
    else:
        usage_gross = ZERO

    usage_adjustment = _d(schedule.usage_adjustment)
    usage_net = usage_gross + usage_adjustment
    actual_usage = _d(schedule.actual_usage) + _d(schedule.actual_usage_adjustment)
    usage_balance = usage_net - actual_usage

    rate = resolve_commission_rate(schedule, line_item, product)

    if schedule.expected_commission is not None:
        commission_gross = schedule.expected_commission
    else:
        commission_gross = usage_net * _d(rate)

    commission_adjustment = _d(schedule.commission_adjustment)
    commission_net = commission_gross + commission_adjustment
    actual_commission = _d(schedule.actual_commission) + _d(schedule.actual_commission_adjustment)
    commission_difference = commission_net - actual_commission

    expected_rate = rate if rate is not None else safe_divide(commission_net, usage_net)
    actual_rate = safe_divide(actual_commission, actual_usage)

    return RollupResult(
        usage_gross=round_money(usage_gross),
        usage_adjustment=round_money(usage_adjustment),
        usage_net=round_money(usage_net),
        actual_usage=round_money(actual_usage),
        usage_balance=round_money(usage_balance),
        commission_gross=round_money(commission_gross),
        commission_adjustment=round_money(commission_adjustment),
        commission_net=round_money(commission_net),
        actual_commission=round_money(actual_commission),
        commission_difference=round_money(commission_difference),
        expected_rate=expected_rate,
        actual_rate=actual_rate,
        rate_difference=expected_rate - actual_rate,
    )


def derive_reconciliation_status(
    rollup: RollupResult,
    match_count: int,
    variance_tolerance: Decimal = ZERO,
) -> ScheduleStatus:
    """
    Reconciliation status from a rollup and its deposit match count.

    Rules, in order:
        - no matches                                -> Unreconciled
        - |usage balance| and |commission diff| each
          within max(|expected net| x tolerance, 0.005) -> Reconciled
        - either figure negative                    -> Overpaid
        - otherwise                                 -> Underpaid
    """
    if match_count == 0:
        return ScheduleStatus.UNRECONCILED

    tolerance = max(ZERO, min(variance_tolerance, ONE))
    usage_tolerance = max(abs(rollup.usage_net) * tolerance, RECONCILIATION_EPSILON)
    commission_tolerance = max(abs(rollup.commission_net) * tolerance, RECONCILIATION_EPSILON)

    if (
        abs(rollup.usage_balance) <= usage_tolerance
        and abs(rollup.commission_difference) <= commission_tolerance
    ):
        return ScheduleStatus.RECONCILED
    if rollup.usage_balance < 0 or rollup.commission_difference < 0:
        return ScheduleStatus.OVERPAID
    return ScheduleStatus.UNDERPAID


def has_applied_monies(schedule: RevenueSchedule, tolerance: Decimal) -> bool:
    """True when any posted actual amount on the schedule exceeds ``tolerance``."""
    return any(
        value is not None and abs(value) > tolerance
        for value in (
            schedule.actual_usage,
            schedule.actual_usage_adjustment,
            schedule.actual_commission,
            schedule.actual_commission_adjustment,
        )
    )


# =============================================================================
# Splits
# =============================================================================


def resolve_split_percentages(
    subagent,
    house_rep,
    house=None,
    tolerance: Decimal = Decimal("0.0001"),
) -> SplitPercentages:
    """
    Normalize the three split percentages and fill in the house split.

    Preconditions:
        - Each input is None, a fraction (0.2) or whole points (20).

    Postconditions:
        - When the house split is omitted and both others are given, it is
          1 - (subagent + house_rep), floored at 0.
        - When all three are present they sum to 1 within ``tolerance``.

    Raises:
        ValidationError: out-of-range input, or a full set that does not
            sum to 1.
    """
    subagent_fraction = normalize_percent(subagent, "subagent_percent")
    house_rep_fraction = normalize_percent(house_rep, "house_rep_percent")
    house_fraction = normalize_percent(house, "house_split_percent")

    if house_fraction is None and subagent_fraction is not None and house_rep_fraction is not None:
        house_fraction = max(ZERO, ONE - (subagent_fraction + house_rep_fraction))

    if None not in (subagent_fraction, house_rep_fraction, house_fraction):
        total = subagent_fraction + house_rep_fraction + house_fraction
        if abs(total - ONE) > tolerance:
            raise ValidationError(
                "split_percentages",
                str(total),
                "house, house rep and subagent splits must sum to 100%",
            )

    return SplitPercentages(
        subagent=subagent_fraction,
        house_rep=house_rep_fraction,
        house=house_fraction,
    )


def split_commission_base(rollup: RollupResult) -> Decimal:
    """Posted actual commission when nonzero, else net expected commission."""
    if rollup.actual_commission != ZERO:
        return rollup.actual_commission
    return rollup.commission_net


def compute_split_payouts(
    total_or_rollup: Decimal | RollupResult,
    house: Decimal | None,
    house_rep: Decimal | None,
    subagent: Decimal | None,
    mode: SplitDisplayMode = SplitDisplayMode.AMOUNT,
) -> SplitPayouts:
    """
    Split a commission total across house, house rep and subagent.

    Pure display toggle: ``PERCENT`` returns the fractions themselves,
    ``AMOUNT`` returns total x fraction rounded to cents.  Nothing is
    written back.
    """
    if isinstance(total_or_rollup, RollupResult):
        total_commission = split_commission_base(total_or_rollup)
    else:
        total_commission = to_decimal(total_or_rollup, "total_commission")

    fractions = (_d(house), _d(house_rep), _d(subagent))

    if mode is SplitDisplayMode.PERCENT:
        values = fractions
    else:
        values = tuple(round_money(total_commission * f) for f in fractions)

    return SplitPayouts(
        mode=mode,
        total_commission=round_money(total_commission),
        house=values[0],
        house_rep=values[1],
        subagent=values[2],
        total=sum(values, ZERO),
    )

