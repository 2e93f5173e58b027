"""Tests for commission split resolution and payouts."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from crm_kernel.exceptions import ValidationError
from crm_modules.opportunity.helpers import (
    compute_rollup,
    compute_split_payouts,
    resolve_split_percentages,
    split_commission_base,
)
from crm_modules.opportunity.models import RevenueSchedule, ScheduleStatus, SplitDisplayMode


class TestResolveSplitPercentages:
    """House split is derived when omitted; a full set must sum to 100%."""

    def test_house_derived(self):
        splits = resolve_split_percentages(Decimal("0.5"), Decimal("0.3"))
        assert splits.house == Decimal("0.2")

    def test_whole_points_accepted(self):
        splits = resolve_split_percentages(50, 30)
        assert splits.subagent == Decimal("0.5")
        assert splits.house_rep == Decimal("0.3")
        assert splits.house == Decimal("0.2")

    def test_house_floored_at_zero_then_rejected(self):
        with pytest.raises(ValidationError, match="sum to 100%"):
            resolve_split_percentages(Decimal("0.7"), Decimal("0.6"))

    def test_all_to_subagent(self):
        splits = resolve_split_percentages(100, 0)
        assert splits.house == Decimal("0")

    def test_full_set_must_sum_to_one(self):
        with pytest.raises(ValidationError) as exc_info:
            resolve_split_percentages(Decimal("0.5"), Decimal("0.3"), Decimal("0.3"))
        assert exc_info.value.field == "split_percentages"

    def test_full_set_within_tolerance(self):
        splits = resolve_split_percentages("0.33333", "0.33333", "0.33334")
        assert splits.house == Decimal("0.33334")

    def test_partial_set_left_alone(self):
        splits = resolve_split_percentages(None, Decimal("0.3"))
        assert splits.subagent is None
        assert splits.house is None


class TestSplitPayouts:

    def test_amount_mode(self):
        payouts = compute_split_payouts(
            Decimal("100.00"), Decimal("0.2"), Decimal("0.3"), Decimal("0.5"),
        )
        assert payouts.house == Decimal("20.00")
        assert payouts.house_rep == Decimal("30.00")
        assert payouts.subagent == Decimal("50.00")
        assert payouts.total == Decimal("100.00")

    def test_percent_mode_returns_fractions(self):
        payouts = compute_split_payouts(
            Decimal("100.00"), Decimal("0.2"), Decimal("0.3"), Decimal("0.5"),
            mode=SplitDisplayMode.PERCENT,
        )
        assert payouts.house == Decimal("0.2")
        assert payouts.total == Decimal("1.0")

    def test_missing_fractions_count_as_zero(self):
        payouts = compute_split_payouts(Decimal("80"), None, Decimal("0.25"), None)
        assert payouts.house == Decimal("0.00")
        assert payouts.house_rep == Decimal("20.00")

    def test_rollup_prefers_actual_commission(self):
        schedule = RevenueSchedule(
            id=uuid4(), tenant_id=uuid4(), line_item_id=None, opportunity_id=None,
            schedule_number="10001", schedule_date=date(2025, 1, 1),
            status=ScheduleStatus.UNDERPAID,
            expected_usage=Decimal("250"), expected_commission=Decimal("25"),
            actual_commission=Decimal("20"),
        )
        rollup = compute_rollup(schedule)
        assert split_commission_base(rollup) == Decimal("20.00")

        payouts = compute_split_payouts(rollup, Decimal("0.5"), Decimal("0.5"), Decimal("0"))
        assert payouts.total_commission == Decimal("20.00")
        assert payouts.house == Decimal("10.00")

    def test_rollup_without_actuals_uses_net(self):
        schedule = RevenueSchedule(
            id=uuid4(), tenant_id=uuid4(), line_item_id=None, opportunity_id=None,
            schedule_number="10002", schedule_date=date(2025, 2, 1),
            status=ScheduleStatus.PROJECTED,
            expected_usage=Decimal("250"), expected_commission=Decimal("25"),
            commission_adjustment=Decimal("5"),
        )
        assert split_commission_base(compute_rollup(schedule)) == Decimal("30.00")
