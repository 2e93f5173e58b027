"""
Module: crm_modules.opportunity.models
Responsibility:
    Closed enums and frozen domain DTOs for the opportunity revenue
    engine: stages, statuses, line-item lifecycle, reconciliation status,
    revenue schedules, rollups and deletion decisions.

Architecture:
    crm_modules layer -- pure data definitions with ZERO I/O.
    All models are frozen dataclasses (immutable after construction).
    All monetary fields use Decimal -- NEVER float.

Invariants:
    - All dataclasses are frozen (immutable).
    - Enum values are the strings persisted in the database, so a stored
      row round-trips through ``Enum(value)`` without a lookup table.

Failure modes:
    - FrozenInstanceError on attempted mutation.
    - ValueError on invalid enum construction.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class OpportunityStage(Enum):
    """
    Opportunity sales and billing lifecycle stages.

    Contract:
        Members correspond to workflow states in workflows.py.
        ``CLOSED_WON`` is a legacy sentinel kept for stored rows; it is
        never a valid transition target.
    """
    QUALIFICATION = "Qualification"
    NEEDS_ANALYSIS = "NeedsAnalysis"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    ON_HOLD = "OnHold"
    CLOSED_WON = "ClosedWon"
    CLOSED_WON_PROVISIONING = "ClosedWon_Provisioning"
    CLOSED_WON_BILLING = "ClosedWon_Billing"
    CLOSED_WON_BILLING_ENDED = "ClosedWon_BillingEnded"
    CLOSED_LOST = "ClosedLost"


class OpportunityStatus(Enum):
    """Coarse status derived from the stage; never set independently."""
    OPEN = "Open"
    ON_HOLD = "OnHold"
    WON = "Won"
    LOST = "Lost"


class LineItemStatus(Enum):
    PROVISIONING = "Provisioning"
    ACTIVE_BILLING = "ActiveBilling"
    BILLING_ENDED = "BillingEnded"
    CANCELLED = "Cancelled"


class ScheduleStatus(Enum):
    """
    Reconciliation state of a revenue schedule.

    Contract:
        ``PROJECTED`` is the state of a freshly generated schedule.
        ``UNRECONCILED``, ``UNDERPAID`` and ``OVERPAID`` are the open
        states that block deactivation of the parent opportunity.
    """
    PROJECTED = "Projected"
    UNRECONCILED = "Unreconciled"
    UNDERPAID = "Underpaid"
    OVERPAID = "Overpaid"
    RECONCILED = "Reconciled"


OPEN_SCHEDULE_STATUSES = frozenset({
    ScheduleStatus.UNRECONCILED,
    ScheduleStatus.UNDERPAID,
    ScheduleStatus.OVERPAID,
})


class AccountType(Enum):
    CUSTOMER = "Customer"
    VENDOR = "Vendor"
    DISTRIBUTOR = "Distributor"
    OTHER = "Other"


class ScheduleCadence(Enum):
    """Spacing between generated schedule dates, in months."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ONE_TIME = "one_time"

    @property
    def step_months(self) -> int:
        return 3 if self is ScheduleCadence.QUARTERLY else 1


class SplitDisplayMode(Enum):
    PERCENT = "percent"
    AMOUNT = "amount"


class DeletionBlockCategory(Enum):
    """
    Why a line item cannot be deleted, in priority order.

    Contract:
        Declaration order is the priority order; the first category that
        matches any schedule is the one reported.
    """
    APPLIED_MONIES = "applied_monies"
    DEPOSIT_MATCHES = "deposit_matches"
    RECONCILIATION_ITEMS = "reconciliation_items"
    LINKED_DEPOSIT_LINES = "linked_deposit_lines"

    @property
    def reason(self) -> str:
        return _DELETION_REASONS[self]


_DELETION_REASONS = {
    DeletionBlockCategory.APPLIED_MONIES: "has applied monies",
    DeletionBlockCategory.DEPOSIT_MATCHES: "has deposit matches",
    DeletionBlockCategory.RECONCILIATION_ITEMS: "has reconciliation items",
    DeletionBlockCategory.LINKED_DEPOSIT_LINES: "has linked deposit lines",
}


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class AccountRef:
    id: UUID
    name: str
    account_type: AccountType


@dataclass(frozen=True)
class VendorDistributorPair:
    """
    The (distributor, vendor) pair a line item resolves to.

    Guarantees:
        - ``is_empty`` is True only when both members are None; an empty
          pair sets no precedent on an opportunity.
    """
    distributor_account_id: UUID | None = None
    vendor_account_id: UUID | None = None

    @property
    def is_empty(self) -> bool:
        return self.distributor_account_id is None and self.vendor_account_id is None

    def as_strings(self) -> tuple[str | None, str | None]:
        return (
            str(self.distributor_account_id) if self.distributor_account_id else None,
            str(self.vendor_account_id) if self.vendor_account_id else None,
        )


@dataclass(frozen=True)
class LineItemView:
    """Minimal line-item view used by the stage gate policy."""
    line_item_id: UUID
    status: LineItemStatus
    label: str = ""

    @property
    def display(self) -> str:
        return self.label or str(self.line_item_id)


@dataclass(frozen=True)
class SplitPercentages:
    """Resolved house / house-rep / subagent fractions (each in [0, 1])."""
    subagent: Decimal | None
    house_rep: Decimal | None
    house: Decimal | None


@dataclass(frozen=True)
class Product:
    """
    Catalog product master.

    Non-goals:
        - Never financial; line items copy what they need at creation.
    """
    id: UUID
    tenant_id: UUID
    name: str
    product_code: str | None = None
    revenue_type: str | None = None
    unit_price: Decimal | None = None
    commission_rate: Decimal | None = None
    vendor_account_id: UUID | None = None
    distributor_account_id: UUID | None = None
    vendor_name: str | None = None
    distributor_name: str | None = None


@dataclass(frozen=True)
class Opportunity:
    id: UUID
    tenant_id: UUID
    name: str
    stage: OpportunityStage
    status: OpportunityStatus
    active: bool
    account_id: UUID | None = None
    owner_id: UUID | None = None
    subagent_percent: Decimal | None = None
    house_rep_percent: Decimal | None = None
    house_split_percent: Decimal | None = None


@dataclass(frozen=True)
class LineItem:
    """
    One sold product instance on an opportunity.

    Contract:
        The ``product_*`` fields are a snapshot taken at creation; later
        catalog edits never change them.
    """
    id: UUID
    tenant_id: UUID
    opportunity_id: UUID
    product_id: UUID
    quantity: Decimal
    unit_price: Decimal
    status: LineItemStatus
    active: bool
    product_name: str
    product_code: str | None = None
    revenue_type: str | None = None
    product_unit_price: Decimal | None = None
    commission_rate: Decimal | None = None
    vendor_name: str | None = None
    distributor_name: str | None = None
    distributor_account_id: UUID | None = None
    vendor_account_id: UUID | None = None
    expected_revenue: Decimal | None = None
    expected_usage: Decimal | None = None
    expected_commission: Decimal | None = None
    revenue_start_date: date | None = None
    revenue_end_date: date | None = None

    @property
    def pair(self) -> VendorDistributorPair:
        return VendorDistributorPair(self.distributor_account_id, self.vendor_account_id)


@dataclass(frozen=True)
class RevenueSchedule:
    """
    One dated usage/commission obligation derived from a line item.

    Contract:
        Frozen dataclass.  ``actual_*`` fields are written only by the
        reconciliation subsystem; this engine reads them.
    """
    id: UUID
    tenant_id: UUID
    line_item_id: UUID | None
    opportunity_id: UUID | None
    schedule_number: str | None
    schedule_date: date
    status: ScheduleStatus
    expected_usage: Decimal | None = None
    usage_adjustment: Decimal | None = None
    actual_usage: Decimal | None = None
    actual_usage_adjustment: Decimal | None = None
    expected_commission: Decimal | None = None
    commission_adjustment: Decimal | None = None
    actual_commission: Decimal | None = None
    actual_commission_adjustment: Decimal | None = None
    expected_commission_rate: Decimal | None = None


@dataclass(frozen=True)
class RollupResult:
    """
    Gross / net / actual / variance figures for one schedule.

    Guarantees:
        - Money fields are rounded to 2 places; rates keep full precision.
    """
    usage_gross: Decimal
    usage_adjustment: Decimal
    usage_net: Decimal
    actual_usage: Decimal
    usage_balance: Decimal
    commission_gross: Decimal
    commission_adjustment: Decimal
    commission_net: Decimal
    actual_commission: Decimal
    commission_difference: Decimal
    expected_rate: Decimal
    actual_rate: Decimal
    rate_difference: Decimal


@dataclass(frozen=True)
class SplitPayouts:
    """Split figures in either fraction or currency form (display only)."""
    mode: SplitDisplayMode
    total_commission: Decimal
    house: Decimal
    house_rep: Decimal
    subagent: Decimal
    total: Decimal


@dataclass(frozen=True)
class ScheduleRollup:
    schedule: RevenueSchedule
    rollup: RollupResult


@dataclass(frozen=True)
class DeletionDecision:
    """
    Outcome of the deletion guard.

    Guarantees:
        - ``allowed`` is True iff ``category`` is None.
        - When blocked, ``schedule_id`` names the first schedule in the
          highest-priority category.
    """
    line_item_id: UUID
    allowed: bool
    category: DeletionBlockCategory | None = None
    schedule_id: UUID | None = None
    schedule_number: str | None = None

    @property
    def reason(self) -> str | None:
        return self.category.reason if self.category else None


@dataclass(frozen=True)
class StageRecalculation:
    """Result of a stage recalculation pass."""
    opportunity_id: UUID
    previous_stage: OpportunityStage
    stage: OpportunityStage
    status: OpportunityStatus

    @property
    def changed(self) -> bool:
        return self.previous_stage is not self.stage


@dataclass(frozen=True)
class ScheduleRequest:
    """Parameters for generating schedules alongside a line-item write."""
    period_count: int
    start_date: date
    rate_override: Decimal | int | str | None = None
    cadence: ScheduleCadence | str | None = None
