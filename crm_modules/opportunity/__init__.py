"""
Module: crm_modules.opportunity
Responsibility:
    Opportunity revenue engine: the opportunity stage lifecycle, line items
    with catalog snapshots, vendor/distributor consistency, revenue
    schedule generation, per-schedule financial rollups, commission
    splits and the line-item deletion guard.

Architecture:
    crm_modules layer.  Pure helpers (helpers.py, stage.py functions,
    workflows.py) carry the calculation rules; guard and generator classes
    work inside the caller's transaction; OpportunityService is the facade
    that owns commit/rollback.

    Dependency direction (strict):
        crm_modules/opportunity  -->  crm_kernel (db, domain, services)
        crm_modules/opportunity  -X-> crm_config (config is injected)

Failure modes:
    - Typed CrmKernelError subclasses, see crm_kernel.exceptions.
"""

from crm_modules.opportunity.config import OpportunityConfig
from crm_modules.opportunity.deletion import CascadeResult, DeletionGuard
from crm_modules.opportunity.helpers import (
    compute_rollup,
    compute_split_payouts,
    derive_reconciliation_status,
    resolve_split_percentages,
)
from crm_modules.opportunity.models import (
    DeletionBlockCategory,
    DeletionDecision,
    LineItem,
    LineItemStatus,
    LineItemView,
    Opportunity,
    OpportunityStage,
    OpportunityStatus,
    Product,
    RevenueSchedule,
    RollupResult,
    ScheduleCadence,
    ScheduleRequest,
    ScheduleRollup,
    ScheduleStatus,
    SplitDisplayMode,
    SplitPayouts,
    StageRecalculation,
    VendorDistributorPair,
)
from crm_modules.opportunity.service import OpportunityService
from crm_modules.opportunity.stage import (
    derive_stage_from_line_items,
    derive_status,
    validate_transition,
)
from crm_modules.opportunity.workflows import OPPORTUNITY_STAGE_WORKFLOW

__all__ = [
    "OpportunityConfig",
    "OpportunityService",
    "DeletionGuard",
    "CascadeResult",
    "compute_rollup",
    "compute_split_payouts",
    "derive_reconciliation_status",
    "resolve_split_percentages",
    "derive_stage_from_line_items",
    "derive_status",
    "validate_transition",
    "OPPORTUNITY_STAGE_WORKFLOW",
    "DeletionBlockCategory",
    "DeletionDecision",
    "LineItem",
    "LineItemStatus",
    "LineItemView",
    "Opportunity",
    "OpportunityStage",
    "OpportunityStatus",
    "Product",
    "RevenueSchedule",
    "RollupResult",
    "ScheduleCadence",
    "ScheduleRequest",
    "ScheduleRollup",
    "ScheduleStatus",
    "SplitDisplayMode",
    "SplitPayouts",
    "StageRecalculation",
    "VendorDistributorPair",
]
