"""
Typed Exception Hierarchy for the CRM revenue kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the revenue engine (HTTP handlers, bulk jobs, scripts) must be
able to render a precise user-facing message for every rejection without
parsing strings.  Every error therefore:

  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA (which record, which numbers, which rule)

Example:
    try:
        service.delete_line_item_cascade(line_item_id)
    except DeletionBlockedError as e:
        api_response(
            code=e.code,
            schedule=e.schedule_number,
            category=e.category,
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CrmKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- OpportunityNotFoundError
    |   +-- LineItemNotFoundError
    |   +-- ProductNotFoundError
    |
    +-- TransitionRejectedError
    |   +-- DeactivationBlockedError
    |
    +-- VendorDistributorMismatchError
    |
    +-- DeletionBlockedError
    |
    +-- MissingAccountError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                                    | When Raised
----------------------------------------|--------------------------------------
VALIDATION_ERROR                        | Malformed / out-of-range input
NOT_FOUND                               | Record absent or outside tenant
OPPORTUNITY_NOT_FOUND                   | Opportunity id unknown for tenant
LINE_ITEM_NOT_FOUND                     | Line item id unknown for tenant
PRODUCT_NOT_FOUND                       | Product id unknown for tenant
TRANSITION_REJECTED                     | Illegal stage move or unmet gate
DEACTIVATION_BLOCKED                    | Open schedules prevent deactivation
OPPORTUNITY_VENDOR_DISTRIBUTOR_MISMATCH | Second vendor/distributor pair
DELETION_BLOCKED                        | Money or ledger links on schedules
MISSING_ACCOUNT                         | Schedules requested, no account

===============================================================================
"""

from __future__ import annotations

from typing import Any


class CrmKernelError(Exception):
    """
    Base exception for all revenue engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CRM_KERNEL_ERROR"


# Validation


class ValidationError(CrmKernelError):
    """Numeric, percent or enum input is malformed or out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} ({value!r}): {reason}")


# Lookup


class NotFoundError(CrmKernelError):
    """Referenced record is absent or belongs to another tenant."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = str(entity_id)
        super().__init__(f"{entity} not found: {entity_id}")


class OpportunityNotFoundError(NotFoundError):
    code: str = "OPPORTUNITY_NOT_FOUND"

    def __init__(self, opportunity_id: Any):
        super().__init__("Opportunity", opportunity_id)


class LineItemNotFoundError(NotFoundError):
    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, line_item_id: Any):
        super().__init__("Line item", line_item_id)


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any):
        super().__init__("Product", product_id)


# Stage lifecycle


class TransitionRejectedError(CrmKernelError):
    """
    Stage move is illegal.

    ``rule`` names the check that failed (``terminal_stage``,
    ``bare_closed_won``, ``undeclared_transition`` or a gate name) and
    ``offending_line_items`` lists the line items that block a gate.
    """

    code: str = "TRANSITION_REJECTED"

    def __init__(
        self,
        current_stage: str,
        desired_stage: str,
        rule: str,
        reason: str,
        offending_line_items: tuple[str, ...] = (),
    ):
        self.current_stage = current_stage
        self.desired_stage = desired_stage
        self.rule = rule
        self.reason = reason
        self.offending_line_items = tuple(offending_line_items)
        message = f"Cannot move opportunity from {current_stage} to {desired_stage}: {reason}"
        if self.offending_line_items:
            message += f" (line items: {', '.join(self.offending_line_items)})"
        super().__init__(message)


class DeactivationBlockedError(TransitionRejectedError):
    """Opportunity still has schedules awaiting reconciliation."""

    code: str = "DEACTIVATION_BLOCKED"

    def __init__(self, opportunity_id: Any, stage: str, open_schedule_numbers: tuple[str, ...]):
        self.opportunity_id = str(opportunity_id)
        self.open_schedule_numbers = tuple(open_schedule_numbers)
        super().__init__(
            current_stage=stage,
            desired_stage=stage,
            rule="open_revenue_schedules",
            reason=(
                f"{len(self.open_schedule_numbers)} revenue schedule(s) are not reconciled "
                f"({', '.join(self.open_schedule_numbers)})"
            ),
        )


# Cross-record invariants


class VendorDistributorMismatchError(CrmKernelError):
    """A line item would introduce a second vendor/distributor pair."""

    code: str = "OPPORTUNITY_VENDOR_DISTRIBUTOR_MISMATCH"

    def __init__(
        self,
        opportunity_id: Any,
        existing_pair: tuple[str | None, str | None],
        candidate_pair: tuple[str | None, str | None],
        conflicting_line_item_id: Any,
    ):
        self.opportunity_id = str(opportunity_id)
        self.existing_distributor_id, self.existing_vendor_id = existing_pair
        self.candidate_distributor_id, self.candidate_vendor_id = candidate_pair
        self.conflicting_line_item_id = str(conflicting_line_item_id)
        super().__init__(
            "Cannot have more than one Distributor/Vendor on the same Opportunity "
            f"(opportunity {opportunity_id} uses distributor={self.existing_distributor_id} "
            f"vendor={self.existing_vendor_id}; got distributor={self.candidate_distributor_id} "
            f"vendor={self.candidate_vendor_id})"
        )


class DeletionBlockedError(CrmKernelError):
    """
    Line item cannot be deleted.

    ``category`` is one of ``applied_monies``, ``deposit_matches``,
    ``reconciliation_items``, ``linked_deposit_lines``.
    """

    code: str = "DELETION_BLOCKED"

    def __init__(
        self,
        line_item_id: Any,
        schedule_id: Any,
        schedule_number: str | None,
        category: str,
        reason: str,
    ):
        self.line_item_id = str(line_item_id)
        self.schedule_id = str(schedule_id)
        self.schedule_number = schedule_number
        self.category = category
        self.reason = reason
        label = schedule_number or self.schedule_id
        super().__init__(
            f"Cannot delete product because revenue schedule {label} {reason}."
        )


class MissingAccountError(CrmKernelError):
    """Schedules cannot be generated for an opportunity without an account."""

    code: str = "MISSING_ACCOUNT"

    def __init__(self, opportunity_id: Any):
        self.opportunity_id = str(opportunity_id)
        super().__init__(
            "Cannot generate revenue schedules because the opportunity "
            f"{opportunity_id} is missing an account."
        )
