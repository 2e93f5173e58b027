"""
Module: crm_modules.opportunity.workflows
Responsibility:
    Declarative state machine for the opportunity stage lifecycle and
    the stage gate policy table.  Defines valid stages, the edges between
    them, the stage -> status mapping, and the named gate rules that
    inspect line-item statuses before a stage move is accepted.

Architecture:
    crm_modules layer -- purely declarative frozen dataclasses plus pure
    predicate functions.  No I/O, no side effects.  Consumed by
    ``stage.validate_transition``; which gates run is decided by
    ``OpportunityConfig.stage_gates``.

Invariants:
    - State names are ``OpportunityStage`` values.
    - ``ClosedWon_BillingEnded`` and ``ClosedLost`` are terminal: no
      outgoing edge exists from either.
    - The bare ``ClosedWon`` state has no incoming edge.
    - Every stage has exactly one entry in ``STAGE_STATUS``.

Failure modes:
    - Gate predicates never raise; they return a ``GateFailure`` that the
      caller converts into ``TransitionRejectedError``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from itertools import permutations

from crm_kernel.domain.workflow import Guard, Transition, Workflow
from crm_modules.opportunity.models import (
    LineItemStatus,
    LineItemView,
    OpportunityStage,
    OpportunityStatus,
)

S = OpportunityStage

PRE_CLOSE_STAGES = (
    S.QUALIFICATION,
    S.NEEDS_ANALYSIS,
    S.PROPOSAL,
    S.NEGOTIATION,
    S.ON_HOLD,
)

# Stages that fall back to provisioning when nothing is billing
WON_FAMILY = (
    S.CLOSED_WON,
    S.CLOSED_WON_PROVISIONING,
    S.CLOSED_WON_BILLING,
)

TERMINAL_STAGES = (S.CLOSED_WON_BILLING_ENDED, S.CLOSED_LOST)

AUTO_MANAGED_STAGES = (S.CLOSED_WON_BILLING, S.CLOSED_WON_BILLING_ENDED)

STAGE_STATUS: dict[OpportunityStage, OpportunityStatus] = {
    S.QUALIFICATION: OpportunityStatus.OPEN,
    S.NEEDS_ANALYSIS: OpportunityStatus.OPEN,
    S.PROPOSAL: OpportunityStatus.OPEN,
    S.NEGOTIATION: OpportunityStatus.OPEN,
    S.ON_HOLD: OpportunityStatus.ON_HOLD,
    S.CLOSED_WON: OpportunityStatus.WON,
    S.CLOSED_WON_PROVISIONING: OpportunityStatus.WON,
    S.CLOSED_WON_BILLING: OpportunityStatus.WON,
    S.CLOSED_WON_BILLING_ENDED: OpportunityStatus.WON,
    S.CLOSED_LOST: OpportunityStatus.LOST,
}

assert set(STAGE_STATUS) == set(OpportunityStage), "STAGE_STATUS must cover every stage"

STAGE_LABELS: dict[OpportunityStage, str] = {
    S.QUALIFICATION: "Qualification",
    S.NEEDS_ANALYSIS: "Needs Analysis",
    S.PROPOSAL: "Proposal",
    S.NEGOTIATION: "Negotiation",
    S.ON_HOLD: "On Hold",
    S.CLOSED_WON: "Closed Won",
    S.CLOSED_WON_PROVISIONING: "Closed Won - Provisioning",
    S.CLOSED_WON_BILLING: "Closed Won - Billing",
    S.CLOSED_WON_BILLING_ENDED: "Closed Won - Billing Ended",
    S.CLOSED_LOST: "Closed Lost",
}


# Guards
BILLING_PRODUCTS_PRESENT = Guard(
    "billing_products_present",
    "At least one line item is Active - Billing",
)
ALL_BILLING_ENDED = Guard(
    "all_billing_ended",
    "Every non-cancelled line item has ended billing",
)


def _stage_transitions() -> tuple[Transition, ...]:
    edges: list[Transition] = []
    for a, b in permutations(PRE_CLOSE_STAGES, 2):
        action = "hold" if b is S.ON_HOLD else "advance"
        edges.append(Transition(a.value, b.value, action=action))
    for a in PRE_CLOSE_STAGES:
        edges.append(Transition(a.value, S.CLOSED_WON_PROVISIONING.value, action="close_won"))
        edges.append(Transition(a.value, S.CLOSED_LOST.value, action="close_lost"))
    for b in PRE_CLOSE_STAGES:
        edges.append(Transition(S.CLOSED_WON_PROVISIONING.value, b.value, action="reopen"))
    edges.extend((
        Transition(
            S.CLOSED_WON_PROVISIONING.value, S.CLOSED_WON_BILLING.value,
            action="start_billing", guard=BILLING_PRODUCTS_PRESENT,
        ),
        Transition(
            S.CLOSED_WON_PROVISIONING.value, S.CLOSED_WON_BILLING_ENDED.value,
            action="end_billing", guard=ALL_BILLING_ENDED,
        ),
        Transition(S.CLOSED_WON_PROVISIONING.value, S.CLOSED_LOST.value, action="close_lost"),
        Transition(
            S.CLOSED_WON_BILLING.value, S.CLOSED_WON_BILLING_ENDED.value,
            action="end_billing", guard=ALL_BILLING_ENDED,
        ),
        Transition(
            S.CLOSED_WON_BILLING.value, S.CLOSED_WON_PROVISIONING.value,
            action="resume_provisioning",
        ),
    ))
    return tuple(edges)


OPPORTUNITY_STAGE_WORKFLOW = Workflow(
    name="opportunity_stage",
    description="Opportunity sales and billing lifecycle",
    initial_state=S.QUALIFICATION.value,
    states=tuple(stage.value for stage in OpportunityStage),
    transitions=_stage_transitions(),
    terminal_states=tuple(stage.value for stage in TERMINAL_STAGES),
)


# =============================================================================
# Stage gate policy
# =============================================================================


@dataclass(frozen=True)
class GateFailure:
    """Why a gate rejected a move, and which line items are responsible."""
    reason: str
    offending: tuple[LineItemView, ...] = ()


GateCheck = Callable[
    [OpportunityStage, OpportunityStage, Sequence[LineItemView]],
    GateFailure | None,
]


@dataclass(frozen=True)
class StageGate:
    """A named, independently testable stage gate rule."""
    name: str
    description: str
    check: GateCheck


def _relevant(line_items: Sequence[LineItemView]) -> list[LineItemView]:
    return [li for li in line_items if li.status is not LineItemStatus.CANCELLED]


def _all_billing_ended(line_items: Sequence[LineItemView]) -> bool:
    relevant = _relevant(line_items)
    return bool(relevant) and all(li.status is LineItemStatus.BILLING_ENDED for li in relevant)


def _active_billing_lock(desired, current, line_items):
    active = tuple(li for li in line_items if li.status is LineItemStatus.ACTIVE_BILLING)
    if active and desired is not S.CLOSED_WON_BILLING:
        return GateFailure(
            "Stage is locked to Closed Won - Billing while products are Active - Billing",
            active,
        )
    return None


def _billing_ended_lock(desired, current, line_items):
    if _all_billing_ended(line_items) and desired is not S.CLOSED_WON_BILLING_ENDED:
        return GateFailure(
            "Stage is locked to Closed Won - Billing Ended once all products have ended billing",
            tuple(_relevant(line_items)),
        )
    return None


def _billing_requires_billing_products(desired, current, line_items):
    if desired is not S.CLOSED_WON_BILLING:
        return None
    if any(li.status is LineItemStatus.ACTIVE_BILLING for li in line_items):
        return None
    return GateFailure(
        "Closed Won - Billing requires at least one product in Active - Billing",
        tuple(_relevant(line_items)),
    )


def _billing_ended_requires_all_ended(desired, current, line_items):
    if desired is not S.CLOSED_WON_BILLING_ENDED or _all_billing_ended(line_items):
        return None
    return GateFailure(
        "Closed Won - Billing Ended requires every product to have ended billing",
        tuple(
            li for li in _relevant(line_items)
            if li.status is not LineItemStatus.BILLING_ENDED
        ),
    )


def _won_cannot_hold(desired, current, line_items):
    if desired is S.ON_HOLD and STAGE_STATUS[current] is OpportunityStatus.WON:
        return GateFailure("Cannot move won opportunities to On Hold without reopening them")
    return None


def _auto_managed_stages(desired, current, line_items):
    if desired in AUTO_MANAGED_STAGES and desired is not current:
        return GateFailure(
            f"{STAGE_LABELS[desired]} is managed automatically by product billing status"
        )
    return None


STAGE_GATES: dict[str, StageGate] = {
    gate.name: gate
    for gate in (
        StageGate(
            "active_billing_lock",
            "Any Active - Billing line item locks the stage to Closed Won - Billing",
            _active_billing_lock,
        ),
        StageGate(
            "billing_ended_lock",
            "All line items ended billing locks the stage to Closed Won - Billing Ended",
            _billing_ended_lock,
        ),
        StageGate(
            "billing_requires_billing_products",
            "Closed Won - Billing needs an Active - Billing line item",
            _billing_requires_billing_products,
        ),
        StageGate(
            "billing_ended_requires_all_ended",
            "Closed Won - Billing Ended needs every line item ended",
            _billing_ended_requires_all_ended,
        ),
        StageGate(
            "won_cannot_hold",
            "A won opportunity cannot be put On Hold",
            _won_cannot_hold,
        ),
        StageGate(
            "auto_managed_stages",
            "Billing stages may only be entered by recalculation",
            _auto_managed_stages,
        ),
    )
}

DEFAULT_STAGE_GATES: tuple[str, ...] = (
    "active_billing_lock",
    "billing_ended_lock",
    "billing_requires_billing_products",
    "billing_ended_requires_all_ended",
    "won_cannot_hold",
    "auto_managed_stages",
)
