"""
Module: crm_modules.opportunity.stage
Responsibility:
    Opportunity stage state machine: stage -> status derivation, stage
    normalization, transition validation against the declared workflow
    and the configured gate policy, and recalculation of the stage from
    line-item statuses.

Architecture:
    crm_modules layer.  The module-level functions are pure; StageService
    holds a Session and is the only writer of ``stage``/``status`` outside
    of explicit stage changes in OpportunityService.

Invariants:
    - derive_status is total over OpportunityStage (checked at import
      time in workflows.py).
    - A terminal current stage rejects every desired stage, including
      itself.
    - The bare ``ClosedWon`` stage is never an accepted target.
    - Recalculation never changes a terminal stage, moves a pre-close
      stage only once billing has started, and is idempotent:
      running it twice without intervening changes writes nothing the
      second time.
    - recalculate_safely never raises; failures are logged and the
      session rolled back.

Failure modes:
    - ValidationError from normalize_stage and normalize_line_item_status
      on unknown values.
    - TransitionRejectedError from validate_transition.
    - OpportunityNotFoundError from StageService.recalculate.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_kernel.exceptions import OpportunityNotFoundError, TransitionRejectedError, ValidationError
from crm_kernel.logging_config import LogContext, get_logger
from crm_modules.opportunity.models import (
    LineItemStatus,
    LineItemView,
    OpportunityStage,
    OpportunityStatus,
    StageRecalculation,
)
from crm_modules.opportunity.orm import LineItemModel, OpportunityModel
from crm_modules.opportunity.workflows import (
    DEFAULT_STAGE_GATES,
    OPPORTUNITY_STAGE_WORKFLOW,
    STAGE_GATES,
    STAGE_LABELS,
    STAGE_STATUS,
    TERMINAL_STAGES,
    WON_FAMILY,
)

logger = get_logger("modules.opportunity.stage")

S = OpportunityStage

_LEGACY_STAGE_NAMES = {
    "Discovery": S.NEEDS_ANALYSIS,
}


def derive_status(stage: OpportunityStage) -> OpportunityStatus:
    """Coarse status for a stage.  Pure, total, never fails."""
    return STAGE_STATUS[stage]


def is_terminal(stage: OpportunityStage) -> bool:
    return OPPORTUNITY_STAGE_WORKFLOW.is_terminal(stage.value)


def normalize_stage(value: OpportunityStage | str) -> OpportunityStage:
    """
    Map a raw stage value onto ``OpportunityStage``.

    Accepts enum members, stored values and legacy names (``Discovery``).

    Raises:
        ValidationError: unknown or empty stage.
    """
    if isinstance(value, OpportunityStage):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("stage", value, "stage is required")
    raw = value.strip()
    if raw in _LEGACY_STAGE_NAMES:
        return _LEGACY_STAGE_NAMES[raw]
    try:
        return OpportunityStage(raw)
    except ValueError:
        raise ValidationError("stage", value, "unknown stage") from None


def normalize_line_item_status(value: LineItemStatus | str) -> LineItemStatus:
    """
    Map a raw line-item status onto ``LineItemStatus``.

    Raises:
        ValidationError: unknown status.
    """
    if isinstance(value, LineItemStatus):
        return value
    try:
        return LineItemStatus(value.strip() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError("status", value, "unknown line item status") from None


def normalize_target_stage(value: OpportunityStage | str) -> OpportunityStage:
    """Like normalize_stage, with bare ``ClosedWon`` mapped to provisioning."""
    stage = normalize_stage(value)
    if stage is S.CLOSED_WON:
        return S.CLOSED_WON_PROVISIONING
    return stage


def validate_transition(
    desired: OpportunityStage,
    current: OpportunityStage,
    line_items: Sequence[LineItemView] = (),
    gates: Iterable[str] = DEFAULT_STAGE_GATES,
) -> None:
    """
    Check that an opportunity may move from ``current`` to ``desired``.

    Preconditions:
        - Callers normalize ``ClosedWon`` to ``ClosedWon_Provisioning``
          (normalize_target_stage) before calling.
        - ``line_items`` are the opportunity's line items.

    Postconditions:
        - Returns None when the move is legal.

    Raises:
        TransitionRejectedError: ``rule`` is ``terminal_stage``,
            ``bare_closed_won``, ``undeclared_transition`` or the name of
            the failing gate; gate failures list offending line items.
    """
    if is_terminal(current):
        raise TransitionRejectedError(
            current.value, desired.value, "terminal_stage",
            f"{STAGE_LABELS[current]} is final; create a new opportunity instead",
        )

    if desired is S.CLOSED_WON:
        raise TransitionRejectedError(
            current.value, desired.value, "bare_closed_won",
            "use Closed Won - Provisioning instead of bare Closed Won",
        )

    # Stored legacy rows behave like provisioning
    effective = S.CLOSED_WON_PROVISIONING if current is S.CLOSED_WON else current

    if desired is not effective:
        if OPPORTUNITY_STAGE_WORKFLOW.find_transition(effective.value, desired.value) is None:
            raise TransitionRejectedError(
                current.value, desired.value, "undeclared_transition",
                f"{STAGE_LABELS[current]} cannot move to {STAGE_LABELS[desired]}",
            )

    for gate_name in gates:
        gate = STAGE_GATES[gate_name]
        failure = gate.check(desired, effective, line_items)
        if failure is not None:
            logger.info(
                "stage_gate_failed",
                extra={
                    "gate": gate.name,
                    "current_stage": current.value,
                    "desired_stage": desired.value,
                    "offending_count": len(failure.offending),
                },
            )
            raise TransitionRejectedError(
                current.value, desired.value, gate.name, failure.reason,
                offending_line_items=tuple(li.display for li in failure.offending),
            )


def derive_stage_from_line_items(
    current: OpportunityStage,
    statuses: Sequence[LineItemStatus],
) -> OpportunityStage:
    """
    Stage implied by line-item statuses.

    Won family:

        any ActiveBilling                    -> ClosedWon_Billing
        all non-cancelled items BillingEnded -> ClosedWon_BillingEnded
        otherwise                            -> ClosedWon_Provisioning

    Pre-close stages follow the first two rules (billing has started, so
    the deal is won) and are otherwise kept.  Terminal stages are never
    changed.  With no line items, legacy ``ClosedWon`` normalizes to
    provisioning and other stages are kept.
    """
    if current in TERMINAL_STAGES:
        return current
    if not statuses:
        return S.CLOSED_WON_PROVISIONING if current is S.CLOSED_WON else current
    if LineItemStatus.ACTIVE_BILLING in statuses:
        return S.CLOSED_WON_BILLING
    relevant = [s for s in statuses if s is not LineItemStatus.CANCELLED]
    if relevant and all(s is LineItemStatus.BILLING_ENDED for s in relevant):
        return S.CLOSED_WON_BILLING_ENDED
    if current not in WON_FAMILY:
        return current
    return S.CLOSED_WON_PROVISIONING


class StageService:
    """
    Persists derived stage/status for one tenant's opportunities.

    Contract:
        ``recalculate`` flushes within the caller's transaction.
        ``recalculate_safely`` is the post-commit hook: it runs in its own
        transaction, commits on success, and on any failure logs, rolls
        back and returns None.
    """

    def __init__(self, session: Session, tenant_id: UUID, actor_id: UUID | None = None):
        self._session = session
        self._tenant_id = tenant_id
        self._actor_id = actor_id

    def _locked_opportunity(self, opportunity_id: UUID) -> OpportunityModel:
        opportunity = self._session.execute(
            select(OpportunityModel)
            .where(
                OpportunityModel.id == opportunity_id,
                OpportunityModel.tenant_id == self._tenant_id,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if opportunity is None:
            raise OpportunityNotFoundError(opportunity_id)
        return opportunity

    def line_item_statuses(self, opportunity_id: UUID) -> list[LineItemStatus]:
        rows = self._session.execute(
            select(LineItemModel.status).where(
                LineItemModel.opportunity_id == opportunity_id,
                LineItemModel.tenant_id == self._tenant_id,
            )
        ).scalars()
        return [LineItemStatus(s) for s in rows]

    def recalculate(self, opportunity_id: UUID) -> StageRecalculation:
        """
        Re-derive and persist stage/status from line-item statuses.

        Postconditions:
            - The row is written only when stage or stored status differ
              from the derived values.
        """
        opportunity = self._locked_opportunity(opportunity_id)
        previous = normalize_stage(opportunity.stage)
        stage = derive_stage_from_line_items(previous, self.line_item_statuses(opportunity_id))
        status = derive_status(stage)

        if stage.value != opportunity.stage or status.value != opportunity.status:
            opportunity.stage = stage.value
            opportunity.status = status.value
            if self._actor_id is not None:
                opportunity.updated_by_id = self._actor_id
            self._session.flush()
            logger.info(
                "opportunity_stage_recalculated",
                extra={
                    "opportunity_id": str(opportunity_id),
                    "previous_stage": previous.value,
                    "stage": stage.value,
                    "status": status.value,
                },
            )

        return StageRecalculation(
            opportunity_id=opportunity_id,
            previous_stage=previous,
            stage=stage,
            status=status,
        )

    def recalculate_safely(self, opportunity_id: UUID) -> StageRecalculation | None:
        """Best-effort recalculation in its own transaction.  Never raises."""
        with LogContext.bind(opportunity_id=opportunity_id):
            try:
                result = self.recalculate(opportunity_id)
                self._session.commit()
                return result
            except Exception:
                logger.exception(
                    "opportunity_stage_recalculation_failed",
                    extra={"opportunity_id": str(opportunity_id)},
                )
                self._session.rollback()
                return None
