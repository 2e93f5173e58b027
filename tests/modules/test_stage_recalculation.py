"""
Tests for persisted stage recalculation.

Validates:
- Won-family stages follow line-item billing statuses
- Recalculation is idempotent
- Pre-close stages follow billing evidence and are otherwise kept
- A failing recalculation never fails the triggering mutation
"""

from unittest.mock import patch

from crm_modules.opportunity.models import (
    LineItemStatus,
    OpportunityStage,
    OpportunityStatus,
)
from crm_modules.opportunity.orm import OpportunityModel
from crm_modules.opportunity.stage import StageService
from tests.modules.conftest import TEST_PRODUCT_ID

S = OpportunityStage
L = LineItemStatus


def _won(service, opportunity):
    """Add one provisioning line item and close the opportunity as won."""
    line_item = service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1)
    service.change_stage(opportunity.id, "ClosedWon")
    return line_item


class TestRecalculateAfterMutations:

    def test_close_won_lands_in_provisioning(self, service, opportunity):
        _won(service, opportunity)
        won = service.get_opportunity(opportunity.id)
        assert won.stage is S.CLOSED_WON_PROVISIONING
        assert won.status is OpportunityStatus.WON

    def test_active_billing_moves_to_billing(self, service, opportunity):
        _won(service, opportunity)
        line_item = service.create_line_item(
            opportunity.id, TEST_PRODUCT_ID, quantity=1, status=L.ACTIVE_BILLING,
        )
        assert service.get_opportunity(opportunity.id).stage is S.CLOSED_WON_BILLING

        service.update_line_item(line_item.id, status=L.PROVISIONING)
        assert service.get_opportunity(opportunity.id).stage is S.CLOSED_WON_PROVISIONING

    def test_all_billing_ended(self, service, opportunity):
        line_item = _won(service, opportunity)
        service.update_line_item(line_item.id, status=L.BILLING_ENDED)

        refreshed = service.get_opportunity(opportunity.id)
        assert refreshed.stage is S.CLOSED_WON_BILLING_ENDED
        assert refreshed.status is OpportunityStatus.WON

    def test_pre_close_stage_follows_active_billing(self, service, opportunity):
        line_item = service.create_line_item(
            opportunity.id, TEST_PRODUCT_ID, quantity=1, status=L.ACTIVE_BILLING,
        )
        billing = service.get_opportunity(opportunity.id)
        assert billing.stage is S.CLOSED_WON_BILLING
        assert billing.status is OpportunityStatus.WON

        # The opportunity is not stuck: once billing stops it can be reopened
        service.update_line_item(line_item.id, status=L.PROVISIONING)
        assert service.get_opportunity(opportunity.id).stage is S.CLOSED_WON_PROVISIONING
        reopened = service.change_stage(opportunity.id, S.NEGOTIATION)
        assert reopened.stage is S.NEGOTIATION
        assert reopened.status is OpportunityStatus.OPEN

    def test_pre_close_stage_follows_ended_billing(self, service, opportunity):
        service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1, status=L.BILLING_ENDED)
        assert service.get_opportunity(opportunity.id).stage is S.CLOSED_WON_BILLING_ENDED

    def test_pre_close_stage_kept_while_provisioning(self, service, opportunity):
        service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1)
        service.change_stage(opportunity.id, S.PROPOSAL)
        assert service.get_opportunity(opportunity.id).stage is S.PROPOSAL

    def test_lost_stage_untouched(self, service, opportunity):
        service.change_stage(opportunity.id, S.CLOSED_LOST)
        service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1, status=L.ACTIVE_BILLING)
        assert service.get_opportunity(opportunity.id).stage is S.CLOSED_LOST


class TestStageService:

    def test_idempotent(self, service, session, tenant_id, actor_id, opportunity):
        _won(service, opportunity)
        service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1, status=L.ACTIVE_BILLING)

        stage_service = StageService(session, tenant_id, actor_id)
        first = stage_service.recalculate(opportunity.id)
        second = stage_service.recalculate(opportunity.id)
        session.commit()

        assert first.stage is S.CLOSED_WON_BILLING
        assert not second.changed

    def test_legacy_closed_won_normalized(self, service, session, tenant_id, opportunity):
        row = session.get(OpportunityModel, opportunity.id)
        row.stage = S.CLOSED_WON.value
        row.status = OpportunityStatus.WON.value
        session.commit()

        result = StageService(session, tenant_id).recalculate_safely(opportunity.id)
        assert result.previous_stage is S.CLOSED_WON
        assert result.stage is S.CLOSED_WON_PROVISIONING
        assert result.changed

    def test_stale_status_repaired(self, service, session, tenant_id, opportunity):
        _won(service, opportunity)
        row = session.get(OpportunityModel, opportunity.id)
        row.status = OpportunityStatus.OPEN.value
        session.commit()

        StageService(session, tenant_id).recalculate_safely(opportunity.id)
        assert service.get_opportunity(opportunity.id).status is OpportunityStatus.WON

    def test_recalculated_logged(self, service, opportunity, captured_logs):
        _won(service, opportunity)
        service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1, status=L.ACTIVE_BILLING)

        events = [r for r in captured_logs() if r["message"] == "opportunity_stage_recalculated"]
        assert events[-1]["stage"] == S.CLOSED_WON_BILLING.value


class TestBestEffort:

    def test_failure_does_not_fail_mutation(self, service, session, opportunity, captured_logs):
        with patch.object(StageService, "recalculate", side_effect=RuntimeError("db gone")):
            line_item = service.create_line_item(opportunity.id, TEST_PRODUCT_ID, quantity=1)

        assert service.get_line_item(line_item.id).id == line_item.id
        failures = [r for r in captured_logs() if r["message"] == "opportunity_stage_recalculation_failed"]
        assert failures[0]["exc_type"] == "RuntimeError"

    def test_recalculate_stage_returns_none_on_failure(self, service, opportunity):
        with patch.object(StageService, "recalculate", side_effect=RuntimeError("boom")):
            assert service.recalculate_stage(opportunity.id) is None

    def test_unknown_opportunity_returns_none(self, service):
        from uuid import uuid4

        assert service.recalculate_stage(uuid4()) is None
