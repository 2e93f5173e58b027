"""
Module: crm_modules.opportunity.service
Responsibility:
    Orchestration facade for the opportunity revenue engine.  Coordinates
    the consistency enforcer, sentinel resolver, schedule generator,
    deletion guard and stage service around each write, and exposes the
    pure rollup and transition checks to callers.

Architecture:
    crm_modules layer -- stateful only insofar as it holds a Session and
    commits/rolls back.  Each public write method owns its transaction
    boundary.

    Dependency direction (strict):
        service.py  -->  crm_kernel.services  (SequenceService)
        service.py  -->  crm_modules.opportunity.* (helpers, guards)
        service.py  -X-> crm_config           (config is injected)

Invariants:
    - Each public write commits on success and rolls back on failure.
    - The opportunity row is locked (SELECT ... FOR UPDATE) before the
      consistency check so concurrent line-item writes serialize.
    - Stage recalculation runs after the primary commit in its own
      transaction; its failure never fails the primary operation.
    - The ``invalidate`` hook runs after commit; its failures are logged.
    - The engine writes no audit records.

Failure modes:
    - NotFoundError subclasses for unknown or foreign-tenant records.
    - ValidationError, TransitionRejectedError, DeactivationBlockedError,
      VendorDistributorMismatchError, DeletionBlockedError,
      MissingAccountError -- all raised before commit, session rolled back.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from crm_kernel.db.types import round_money
from crm_kernel.domain.values import ZERO, normalize_percent, to_decimal, to_optional_decimal
from crm_kernel.exceptions import (
    DeactivationBlockedError,
    LineItemNotFoundError,
    MissingAccountError,
    NotFoundError,
    OpportunityNotFoundError,
    ProductNotFoundError,
    TransitionRejectedError,
    ValidationError,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_kernel.services.sequence_service import SequenceService
from crm_modules.opportunity.config import OpportunityConfig
from crm_modules.opportunity.consistency import ConsistencyEnforcer
from crm_modules.opportunity.deletion import CascadeResult, DeletionGuard
from crm_modules.opportunity.helpers import (
    compute_rollup,
    compute_split_payouts,
    derive_reconciliation_status,
    resolve_split_percentages,
    total_expected_revenue,
)
from crm_modules.opportunity.ledger import LedgerCounts, LedgerReader, OrmLedgerReader
from crm_modules.opportunity.models import (
    OPEN_SCHEDULE_STATUSES,
    DeletionDecision,
    LineItem,
    LineItemStatus,
    LineItemView,
    Opportunity,
    OpportunityStage,
    Product,
    RevenueSchedule,
    RollupResult,
    ScheduleRequest,
    ScheduleRollup,
    ScheduleStatus,
    SplitDisplayMode,
    SplitPayouts,
    StageRecalculation,
    VendorDistributorPair,
)
from crm_modules.opportunity.orm import (
    LineItemModel,
    OpportunityModel,
    ProductModel,
    RevenueScheduleModel,
)
from crm_modules.opportunity.schedules import RevenueScheduleGenerator
from crm_modules.opportunity.sentinel import NONE_DIRECT_NAME, SentinelDistributorResolver
from crm_modules.opportunity.stage import (
    StageService,
    derive_status,
    is_terminal,
    normalize_line_item_status,
    normalize_stage,
    normalize_target_stage,
    validate_transition,
)

logger = get_logger("modules.opportunity.service")

InvalidateHook = Callable[[str, UUID], None]


class OpportunityService:
    """
    Opportunity revenue engine facade for one tenant and actor.

    Contract:
        Callers supply a live SQLAlchemy Session, the tenant and actor ids,
        and optionally an OpportunityConfig, a LedgerReader and an
        ``invalidate(entity, id)`` hook.  Each public write method owns its
        own transaction boundary (commit on success, rollback on failure).

    Guarantees:
        - All returned records are frozen DTOs.
        - Every query is scoped to ``tenant_id``.

    Non-goals:
        - Does NOT write audit records; the host wraps calls for that.
        - Does NOT check permissions.
    """

    def __init__(
        self,
        session: Session,
        tenant_id: UUID,
        actor_id: UUID,
        config: OpportunityConfig | None = None,
        ledger: LedgerReader | None = None,
        invalidate: InvalidateHook | None = None,
        sequence: SequenceService | None = None,
    ):
        self._session = session
        self._tenant_id = tenant_id
        self._actor_id = actor_id
        self._config = config or OpportunityConfig.with_defaults()
        self._invalidate = invalidate
        self._ledger = ledger or OrmLedgerReader(session, tenant_id)

        self._consistency = ConsistencyEnforcer(session, tenant_id)
        self._sentinel = SentinelDistributorResolver(session, tenant_id, actor_id)
        self._schedules = RevenueScheduleGenerator(
            session,
            tenant_id,
            actor_id,
            sequence=sequence,
            number_floor=self._config.schedule_number_floor,
        )
        self._deletion = DeletionGuard(
            session,
            tenant_id,
            ledger=self._ledger,
            applied_money_tolerance=self._config.applied_money_tolerance,
        )
        self._stage = StageService(session, tenant_id, actor_id)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _opportunity(self, opportunity_id: UUID, lock: bool = False) -> OpportunityModel:
        stmt = select(OpportunityModel).where(
            OpportunityModel.id == opportunity_id,
            OpportunityModel.tenant_id == self._tenant_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        opportunity = self._session.execute(stmt).scalar_one_or_none()
        if opportunity is None:
            raise OpportunityNotFoundError(opportunity_id)
        return opportunity

    def _line_item(self, line_item_id: UUID) -> LineItemModel:
        line_item = self._session.execute(
            select(LineItemModel).where(
                LineItemModel.id == line_item_id,
                LineItemModel.tenant_id == self._tenant_id,
            )
        ).scalar_one_or_none()
        if line_item is None:
            raise LineItemNotFoundError(line_item_id)
        return line_item

    def _product(self, product_id: UUID) -> ProductModel:
        product = self._session.execute(
            select(ProductModel).where(
                ProductModel.id == product_id,
                ProductModel.tenant_id == self._tenant_id,
            )
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def _line_item_views(self, opportunity_id: UUID) -> list[LineItemView]:
        rows = self._session.execute(
            select(LineItemModel)
            .where(
                LineItemModel.opportunity_id == opportunity_id,
                LineItemModel.tenant_id == self._tenant_id,
            )
            .order_by(LineItemModel.created_at, LineItemModel.id)
        ).scalars()
        return [li.to_view() for li in rows]

    def get_opportunity(self, opportunity_id: UUID) -> Opportunity:
        return self._opportunity(opportunity_id).to_dto()

    def get_line_item(self, line_item_id: UUID) -> LineItem:
        return self._line_item(line_item_id).to_dto()

    # =========================================================================
    # Post-commit hooks
    # =========================================================================

    def _after_commit(self, entity: str, entity_id: UUID, opportunity_id: UUID | None) -> None:
        if opportunity_id is not None:
            self.recalculate_stage(opportunity_id)
        if self._invalidate is None:
            return
        try:
            self._invalidate(entity, entity_id)
            if opportunity_id is not None and entity != "opportunity":
                self._invalidate("opportunity", opportunity_id)
        except Exception:
            logger.exception(
                "invalidate_hook_failed",
                extra={"entity": entity, "entity_id": str(entity_id)},
            )

    def recalculate_stage(self, opportunity_id: UUID) -> StageRecalculation | None:
        """
        Best-effort stage recalculation in its own transaction.

        Postconditions:
            - Never raises; returns None when recalculation failed.
        """
        return self._stage.recalculate_safely(opportunity_id)

    # =========================================================================
    # Opportunities
    # =========================================================================

    def create_opportunity(
        self,
        name: str,
        account_id: UUID | None = None,
        owner_id: UUID | None = None,
        stage: OpportunityStage | str = OpportunityStage.QUALIFICATION,
        subagent_percent=None,
        house_rep_percent=None,
        house_split_percent=None,
        opportunity_id: UUID | None = None,
    ) -> Opportunity:
        """
        Create an opportunity with derived status and resolved splits.

        Postconditions:
            - ``status`` equals derive_status(stage).
            - An omitted house split is derived from the other two.

        Raises:
            ValidationError: empty name, bad stage or percentages.
            TransitionRejectedError: a stage not reachable from
                Qualification.
        """
        if not name or not name.strip():
            raise ValidationError("name", name, "name is required")
        desired = normalize_target_stage(stage)
        validate_transition(desired, OpportunityStage.QUALIFICATION, (), self._config.stage_gates)
        splits = resolve_split_percentages(
            subagent_percent,
            house_rep_percent,
            house_split_percent,
            self._config.split_sum_tolerance,
        )

        try:
            opportunity = OpportunityModel(
                id=opportunity_id or uuid4(),
                tenant_id=self._tenant_id,
                name=name.strip(),
                stage=desired.value,
                status=derive_status(desired).value,
                active=True,
                account_id=account_id,
                owner_id=owner_id,
                subagent_percent=splits.subagent,
                house_rep_percent=splits.house_rep,
                house_split_percent=splits.house,
                created_by_id=self._actor_id,
            )
            self._session.add(opportunity)
            self._session.flush()
            result = opportunity.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "opportunity_created",
            extra={"opportunity_id": str(result.id), "stage": result.stage.value},
        )
        self._after_commit("opportunity", result.id, None)
        return result

    def update_split_percentages(
        self,
        opportunity_id: UUID,
        subagent_percent=None,
        house_rep_percent=None,
        house_split_percent=None,
    ) -> Opportunity:
        """Replace the three split fractions (house derived when omitted)."""
        splits = resolve_split_percentages(
            subagent_percent,
            house_rep_percent,
            house_split_percent,
            self._config.split_sum_tolerance,
        )
        try:
            opportunity = self._opportunity(opportunity_id, lock=True)
            opportunity.subagent_percent = splits.subagent
            opportunity.house_rep_percent = splits.house_rep
            opportunity.house_split_percent = splits.house
            opportunity.updated_by_id = self._actor_id
            self._session.flush()
            result = opportunity.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        self._after_commit("opportunity", opportunity_id, None)
        return result

    def validate_stage_transition(
        self,
        desired: OpportunityStage | str,
        current: OpportunityStage | str,
        line_items: Sequence[LineItemView] = (),
    ) -> None:
        """validate_transition with this service's configured gates."""
        validate_transition(
            normalize_stage(desired),
            normalize_stage(current),
            line_items,
            self._config.stage_gates,
        )

    def change_stage(self, opportunity_id: UUID, desired: OpportunityStage | str) -> Opportunity:
        """
        Move an opportunity to ``desired`` after transition validation.

        Preconditions:
            - Bare ``ClosedWon`` is accepted and normalized to provisioning.

        Postconditions:
            - Stage and status are written together, then recalculated.

        Raises:
            TransitionRejectedError: terminal current stage, undeclared
                edge, or failing gate.
        """
        target = normalize_target_stage(desired)
        with LogContext.bind(opportunity_id=opportunity_id):
            try:
                opportunity = self._opportunity(opportunity_id, lock=True)
                current = normalize_stage(opportunity.stage)
                validate_transition(
                    target,
                    current,
                    self._line_item_views(opportunity_id),
                    self._config.stage_gates,
                )
                opportunity.stage = target.value
                opportunity.status = derive_status(target).value
                opportunity.updated_by_id = self._actor_id
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "opportunity_stage_changed",
                extra={"previous_stage": current.value, "stage": target.value},
            )
            self._after_commit("opportunity", opportunity_id, opportunity_id)
            return self.get_opportunity(opportunity_id)

    def set_active(
        self,
        opportunity_id: UUID,
        active: bool,
        bypass_constraints: bool = False,
    ) -> Opportunity:
        """
        Activate or deactivate an opportunity.

        Raises:
            DeactivationBlockedError: deactivating while live schedules are
                Unreconciled, Underpaid or Overpaid, without bypass.
            TransitionRejectedError: reactivating a terminal-stage
                opportunity (bypass does not apply).
        """
        try:
            opportunity = self._opportunity(opportunity_id, lock=True)
            stage = normalize_stage(opportunity.stage)

            if active and not opportunity.active and is_terminal(stage):
                raise TransitionRejectedError(
                    stage.value, stage.value, "terminal_reactivation",
                    "a closed opportunity cannot be reactivated; create a new opportunity instead",
                )

            if not active and opportunity.active and not bypass_constraints:
                open_numbers = self._session.execute(
                    select(RevenueScheduleModel.schedule_number)
                    .where(
                        RevenueScheduleModel.opportunity_id == opportunity_id,
                        RevenueScheduleModel.tenant_id == self._tenant_id,
                        RevenueScheduleModel.deleted_at.is_(None),
                        RevenueScheduleModel.status.in_([s.value for s in OPEN_SCHEDULE_STATUSES]),
                    )
                    .order_by(RevenueScheduleModel.schedule_date)
                ).scalars().all()
                if open_numbers:
                    raise DeactivationBlockedError(
                        opportunity_id,
                        stage.value,
                        tuple(n or "?" for n in open_numbers),
                    )

            if opportunity.active != active:
                opportunity.active = active
                opportunity.updated_by_id = self._actor_id
                self._session.flush()
                logger.info(
                    "opportunity_active_changed",
                    extra={
                        "opportunity_id": str(opportunity_id),
                        "active": active,
                        "bypass_constraints": bypass_constraints,
                    },
                )
            result = opportunity.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        self._after_commit("opportunity", opportunity_id, None)
        return result

    # =========================================================================
    # Line items
    # =========================================================================

    def assert_vendor_distributor_consistent(
        self,
        opportunity_id: UUID,
        pair: VendorDistributorPair,
        exclude_line_item_id: UUID | None = None,
    ) -> None:
        self._consistency.assert_consistent(opportunity_id, pair, exclude_line_item_id)

    def _snapshot(self, line_item: LineItemModel, product: ProductModel, pair: VendorDistributorPair) -> None:
        """Copy the catalog product onto the line item."""
        dto: Product = product.to_dto()
        line_item.product_id = product.id
        line_item.product_name = dto.name
        line_item.product_code = dto.product_code
        line_item.revenue_type = dto.revenue_type
        line_item.product_unit_price = dto.unit_price
        line_item.commission_rate = normalize_percent(dto.commission_rate, "commission_rate")
        line_item.vendor_name = dto.vendor_name
        line_item.distributor_account_id = pair.distributor_account_id
        line_item.vendor_account_id = pair.vendor_account_id
        if dto.distributor_name is None and pair.distributor_account_id is not None:
            line_item.distributor_name = NONE_DIRECT_NAME
        else:
            line_item.distributor_name = dto.distributor_name

    @staticmethod
    def _apply_expectations(line_item: LineItemModel, explicit_revenue: Decimal | None) -> None:
        revenue = total_expected_revenue(line_item.quantity, line_item.unit_price, explicit_revenue)
        line_item.expected_revenue = revenue
        line_item.expected_usage = revenue
        line_item.expected_commission = round_money(revenue * (line_item.commission_rate or ZERO))

    @staticmethod
    def _positive_quantity(quantity) -> Decimal:
        value = to_decimal(quantity, "quantity")
        if value <= 0:
            raise ValidationError("quantity", quantity, "must be greater than zero")
        return value

    def _generate(self, line_item: LineItemModel, opportunity: OpportunityModel, request: ScheduleRequest):
        return self._schedules.generate(
            line_item,
            opportunity,
            request.period_count,
            request.start_date,
            rate_override=request.rate_override,
            cadence=request.cadence or self._config.cadence,
        )

    def create_line_item(
        self,
        opportunity_id: UUID,
        product_id: UUID,
        quantity,
        unit_price=None,
        expected_revenue=None,
        status: LineItemStatus | str = LineItemStatus.PROVISIONING,
        schedule: ScheduleRequest | None = None,
        revenue_start_date=None,
    ) -> LineItem:
        """
        Add a product to an opportunity, optionally with revenue schedules.

        Preconditions:
            - ``quantity`` > 0; ``unit_price`` defaults to the product price.

        Postconditions:
            - The line item carries a snapshot of the product.
            - When ``schedule`` is given, the schedules are committed in the
              same transaction as the line item.

        Raises:
            MissingAccountError: schedules requested for an opportunity with
                no account (before any write).
            VendorDistributorMismatchError: the product's pair differs from
                the opportunity's.
        """
        qty = self._positive_quantity(quantity)
        explicit_revenue = to_optional_decimal(expected_revenue, "expected_revenue")
        item_status = normalize_line_item_status(status)

        with LogContext.bind(opportunity_id=opportunity_id):
            try:
                opportunity = self._opportunity(opportunity_id, lock=True)
                if schedule is not None and opportunity.account_id is None:
                    raise MissingAccountError(opportunity_id)
                product = self._product(product_id)

                price = to_optional_decimal(unit_price, "unit_price")
                if price is None:
                    price = product.price_each
                if price is None:
                    raise ValidationError("unit_price", unit_price, "product has no price; unit price is required")

                pair = self._sentinel.resolve_pair(product.to_dto())
                self._consistency.assert_consistent(opportunity_id, pair)

                line_item = LineItemModel(
                    tenant_id=self._tenant_id,
                    opportunity_id=opportunity_id,
                    quantity=qty,
                    unit_price=price,
                    status=item_status.value,
                    active=True,
                    revenue_start_date=revenue_start_date or (schedule.start_date if schedule else None),
                    created_by_id=self._actor_id,
                )
                self._snapshot(line_item, product, pair)
                self._apply_expectations(line_item, explicit_revenue)
                self._session.add(line_item)
                self._session.flush()

                if schedule is not None:
                    created = self._generate(line_item, opportunity, schedule)
                    line_item.revenue_end_date = created[-1].schedule_date

                result = line_item.to_dto()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "line_item_created",
                extra={
                    "line_item_id": str(result.id),
                    "product_id": str(product_id),
                    "expected_revenue": str(result.expected_revenue),
                },
            )
            self._after_commit("line_item", result.id, opportunity_id)
            return result

    def update_line_item(
        self,
        line_item_id: UUID,
        product_id: UUID | None = None,
        quantity=None,
        unit_price=None,
        expected_revenue=None,
        status: LineItemStatus | str | None = None,
        active: bool | None = None,
    ) -> LineItem:
        """
        Update a line item; a product change re-checks the pair and
        re-snapshots the catalog.

        Raises:
            VendorDistributorMismatchError: new product's pair conflicts
                with the other line items on the opportunity.
        """
        qty = self._positive_quantity(quantity) if quantity is not None else None
        price = to_optional_decimal(unit_price, "unit_price")
        explicit_revenue = to_optional_decimal(expected_revenue, "expected_revenue")
        new_status = normalize_line_item_status(status) if status is not None else None

        try:
            line_item = self._line_item(line_item_id)
            opportunity_id = line_item.opportunity_id
            self._opportunity(opportunity_id, lock=True)

            reprice = False
            if product_id is not None and product_id != line_item.product_id:
                product = self._product(product_id)
                pair = self._sentinel.resolve_pair(product.to_dto())
                self._consistency.assert_consistent(
                    opportunity_id, pair, exclude_line_item_id=line_item_id,
                )
                self._snapshot(line_item, product, pair)
                if price is None and product.price_each is not None:
                    price = product.price_each
                reprice = True
            if qty is not None:
                line_item.quantity = qty
                reprice = True
            if price is not None:
                line_item.unit_price = price
                reprice = True
            if reprice or explicit_revenue is not None:
                self._apply_expectations(line_item, explicit_revenue)
            if new_status is not None:
                line_item.status = new_status.value
            if active is not None:
                line_item.active = active
            line_item.updated_by_id = self._actor_id

            self._session.flush()
            result = line_item.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("line_item_updated", extra={"line_item_id": str(line_item_id)})
        self._after_commit("line_item", line_item_id, opportunity_id)
        return result

    def clone_line_item(self, line_item_id: UUID) -> LineItem:
        """
        Copy a line item (snapshot included) onto the same opportunity.

        Postconditions:
            - The clone starts in Provisioning with no schedules.
        """
        try:
            source = self._line_item(line_item_id)
            opportunity_id = source.opportunity_id
            self._opportunity(opportunity_id, lock=True)
            self._consistency.assert_consistent(
                opportunity_id,
                VendorDistributorPair(source.distributor_account_id, source.vendor_account_id),
            )

            clone = LineItemModel(
                tenant_id=self._tenant_id,
                opportunity_id=opportunity_id,
                product_id=source.product_id,
                quantity=source.quantity,
                unit_price=source.unit_price,
                status=LineItemStatus.PROVISIONING.value,
                active=True,
                product_name=source.product_name,
                product_code=source.product_code,
                revenue_type=source.revenue_type,
                product_unit_price=source.product_unit_price,
                commission_rate=source.commission_rate,
                vendor_name=source.vendor_name,
                distributor_name=source.distributor_name,
                distributor_account_id=source.distributor_account_id,
                vendor_account_id=source.vendor_account_id,
                expected_revenue=source.expected_revenue,
                expected_usage=source.expected_usage,
                expected_commission=source.expected_commission,
                created_by_id=self._actor_id,
            )
            self._session.add(clone)
            self._session.flush()
            result = clone.to_dto()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "line_item_cloned",
            extra={"source_line_item_id": str(line_item_id), "line_item_id": str(result.id)},
        )
        self._after_commit("line_item", result.id, opportunity_id)
        return result

    def can_delete_line_item(self, line_item_id: UUID) -> DeletionDecision:
        return self._deletion.can_delete(line_item_id)

    def delete_line_item_cascade(self, line_item_id: UUID) -> CascadeResult:
        """
        Delete a line item with its schedules and dependents, atomically.

        Raises:
            DeletionBlockedError: applied monies or ledger links present.
        """
        try:
            line_item = self._line_item(line_item_id)
            self._opportunity(line_item.opportunity_id, lock=True)
            result = self._deletion.delete_cascade(line_item_id)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        self._after_commit("line_item", line_item_id, result.opportunity_id)
        return result

    # =========================================================================
    # Schedules and rollups
    # =========================================================================

    def generate_schedules(
        self,
        line_item_id: UUID,
        period_count: int,
        start_date,
        rate_override=None,
        cadence=None,
    ) -> list[RevenueSchedule]:
        """
        Generate revenue schedules for an existing line item.

        Raises:
            MissingAccountError: the opportunity has no account.
        """
        request = ScheduleRequest(period_count, start_date, rate_override, cadence)
        try:
            line_item = self._line_item(line_item_id)
            opportunity = self._opportunity(line_item.opportunity_id, lock=True)
            created = self._generate(line_item, opportunity, request)
            result = [s.to_dto() for s in created]
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        self._after_commit("line_item", line_item_id, None)
        return result

    @staticmethod
    def compute_rollup(
        schedule: RevenueSchedule,
        line_item: LineItem | None = None,
        product: Product | None = None,
    ) -> RollupResult:
        return compute_rollup(schedule, line_item, product)

    def schedule_rollups(self, opportunity_id: UUID) -> list[ScheduleRollup]:
        """Rollups for every live schedule on an opportunity, by date."""
        self._opportunity(opportunity_id)
        schedules = self._session.execute(
            select(RevenueScheduleModel)
            .where(
                RevenueScheduleModel.opportunity_id == opportunity_id,
                RevenueScheduleModel.tenant_id == self._tenant_id,
                RevenueScheduleModel.deleted_at.is_(None),
            )
            .order_by(RevenueScheduleModel.schedule_date, RevenueScheduleModel.schedule_number)
        ).scalars().all()

        line_items: dict[UUID, LineItem] = {}
        results = []
        for schedule in schedules:
            line_item = None
            if schedule.line_item_id is not None:
                if schedule.line_item_id not in line_items:
                    line_items[schedule.line_item_id] = self._line_item(schedule.line_item_id).to_dto()
                line_item = line_items[schedule.line_item_id]
            dto = schedule.to_dto()
            results.append(ScheduleRollup(schedule=dto, rollup=compute_rollup(dto, line_item)))
        return results

    def reconciliation_status(self, schedule_id: UUID) -> ScheduleStatus:
        """
        Status a schedule would take given its rollup and deposit matches.

        Read-only; the reconciliation subsystem owns writing the status.
        """
        schedule = self._session.execute(
            select(RevenueScheduleModel).where(
                RevenueScheduleModel.id == schedule_id,
                RevenueScheduleModel.tenant_id == self._tenant_id,
            )
        ).scalar_one_or_none()
        if schedule is None:
            raise NotFoundError("Revenue schedule", schedule_id)

        line_item = None
        if schedule.line_item_id is not None:
            line_item = self._line_item(schedule.line_item_id).to_dto()
        rollup = compute_rollup(schedule.to_dto(), line_item)
        counts = self._ledger.counts([schedule_id]).get(schedule_id, LedgerCounts())
        return derive_reconciliation_status(
            rollup,
            counts.deposit_matches,
            self._config.reconciliation_variance_tolerance,
        )

    def split_payouts(
        self,
        opportunity_id: UUID,
        total_or_rollup: Decimal | RollupResult,
        mode: SplitDisplayMode = SplitDisplayMode.AMOUNT,
    ) -> SplitPayouts:
        """Split a commission figure using the opportunity's stored fractions."""
        opportunity = self._opportunity(opportunity_id)
        return compute_split_payouts(
            total_or_rollup,
            opportunity.house_split_percent,
            opportunity.house_rep_percent,
            opportunity.subagent_percent,
            mode,
        )
