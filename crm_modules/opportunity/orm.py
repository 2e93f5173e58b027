"""
Module: crm_modules.opportunity.orm
Responsibility:
    SQLAlchemy ORM persistence models for the opportunity revenue engine.
    Maps the frozen DTOs from ``crm_modules.opportunity.models`` to
    relational tables: accounts, catalog products, opportunities, line
    items and revenue schedules, plus the ledger and dependent records
    written by external subsystems (deposit matches, reconciliation
    items, deposit line items, activities, tickets).

Architecture position:
    **Modules layer** -- ORM models inheriting from ``TrackedBase``
    (kernel DB base).

Invariants enforced:
    - All monetary fields use Decimal (Numeric(38,9) via the type map).
    - Commission rates and split fractions use Numeric(38,12).
    - Enum fields stored as String(50) holding the enum value.
    - Every table carries ``tenant_id``; every query in the engine filters
      on it.
    - ``(tenant_id, system_key)`` is unique on accounts, which makes the
      sentinel distributor a storage-level singleton per tenant.
    - ``(tenant_id, schedule_number)`` is unique on revenue schedules.

Failure modes:
    - IntegrityError on duplicate unique constraints.
    - ForeignKey violation on invalid parent references.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_kernel.db.base import TrackedBase, UUIDString

RATE = Numeric(38, 12)


# =============================================================================
# Accounts and catalog
# =============================================================================


class AccountModel(TrackedBase):
    """
    A tenant-scoped account (customer, vendor, distributor).

    Guarantees:
        - ``system_key`` is unique per tenant when set
          (uq_account_tenant_system_key).
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "system_key", name="uq_account_tenant_system_key"),
        Index("idx_account_tenant_type", "tenant_id", "account_type"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(50), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_key: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_ref(self):
        from crm_modules.opportunity.models import AccountRef, AccountType

        return AccountRef(id=self.id, name=self.name, account_type=AccountType(self.account_type))


class ProductModel(TrackedBase):
    """
    Catalog product master.  A template for line items, never financial.
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_tenant_code", "tenant_id", "product_code"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    product_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_name_house: Mapped[str] = mapped_column(String(255), nullable=False)
    product_name_vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_name_distributor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    revenue_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    price_each: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission_percent: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    vendor_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True,
    )
    distributor_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True,
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    vendor: Mapped["AccountModel | None"] = relationship(
        "AccountModel", foreign_keys=[vendor_account_id], lazy="joined",
    )
    distributor: Mapped["AccountModel | None"] = relationship(
        "AccountModel", foreign_keys=[distributor_account_id], lazy="joined",
    )

    def to_dto(self):
        from crm_modules.opportunity.models import Product

        return Product(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.product_name_house,
            product_code=self.product_code,
            revenue_type=self.revenue_type,
            unit_price=self.price_each,
            commission_rate=self.commission_percent,
            vendor_account_id=self.vendor_account_id,
            distributor_account_id=self.distributor_account_id,
            vendor_name=self.vendor.name if self.vendor else None,
            distributor_name=self.distributor.name if self.distributor else None,
        )


# =============================================================================
# Opportunity
# =============================================================================


class OpportunityModel(TrackedBase):
    """
    One sales deal.

    Guarantees:
        - ``status`` is always ``derive_status(stage)``; the service writes
          both together.
        - Split fractions are in [0, 1] and sum to 1 when all present.
    """

    __tablename__ = "opportunities"

    __table_args__ = (
        Index("idx_opportunity_tenant", "tenant_id"),
        Index("idx_opportunity_stage", "tenant_id", "stage"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    stage: Mapped[str] = mapped_column(String(50), nullable=False, default="Qualification")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Open")
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=True,
    )
    owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    subagent_percent: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    house_rep_percent: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    house_split_percent: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)

    line_items: Mapped[list["LineItemModel"]] = relationship(
        "LineItemModel",
        back_populates="opportunity",
        order_by="LineItemModel.created_at",
    )

    def to_dto(self):
        from crm_modules.opportunity.models import (
            Opportunity,
            OpportunityStage,
            OpportunityStatus,
        )

        return Opportunity(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            stage=OpportunityStage(self.stage),
            status=OpportunityStatus(self.status),
            active=self.active,
            account_id=self.account_id,
            owner_id=self.owner_id,
            subagent_percent=self.subagent_percent,
            house_rep_percent=self.house_rep_percent,
            house_split_percent=self.house_split_percent,
        )


class LineItemModel(TrackedBase):
    """
    A product sold on an opportunity, with a catalog snapshot.

    Guarantees:
        - ``product_*`` snapshot columns are written once at creation.
        - ``(distributor_account_id, vendor_account_id)`` is the resolved
          pair checked by the consistency enforcer.
    """

    __tablename__ = "opportunity_line_items"

    __table_args__ = (
        Index("idx_line_item_opportunity", "tenant_id", "opportunity_id"),
        Index("idx_line_item_product", "product_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    opportunity_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("opportunities.id"), nullable=False,
    )
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Provisioning")
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Snapshot of the catalog product at creation
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    revenue_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    product_unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission_rate: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    distributor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    distributor_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    vendor_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    expected_revenue: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_usage: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_commission: Mapped[Decimal | None] = mapped_column(nullable=True)
    revenue_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    revenue_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    opportunity: Mapped["OpportunityModel"] = relationship(
        "OpportunityModel", back_populates="line_items",
    )
    schedules: Mapped[list["RevenueScheduleModel"]] = relationship(
        "RevenueScheduleModel",
        back_populates="line_item",
        order_by="RevenueScheduleModel.schedule_date",
    )

    def to_dto(self):
        from crm_modules.opportunity.models import LineItem, LineItemStatus

        return LineItem(
            id=self.id,
            tenant_id=self.tenant_id,
            opportunity_id=self.opportunity_id,
            product_id=self.product_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            status=LineItemStatus(self.status),
            active=self.active,
            product_name=self.product_name,
            product_code=self.product_code,
            revenue_type=self.revenue_type,
            product_unit_price=self.product_unit_price,
            commission_rate=self.commission_rate,
            vendor_name=self.vendor_name,
            distributor_name=self.distributor_name,
            distributor_account_id=self.distributor_account_id,
            vendor_account_id=self.vendor_account_id,
            expected_revenue=self.expected_revenue,
            expected_usage=self.expected_usage,
            expected_commission=self.expected_commission,
            revenue_start_date=self.revenue_start_date,
            revenue_end_date=self.revenue_end_date,
        )

    def to_view(self):
        from crm_modules.opportunity.models import LineItemStatus, LineItemView

        return LineItemView(
            line_item_id=self.id,
            status=LineItemStatus(self.status),
            label=self.product_name,
        )


# =============================================================================
# Revenue schedules
# =============================================================================


class RevenueScheduleModel(TrackedBase):
    """
    One billing period's expected and posted usage/commission.

    Guarantees:
        - ``schedule_number`` is unique per tenant
          (uq_revenue_schedule_number).
        - ``schedule_date`` is always the first of a month.
        - ``actual_*`` columns are written by reconciliation only.
    """

    __tablename__ = "revenue_schedules"

    __table_args__ = (
        UniqueConstraint("tenant_id", "schedule_number", name="uq_revenue_schedule_number"),
        Index("idx_revenue_schedule_line_item", "line_item_id"),
        Index("idx_revenue_schedule_opportunity", "tenant_id", "opportunity_id"),
        Index("idx_revenue_schedule_date", "schedule_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    line_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("opportunity_line_items.id"), nullable=True,
    )
    opportunity_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("opportunities.id"), nullable=True,
    )
    account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    product_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    distributor_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    vendor_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    schedule_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    schedule_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Projected")

    expected_usage: Mapped[Decimal | None] = mapped_column(nullable=True)
    usage_adjustment: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_usage: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_usage_adjustment: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_commission: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission_adjustment: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_commission: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_commission_adjustment: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_commission_rate: Mapped[Decimal | None] = mapped_column(RATE, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    line_item: Mapped["LineItemModel | None"] = relationship(
        "LineItemModel", back_populates="schedules",
    )

    def to_dto(self):
        from crm_modules.opportunity.models import RevenueSchedule, ScheduleStatus

        return RevenueSchedule(
            id=self.id,
            tenant_id=self.tenant_id,
            line_item_id=self.line_item_id,
            opportunity_id=self.opportunity_id,
            schedule_number=self.schedule_number,
            schedule_date=self.schedule_date,
            status=ScheduleStatus(self.status),
            expected_usage=self.expected_usage,
            usage_adjustment=self.usage_adjustment,
            actual_usage=self.actual_usage,
            actual_usage_adjustment=self.actual_usage_adjustment,
            expected_commission=self.expected_commission,
            commission_adjustment=self.commission_adjustment,
            actual_commission=self.actual_commission,
            actual_commission_adjustment=self.actual_commission_adjustment,
            expected_commission_rate=self.expected_commission_rate,
        )


# =============================================================================
# Ledger and dependent records (written by external subsystems)
# =============================================================================


class DepositLineItemModel(TrackedBase):
    """A line on a vendor deposit, optionally pointing at its primary schedule."""

    __tablename__ = "deposit_line_items"

    __table_args__ = (
        Index("idx_deposit_line_primary_schedule", "primary_revenue_schedule_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    primary_revenue_schedule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("revenue_schedules.id"), nullable=True,
    )
    usage: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission: Mapped[Decimal | None] = mapped_column(nullable=True)


class DepositLineMatchModel(TrackedBase):
    """Allocation of a deposit line to a revenue schedule."""

    __tablename__ = "deposit_line_matches"

    __table_args__ = (
        Index("idx_deposit_match_schedule", "revenue_schedule_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    revenue_schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("revenue_schedules.id"), nullable=False,
    )
    deposit_line_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("deposit_line_items.id"), nullable=True,
    )
    usage_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission_amount: Mapped[Decimal | None] = mapped_column(nullable=True)


class ReconciliationItemModel(TrackedBase):
    __tablename__ = "reconciliation_items"

    __table_args__ = (
        Index("idx_reconciliation_item_schedule", "revenue_schedule_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    revenue_schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("revenue_schedules.id"), nullable=False,
    )
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)


class ActivityModel(TrackedBase):
    __tablename__ = "activities"

    __table_args__ = (
        Index("idx_activity_schedule", "revenue_schedule_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    revenue_schedule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("revenue_schedules.id"), nullable=True,
    )
    opportunity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)


class TicketModel(TrackedBase):
    __tablename__ = "tickets"

    __table_args__ = (
        Index("idx_ticket_schedule", "revenue_schedule_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    revenue_schedule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("revenue_schedules.id"), nullable=True,
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
