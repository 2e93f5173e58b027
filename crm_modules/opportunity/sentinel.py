"""
Module: crm_modules.opportunity.sentinel
Responsibility:
    Find-or-create the per-tenant "None-Direct" distributor account that
    stands in when a product has a vendor but no distributor, and resolve
    a product's (distributor, vendor) pair with that substitution.

Architecture:
    crm_modules layer -- writes through the caller's Session inside a
    savepoint; never commits.

Invariants:
    - At most one sentinel account per tenant, enforced by the
      ``(tenant_id, system_key)`` unique constraint, not by an in-memory
      singleton.
    - A concurrent first use is resolved by rolling back the savepoint
      and re-reading the winner's row.

Failure modes:
    - IntegrityError is handled internally; any other database error
      propagates.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_kernel.logging_config import get_logger
from crm_modules.opportunity.models import (
    AccountRef,
    AccountType,
    Product,
    VendorDistributorPair,
)
from crm_modules.opportunity.orm import AccountModel

logger = get_logger("modules.opportunity.sentinel")

NONE_DIRECT_SYSTEM_KEY = "none_direct"
NONE_DIRECT_NAME = "None-Direct"
NONE_DIRECT_DESCRIPTION = "Direct-vendor placeholder distributor"


class SentinelDistributorResolver:
    """Per-tenant None-Direct distributor lookup."""

    def __init__(self, session: Session, tenant_id: UUID, actor_id: UUID):
        self._session = session
        self._tenant_id = tenant_id
        self._actor_id = actor_id

    def _find(self) -> AccountModel | None:
        return self._session.execute(
            select(AccountModel).where(
                AccountModel.tenant_id == self._tenant_id,
                AccountModel.system_key == NONE_DIRECT_SYSTEM_KEY,
            )
        ).scalar_one_or_none()

    def resolve_none_direct(self) -> AccountRef:
        """
        Return the tenant's None-Direct distributor, creating it on first use.

        Postconditions:
            - Exactly one sentinel account exists for the tenant.
            - Repeated calls return the same account id.
        """
        account = self._find()
        if account is not None:
            return account.to_ref()

        savepoint = self._session.begin_nested()
        try:
            account = AccountModel(
                tenant_id=self._tenant_id,
                name=NONE_DIRECT_NAME,
                account_type=AccountType.DISTRIBUTOR.value,
                description=NONE_DIRECT_DESCRIPTION,
                system_key=NONE_DIRECT_SYSTEM_KEY,
                active=True,
                created_by_id=self._actor_id,
            )
            self._session.add(account)
            self._session.flush()
            savepoint.commit()
            logger.info(
                "none_direct_distributor_created",
                extra={"tenant_id": str(self._tenant_id), "account_id": str(account.id)},
            )
            return account.to_ref()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "none_direct_distributor_race_retry",
                extra={"tenant_id": str(self._tenant_id)},
            )
            account = self._find()
            assert account is not None, "sentinel vanished after IntegrityError"
            return account.to_ref()

    def resolve_pair(self, product: Product) -> VendorDistributorPair:
        """
        The pair a line item for ``product`` resolves to.

        A product with a vendor and no distributor gets the None-Direct
        sentinel as its distributor.
        """
        distributor_id = product.distributor_account_id
        if product.vendor_account_id is not None and distributor_id is None:
            distributor_id = self.resolve_none_direct().id
        return VendorDistributorPair(distributor_id, product.vendor_account_id)
