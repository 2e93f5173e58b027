"""
Shared fixtures for opportunity module tests.

Provides the accounts and catalog products the engine reads.  All IDs are
deterministic so failures are easy to trace.

Every fixture is opt-in.  No autouse.  Each test declares which records
it depends on in its signature.
"""

from decimal import Decimal
from uuid import UUID

import pytest

from crm_modules.opportunity.models import AccountType
from crm_modules.opportunity.orm import AccountModel, ProductModel
from crm_modules.opportunity.service import OpportunityService

TEST_CUSTOMER_ID = UUID("00000000-0000-4000-a000-000000000001")
TEST_VENDOR_ID = UUID("00000000-0000-4000-a000-000000000002")
TEST_DISTRIBUTOR_ID = UUID("00000000-0000-4000-a000-000000000003")
TEST_OTHER_VENDOR_ID = UUID("00000000-0000-4000-a000-000000000004")

TEST_PRODUCT_ID = UUID("00000000-0000-4000-a000-000000000010")
TEST_VENDOR_ONLY_PRODUCT_ID = UUID("00000000-0000-4000-a000-000000000011")
TEST_OTHER_PAIR_PRODUCT_ID = UUID("00000000-0000-4000-a000-000000000012")
TEST_UNPAIRED_PRODUCT_ID = UUID("00000000-0000-4000-a000-000000000013")


def _account(account_id, tenant_id, actor_id, name, account_type):
    return AccountModel(
        id=account_id,
        tenant_id=tenant_id,
        name=name,
        account_type=account_type.value,
        active=True,
        created_by_id=actor_id,
    )


@pytest.fixture
def accounts(session, tenant_id, actor_id):
    """Customer, vendor, distributor and a second vendor."""
    rows = [
        _account(TEST_CUSTOMER_ID, tenant_id, actor_id, "Acme Corp", AccountType.CUSTOMER),
        _account(TEST_VENDOR_ID, tenant_id, actor_id, "Lumen", AccountType.VENDOR),
        _account(TEST_DISTRIBUTOR_ID, tenant_id, actor_id, "Telarus", AccountType.DISTRIBUTOR),
        _account(TEST_OTHER_VENDOR_ID, tenant_id, actor_id, "Comcast", AccountType.VENDOR),
    ]
    session.add_all(rows)
    session.commit()
    return {row.id: row for row in rows}


@pytest.fixture
def products(session, tenant_id, actor_id, accounts):
    """
    Catalog products:

    - TEST_PRODUCT_ID: Telarus/Lumen, $100.00, 10%
    - TEST_VENDOR_ONLY_PRODUCT_ID: Lumen with no distributor, 18%
    - TEST_OTHER_PAIR_PRODUCT_ID: Telarus/Comcast
    - TEST_UNPAIRED_PRODUCT_ID: no vendor or distributor
    """
    rows = [
        ProductModel(
            id=TEST_PRODUCT_ID,
            tenant_id=tenant_id,
            product_code="FIB-1G",
            product_name_house="Fiber 1G",
            product_name_vendor="Lumen DIA 1G",
            revenue_type="MRC",
            price_each=Decimal("100.00"),
            commission_percent=Decimal("10"),
            vendor_account_id=TEST_VENDOR_ID,
            distributor_account_id=TEST_DISTRIBUTOR_ID,
            created_by_id=actor_id,
        ),
        ProductModel(
            id=TEST_VENDOR_ONLY_PRODUCT_ID,
            tenant_id=tenant_id,
            product_code="SDWAN",
            product_name_house="SD-WAN",
            price_each=Decimal("250.00"),
            commission_percent=Decimal("0.18"),
            vendor_account_id=TEST_VENDOR_ID,
            created_by_id=actor_id,
        ),
        ProductModel(
            id=TEST_OTHER_PAIR_PRODUCT_ID,
            tenant_id=tenant_id,
            product_code="COAX",
            product_name_house="Business Coax",
            price_each=Decimal("80.00"),
            commission_percent=Decimal("12"),
            vendor_account_id=TEST_OTHER_VENDOR_ID,
            distributor_account_id=TEST_DISTRIBUTOR_ID,
            created_by_id=actor_id,
        ),
        ProductModel(
            id=TEST_UNPAIRED_PRODUCT_ID,
            tenant_id=tenant_id,
            product_code="SVC",
            product_name_house="Consulting",
            price_each=None,
            commission_percent=Decimal("0"),
            created_by_id=actor_id,
        ),
    ]
    session.add_all(rows)
    session.commit()
    return {row.id: row for row in rows}


@pytest.fixture
def service(session, tenant_id, actor_id, products):
    """OpportunityService with default configuration."""
    return OpportunityService(session, tenant_id, actor_id)


@pytest.fixture
def opportunity(service):
    """Qualification-stage opportunity with a customer account."""
    return service.create_opportunity("Acme WAN refresh", account_id=TEST_CUSTOMER_ID)


@pytest.fixture
def opportunity_without_account(service):
    return service.create_opportunity("Prospect without account")
