from datetime import date, timedelta

import pytest
from protean.integrations.pytest import DomainFixture

from ordering.catalogue import reset_catalogue, set_catalogue
from ordering.catalogue.fake_adapter import FakeCatalogue
from ordering.catalogue.port import CatalogueProduct
from ordering.gateway import reset_provider, set_provider
from ordering.gateway.fake_adapter import FakePaymentProvider
from ordering.settings import reset_settings


@pytest.fixture(scope="session")
def ordering_bed():
    from ordering.domain import ordering
    from ordering.utils.db import drop_db, setup_db

    bed = DomainFixture(ordering)
    bed.setup()
    setup_db(ordering)
    yield bed
    drop_db(ordering)
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(ordering_bed):
    with ordering_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        for _, broker in current_domain.brokers.items():
            broker._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def catalogue():
    """A catalogue with a rental camera, a purchasable lens bag and a portrait session."""
    fake = FakeCatalogue()
    fake.add_product(
        CatalogueProduct(
            product_id="cam-001",
            name="Canon EOS R5",
            product_type="equipment",
            sku="CAM-R5",
            category="cameras",
            sale_price=2500000.0,
            daily_rate=5000.0,
            stock=3,
        )
    )
    fake.add_product(
        CatalogueProduct(
            product_id="bag-001",
            name="Camera Bag",
            product_type="accessory",
            sku="BAG-01",
            category="accessories",
            sale_price=8000.0,
            stock=10,
        )
    )
    fake.add_product(
        CatalogueProduct(
            product_id="svc-portrait",
            name="Portrait Session",
            product_type="service",
            category="sessions",
            service_price=30000.0,
        )
    )
    fake.add_product(
        CatalogueProduct(
            product_id="retired-001",
            name="Retired Flash",
            product_type="equipment",
            sale_price=1000.0,
            active=False,
        )
    )
    set_catalogue(fake)
    yield fake
    reset_catalogue()


@pytest.fixture(autouse=True)
def payment_provider():
    fake = FakePaymentProvider()
    set_provider(fake)
    yield fake
    reset_provider()


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture()
def referee():
    return {"name": "Ada Obi", "email": "ada@example.com", "phone": "+2348000000001"}


@pytest.fixture()
def rental_details(referee):
    """A three-day rental starting next week."""
    start = date.today() + timedelta(days=7)
    return {
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=3)).isoformat(),
        "pickup_time": "10:00",
        "return_time": "10:00",
        "referee": referee,
    }


@pytest.fixture()
def service_details():
    return {
        "date": (date.today() + timedelta(days=14)).isoformat(),
        "time": "14:00",
        "duration": 90,
        "location_type": "studio",
        "special_requests": ["White backdrop"],
    }
