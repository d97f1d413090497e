import os

os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("FULFILLMENT_NOTIFICATIONS", "off")

from decimal import Decimal

import pytest

from checkout_service import db
from checkout_service.models import (
    DeliveryRange,
    GatewayProduct,
    PackageDimensions,
    ShippingPackage,
    ShippingQuote,
)
from checkout_service.repositories import (
    AddressDirectory,
    CatalogMirror,
    CheckoutAttemptLog,
    OrderStore,
    ShopperDirectory,
)
from checkout_service.workflow import CheckoutWorkflow
from doubles import FakeGateway, FakeNotifier, FakeRates, FakeRegistrar


@pytest.fixture
def session_factory():
    engine = db.make_engine("sqlite://")
    db.init_db(engine)
    yield db.make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    """Catalog with two books, and shopper u1 with address and profile. u2 has no address."""
    with session_factory() as session:
        with session.begin():
            session.add_all([
                db.Book(
                    id="book-A", external_id="prod_A", title="Dom Casmurro", price=Decimal("39.90"),
                    weight_grams=500, width_cm=10, height_cm=10, thickness_cm=2,
                ),
                db.Book(
                    id="book-B", external_id="prod_B", title="Memórias Póstumas", price=Decimal("25.00"),
                    weight_grams=None, width_cm=14, height_cm=21, thickness_cm=3,
                ),
                db.Address(
                    user_id="u1", cep="01310-100", street="Av. Paulista", number="1578",
                    complement="apto 12", neighborhood="Bela Vista", city="São Paulo", state="SP",
                ),
                db.Shopper(user_id="u1", first_name="Ana", last_name="Souza", email="ana@example.com"),
                db.Shopper(user_id="u2", first_name="Bruno", last_name="Lima", email="bruno@example.com"),
            ])
    return session_factory


@pytest.fixture
def gateway_products():
    return [
        GatewayProduct(id="prod_A", name="Dom Casmurro", price_id="price_A", unit_amount=3990),
        GatewayProduct(id="prod_B", name="Memórias Póstumas", price_id="price_B", unit_amount=2500),
    ]


@pytest.fixture
def gateway(gateway_products):
    return FakeGateway(products=gateway_products)


@pytest.fixture
def pac_quote():
    return ShippingQuote(
        id="q1",
        name="PAC",
        price=Decimal("15.50"),
        delivery_range=DeliveryRange(min=3, max=5),
        packages=[ShippingPackage(dimensions=PackageDimensions(height=4, width=10, length=10), weight=1.0)],
    )


@pytest.fixture
def rates(pac_quote):
    return FakeRates([pac_quote])


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_workflow(seeded, gateway, rates, registrar, notifier):
    def factory(**overrides):
        deps = dict(
            catalog=CatalogMirror(seeded),
            addresses=AddressDirectory(seeded),
            shoppers=ShopperDirectory(seeded),
            gateway=gateway,
            rates=rates,
            registrar=registrar,
            orders=OrderStore(seeded),
            attempts=CheckoutAttemptLog(seeded),
            notifier=notifier,
            origin_postal_code="01305-000",
            store_url="https://shop.example",
            currency="brl",
        )
        deps.update(overrides)
        return CheckoutWorkflow(**deps)

    return factory


@pytest.fixture
def workflow(make_workflow):
    return make_workflow()
