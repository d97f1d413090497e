import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pika
import pytest
import stripe

from checkout_service.clients import (
    FulfillmentPublisher,
    ShippingRateClient,
    ShippingTicketClient,
    StripeGatewayClient,
    configure_stripe,
)
from checkout_service.models import (
    CheckoutSession,
    ManifestItem,
    PackageVolume,
    RatePackage,
    ShippingRecipient,
)


def _mock_client(handler):
    return httpx.Client(base_url="http://shipping.test", transport=httpx.MockTransport(handler))


QUOTES = [
    {
        "id": 1,
        "name": "PAC",
        "price": "15.50",
        "delivery_range": {"min": 3, "max": 5},
        "packages": [{"dimensions": {"height": 4, "width": 10, "length": 10}, "weight": "1.00", "format": "box"}],
    },
    {"id": 2, "name": "SEDEX", "error": "Serviço indisponível para o trecho."},
]


class TestShippingRateClient:
    def test_quote_posts_packages_and_skips_unavailable_services(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=QUOTES)

        client = ShippingRateClient(client=_mock_client(handler))
        quotes = client.quote("01305-000", "01310-100", [
            RatePackage(quantity=2, height=10, width=10, length=2, weight=0.5),
        ])

        assert seen["path"] == "/api/v2/me/shipment/calculate"
        assert seen["body"] == {
            "from": {"postal_code": "01305-000"},
            "to": {"postal_code": "01310-100"},
            "products": [{"id": "1", "quantity": 2, "height": 10.0, "width": 10.0, "length": 2.0, "weight": 0.5}],
        }
        assert len(quotes) == 1
        assert quotes[0].id == 1
        assert quotes[0].price == Decimal("15.50")
        assert quotes[0].delivery_range.max == 5
        assert quotes[0].packages[0].weight == 1.0

    def test_error_status_raises(self):
        client = ShippingRateClient(client=_mock_client(lambda request: httpx.Response(503)))

        with pytest.raises(httpx.HTTPStatusError):
            client.quote("01305-000", "01310-100", [])

    def test_unexpected_payload_means_no_quotes(self):
        client = ShippingRateClient(client=_mock_client(lambda request: httpx.Response(200, json={"message": "?"})))

        assert client.quote("01305-000", "01310-100", []) == []

    def test_malformed_entries_are_skipped(self):
        body = ["oops", None, QUOTES[0]]
        client = ShippingRateClient(client=_mock_client(lambda request: httpx.Response(200, json=body)))

        quotes = client.quote("01305-000", "01310-100", [])

        assert [quote.name for quote in quotes] == ["PAC"]

    def test_default_client_sends_bearer_token(self):
        client = ShippingRateClient(base_url="http://shipping.test", token="secret-token", timeout=3)

        assert client.client.headers["Authorization"] == "Bearer secret-token"
        assert client.client.timeout.read == 3
        client.close()


class TestShippingTicketClient:
    recipient = ShippingRecipient(
        name="Ana Souza", address="Av. Paulista, número 1578", district="Bela Vista", city="São Paulo",
        state_abbr="SP", postal_code="01310-100", email="ana@example.com",
    )
    sender = {"name": "Livraria", "postal_code": "01305-000"}

    def test_book_returns_ticket_id(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "9c1b-ticket", "status": "pending"})

        client = ShippingTicketClient(sender=self.sender, client=_mock_client(handler))
        ticket_id = client.book(
            recipient=self.recipient,
            service_id="1",
            manifest=[ManifestItem(name="Dom Casmurro", quantity=2, unitary_value=Decimal("39.90"))],
            volume=PackageVolume(height=4, width=10, length=10, weight=1.0),
            tag='{"sessionId": "cs_1", "userId": "u1"}',
        )

        assert ticket_id == "9c1b-ticket"
        body = seen["body"]
        assert body["service"] == "1"
        assert body["from"] == self.sender
        assert body["to"]["postal_code"] == "01310-100"
        assert body["products"] == [{"name": "Dom Casmurro", "quantity": 2, "unitary_value": 39.9}]
        assert body["volumes"] == [{"height": 4.0, "width": 10.0, "length": 10.0, "weight": 1.0}]
        assert body["options"]["insurance_value"] == 79.8
        assert body["options"]["tags"] == [{"tag": '{"sessionId": "cs_1", "userId": "u1"}', "url": None}]

    def test_rejected_ticket_raises(self):
        client = ShippingTicketClient(
            sender=self.sender, client=_mock_client(lambda request: httpx.Response(422, json={"message": "x"}))
        )

        with pytest.raises(httpx.HTTPStatusError):
            client.book(self.recipient, "1", [], PackageVolume(height=1, width=1, length=1, weight=1), "tag")

    def test_cancel_deletes_ticket(self):
        seen = {}

        def handler(request):
            seen["method"], seen["path"] = request.method, request.url.path
            return httpx.Response(204)

        ShippingTicketClient(sender=self.sender, client=_mock_client(handler)).cancel("9c1b-ticket")

        assert seen == {"method": "DELETE", "path": "/api/v2/me/cart/9c1b-ticket"}


class TestStripeGatewayClient:
    def test_configure_uses_httpx_client_without_retries(self, monkeypatch):
        monkeypatch.setattr(stripe, "api_key", None)
        monkeypatch.setattr(stripe, "max_network_retries", 2)
        monkeypatch.setattr(stripe, "default_http_client", None)

        configure_stripe(api_key="sk_test_123", timeout=4)

        assert stripe.api_key == "sk_test_123"
        assert stripe.max_network_retries == 0
        assert isinstance(stripe.default_http_client, stripe.HTTPXClient)

    def test_create_product_in_minor_units(self, monkeypatch):
        calls = []

        def create(**params):
            calls.append(params)
            return SimpleNamespace(id="prod_123")

        monkeypatch.setattr(stripe.Product, "create", create)
        result = StripeGatewayClient(currency="brl").create_product("Dom Casmurro", Decimal("29.90"), "https://img/1.png")

        assert result.success is True
        assert result.data == "prod_123"
        assert calls[0]["default_price_data"] == {"currency": "brl", "unit_amount": 2990}
        assert calls[0]["images"] == ["https://img/1.png"]
        assert calls[0]["shippable"] is True

    def test_create_product_failure_is_reported(self, monkeypatch):
        def create(**params):
            raise stripe.APIConnectionError("network down")

        monkeypatch.setattr(stripe.Product, "create", create)
        result = StripeGatewayClient().create_product("Dom Casmurro", Decimal("29.90"), "https://img/1.png")

        assert result.success is False
        assert result.message.startswith("Failed to create product")

    @pytest.mark.parametrize("method, active", [("archive_product", False), ("restore_product", True)])
    def test_toggle_active_flag(self, monkeypatch, method, active):
        calls = []
        monkeypatch.setattr(stripe.Product, "modify", lambda product_id, **params: calls.append((product_id, params)))

        result = getattr(StripeGatewayClient(), method)("prod_123")

        assert result.success is True
        assert calls == [("prod_123", {"active": active})]

    def test_archive_failure_is_reported(self, monkeypatch):
        def modify(product_id, **params):
            raise stripe.InvalidRequestError("No such product", "id")

        monkeypatch.setattr(stripe.Product, "modify", modify)
        result = StripeGatewayClient().archive_product("prod_404")

        assert result.success is False
        assert 'Failed to archive product with id "prod_404"' in result.message

    def test_list_products_requests_whole_batch(self, monkeypatch):
        calls = []

        def list_(**params):
            calls.append(params)
            return SimpleNamespace(data=[
                SimpleNamespace(id="prod_A", name="A", active=True,
                                default_price=SimpleNamespace(id="price_A", unit_amount=3990)),
                SimpleNamespace(id="prod_B", name="B", active=True, default_price="price_B"),
                SimpleNamespace(id="prod_C", name="C", active=False, default_price=None),
            ])

        monkeypatch.setattr(stripe.Product, "list", list_)
        result = StripeGatewayClient().list_products(["prod_A", "prod_B", "prod_C"])

        assert calls[0]["limit"] == 3
        assert calls[0]["ids"] == ["prod_A", "prod_B", "prod_C"]
        assert calls[0]["expand"] == ["data.default_price"]
        products = {p.id: p for p in result.data}
        assert (products["prod_A"].price_id, products["prod_A"].unit_amount) == ("price_A", 3990)
        assert (products["prod_B"].price_id, products["prod_B"].unit_amount) == ("price_B", None)
        assert products["prod_C"].price_id is None
        assert products["prod_C"].active is False

    def test_list_products_failure(self, monkeypatch):
        def list_(**params):
            raise stripe.APIConnectionError("timeout")

        monkeypatch.setattr(stripe.Product, "list", list_)
        result = StripeGatewayClient().list_products(["prod_A"])

        assert result.success is False
        assert result.message.startswith("Failed to fetch products")

    def test_create_session(self, monkeypatch):
        calls = []

        def create(**params):
            calls.append(params)
            return SimpleNamespace(id="cs_1", url="https://checkout.stripe.test/cs_1", amount_total=9530)

        monkeypatch.setattr(stripe.checkout.Session, "create", create)
        result = StripeGatewayClient(currency="brl", locale="pt-BR").create_session(
            line_items=[{"price": "price_A", "quantity": 2}],
            shipping_options=[],
            success_url="https://shop/ok",
            cancel_url="https://shop/cancel",
            metadata={"userId": "u1"},
            idempotency_key="attempt-1",
        )

        assert result.success is True
        assert result.data == CheckoutSession(
            session_id="cs_1", redirect_url="https://checkout.stripe.test/cs_1", total_amount=9530,
            line_items=[{"price": "price_A", "quantity": 2}],
        )
        params = calls[0]
        assert params["mode"] == "payment"
        assert params["currency"] == "brl"
        assert params["locale"] == "pt-BR"
        assert params["idempotency_key"] == "attempt-1"
        assert params["metadata"] == {"userId": "u1"}

    def test_create_session_failure(self, monkeypatch):
        def create(**params):
            raise stripe.InvalidRequestError("Invalid price", "line_items")

        monkeypatch.setattr(stripe.checkout.Session, "create", create)
        result = StripeGatewayClient().create_session([], [], "ok", "cancel")

        assert result.success is False
        assert result.message.startswith("Failed to create checkout session")

    def test_expire_session(self, monkeypatch):
        expired = []
        monkeypatch.setattr(stripe.checkout.Session, "expire", lambda session_id: expired.append(session_id))

        assert StripeGatewayClient().expire_session("cs_1").success is True
        assert expired == ["cs_1"]


class _FakeChannel:
    def __init__(self):
        self.declared = []
        self.published = []

    def queue_declare(self, queue, durable=False):
        self.declared.append((queue, durable))

    def basic_publish(self, exchange, routing_key, body, properties=None):
        self.published.append((routing_key, json.loads(body), properties))


class _FakeConnection:
    def __init__(self):
        self.channel_ = _FakeChannel()
        self.is_open = True

    def channel(self):
        return self.channel_

    def close(self):
        self.is_open = False


class TestFulfillmentPublisher:
    def test_publishes_persistent_message(self, monkeypatch):
        connection = _FakeConnection()
        monkeypatch.setattr(pika, "BlockingConnection", lambda params: connection)

        FulfillmentPublisher(host="mq", queue="orders.placed").publish_order_placed("order-1", {"sessionId": "cs_1"})

        assert connection.channel_.declared == [("orders.placed", True)]
        routing_key, body, properties = connection.channel_.published[0]
        assert routing_key == "orders.placed"
        assert body["orderId"] == "order-1"
        assert body["sessionId"] == "cs_1"
        assert "instructionId" in body
        assert properties.delivery_mode == 2
        assert connection.is_open is False

    def test_broker_unreachable_raises(self, monkeypatch):
        def refuse(params):
            raise pika.exceptions.AMQPConnectionError("connection refused")

        monkeypatch.setattr(pika, "BlockingConnection", refuse)

        with pytest.raises(pika.exceptions.AMQPError):
            FulfillmentPublisher(host="mq").publish_order_placed("order-1", {})
