import pytest
from fastapi.testclient import TestClient

from checkout_service.main import app, get_gateway, get_workflow


@pytest.fixture
def client(workflow, gateway):
    app.dependency_overrides[get_workflow] = lambda: workflow
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


CART = {"items": [{"externalProductId": "prod_A", "quantity": 2}]}


class TestCheckoutEndpoint:
    def test_success_returns_redirect(self, client):
        response = client.post("/v1/checkout/sessions", json=CART, headers={"X-User-Id": "u1"})

        assert response.status_code == 201
        assert response.json() == {
            "success": True,
            "message": "Checkout session created successfully",
            "url": "https://checkout.example/pay/cs_test_1",
            "error": None,
        }

    def test_missing_identity_is_401(self, client, gateway):
        response = client.post("/v1/checkout/sessions", json=CART)

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"
        assert response.json()["success"] is False
        assert gateway.listed == []

    def test_missing_address_is_422(self, client):
        response = client.post("/v1/checkout/sessions", json=CART, headers={"X-User-Id": "u2"})

        assert response.status_code == 422
        assert response.json()["message"] == "User has no address."

    def test_gateway_failure_is_502(self, client, gateway):
        gateway.fail_list = True

        response = client.post("/v1/checkout/sessions", json=CART, headers={"X-User-Id": "u1"})

        assert response.status_code == 502
        assert response.json()["error"] == "GATEWAY_UNAVAILABLE"

    def test_invalid_quantity_is_rejected(self, client):
        cart = {"items": [{"externalProductId": "prod_A", "quantity": 0}]}

        response = client.post("/v1/checkout/sessions", json=cart, headers={"X-User-Id": "u1"})

        assert response.status_code == 422
        assert "detail" in response.json()


class TestProductEndpoints:
    def test_create(self, client, gateway):
        response = client.post("/v1/products", json={"name": "Iracema", "price": "34.90", "imageUrl": "https://img/2.png"})

        assert response.status_code == 200
        assert response.json()["data"] == "prod_new"
        assert gateway.product_calls[0][0] == "create"

    def test_archive(self, client, gateway):
        response = client.post("/v1/products/prod_A/archive")

        assert response.status_code == 200
        assert gateway.product_calls == [("archive", "prod_A")]

    def test_restore_failure_is_502(self, client):
        response = client.post("/v1/products/prod_missing/restore")

        assert response.status_code == 502
        assert response.json()["success"] is False


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
