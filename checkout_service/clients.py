"""
This module provides communication clients for the external systems used by
the checkout service:
- Payment Gateway (Stripe SDK)
- Shipping rate service (REST)
- Shipping ticket registrar (REST, same provider as the rate service)
- Fulfillment queue (RabbitMQ)
Each class encapsulates its protocol logic, error handling, and connection management.
"""

import json
import logging
import time
import uuid
from typing import Dict, List, Optional

import httpx
import pika
import stripe

from . import config
from .models import (
    CheckoutSession,
    GatewayProduct,
    GatewayResult,
    ManifestItem,
    PackageVolume,
    RatePackage,
    ShippingQuote,
    ShippingRecipient,
)
from .shipping import to_minor_units

log = logging.getLogger(__name__)


def configure_stripe(api_key: str = None, timeout: float = None):
    """
    Sets the global Stripe credentials and HTTP behaviour.

    Every request is bounded by `timeout` seconds and never retried by the SDK;
    retries are the caller's decision.
    """
    stripe.api_key = api_key or config.STRIPE_SECRET_KEY
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.HTTPXClient(
        timeout=timeout or config.STRIPE_TIMEOUT_SECONDS, allow_sync_methods=True
    )


# --- Payment Gateway (Stripe) ---
class StripeGatewayClient:
    """
    Client for the payment gateway.

    Every call is an isolated unit of work: a `stripe.StripeError` is caught,
    logged and reported as `GatewayResult(success=False)`, never raised.
    """

    def __init__(self, currency: str = None, locale: str = None):
        self.currency = currency or config.STORE_CURRENCY
        self.locale = locale or config.STORE_LOCALE

    def create_product(self, name: str, price, image_url: str) -> GatewayResult:
        """
        Creates a sellable product with one active price.

        Args:
            name (str): Display name of the product.
            price (Decimal | float): Unit price in major currency units.
            image_url (str): Main product image.
        Returns:
            GatewayResult: `data` holds the new product id.
        """
        try:
            product = stripe.Product.create(
                name=name,
                images=[image_url],
                default_price_data={
                    "currency": self.currency,
                    "unit_amount": to_minor_units(price),
                },
                shippable=True,
            )
        except stripe.StripeError as e:
            log.error(f"Gateway product creation failed for '{name}': {e}")
            return GatewayResult(success=False, message=f"Failed to create product: {e}", data="")
        return GatewayResult(success=True, message="Product created successfully", data=product.id)

    def archive_product(self, product_id: str) -> GatewayResult:
        return self._set_active(product_id, False, "archive", "archived")

    def restore_product(self, product_id: str) -> GatewayResult:
        return self._set_active(product_id, True, "restore", "restored")

    def _set_active(self, product_id: str, active: bool, verb: str, done: str) -> GatewayResult:
        try:
            stripe.Product.modify(product_id, active=active)
        except stripe.StripeError as e:
            log.error(f"Gateway failed to {verb} product {product_id}: {e}")
            return GatewayResult(
                success=False,
                message=f'Failed to {verb} product with id "{product_id}": {e}',
            )
        return GatewayResult(success=True, message=f'Product with id "{product_id}" {done} successfully')

    def list_products(self, ids: List[str]) -> GatewayResult:
        """
        Batched lookup of gateway products by id.

        The page size equals the number of requested ids, so no page is
        silently truncated. `data` holds a list of `GatewayProduct`.
        """
        try:
            page = stripe.Product.list(ids=list(ids), limit=len(ids), expand=["data.default_price"])
        except stripe.StripeError as e:
            log.error(f"Gateway product lookup failed for {len(ids)} ids: {e}")
            return GatewayResult(success=False, message=f"Failed to fetch products: {e}")
        return GatewayResult(
            success=True,
            message="Products fetched successfully",
            data=[_to_gateway_product(p) for p in page.data],
        )

    def create_session(
        self,
        line_items: List[Dict],
        shipping_options: List[Dict],
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayResult:
        """
        Opens a hosted checkout session. `data` holds a `CheckoutSession`.

        The idempotency key protects against a duplicate session when the same
        attempt reaches the gateway twice.
        """
        params = dict(
            mode="payment",
            currency=self.currency,
            locale=self.locale,
            line_items=line_items,
            shipping_options=shipping_options,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata or {},
        )
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            log.error(f"Gateway checkout session creation failed: {e}")
            return GatewayResult(success=False, message=f"Failed to create checkout session: {e}")
        return GatewayResult(
            success=True,
            message="Checkout session created successfully",
            data=CheckoutSession(
                session_id=session.id,
                redirect_url=session.url,
                total_amount=session.amount_total or 0,
                line_items=line_items,
            ),
        )

    def expire_session(self, session_id: str) -> GatewayResult:
        try:
            stripe.checkout.Session.expire(session_id)
        except stripe.StripeError as e:
            log.error(f"Gateway failed to expire checkout session {session_id}: {e}")
            return GatewayResult(success=False, message=f"Failed to expire session {session_id}: {e}")
        return GatewayResult(success=True, message=f"Session {session_id} expired")


def _to_gateway_product(product) -> GatewayProduct:
    price = getattr(product, "default_price", None)
    if isinstance(price, str):
        price_id, unit_amount = price, None
    elif price is not None:
        price_id, unit_amount = price.id, getattr(price, "unit_amount", None)
    else:
        price_id, unit_amount = None, None
    return GatewayProduct(
        id=product.id,
        name=getattr(product, "name", "") or "",
        active=bool(getattr(product, "active", True)),
        price_id=price_id,
        unit_amount=unit_amount,
    )


# --- Shipping Service (REST) ---
class _ShippingServiceClient:
    """Shared HTTP setup for the rate and ticket endpoints of the shipping provider."""

    def __init__(self, base_url: str = None, token: str = None, timeout: float = None,
                 client: httpx.Client = None):
        if client is None:
            timeout_config = httpx.Timeout(timeout or config.SHIPPING_TIMEOUT_SECONDS, connect=5.0)
            headers = {
                "Accept": "application/json",
                "User-Agent": "checkout-service",
            }
            token = config.SHIPPING_API_TOKEN if token is None else token
            if token:
                headers["Authorization"] = f"Bearer {token}"
            client = httpx.Client(
                base_url=base_url or config.SHIPPING_SERVICE_URL,
                timeout=timeout_config,
                headers=headers,
            )
        self.client = client

    def close(self):
        self.client.close()


class ShippingRateClient(_ShippingServiceClient):
    """
    Client for the shipping rate service.
    Returns fresh quotes on every call; nothing is cached.
    """

    def quote(self, origin: str, destination: str, packages: List[RatePackage]) -> List[ShippingQuote]:
        """
        Requests carrier quotes for shipping `packages` from `origin` to `destination`.

        Services the provider reports as unavailable for the route (entries with
        an `error` field) are skipped.

        Raises:
            httpx.TimeoutException: If the service does not answer within the timeout.
            httpx.HTTPStatusError: If the service returns an error status.
        """
        payload = {
            "from": {"postal_code": origin},
            "to": {"postal_code": destination},
            "products": [
                {"id": str(index), **package.model_dump()}
                for index, package in enumerate(packages, start=1)
            ],
        }
        try:
            response = self.client.post("/api/v2/me/shipment/calculate", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException:
            log.error(f"Shipping rate service timeout for destination {destination}.")
            raise
        except httpx.HTTPStatusError as e:
            log.error(f"Shipping rate service error for destination {destination}: {e}")
            raise

        body = response.json()
        if not isinstance(body, list):
            log.warning(f"Shipping rate service returned an unexpected payload: {body!r}")
            return []

        quotes = []
        for entry in body:
            if not isinstance(entry, dict):
                log.warning(f"Shipping rate service returned a malformed quote: {entry!r}")
                continue
            if entry.get("error") or entry.get("price") in (None, ""):
                log.info(f"Shipping service {entry.get('name')} unavailable: {entry.get('error')}")
                continue
            quotes.append(ShippingQuote.model_validate(entry))
        return quotes


class ShippingTicketClient(_ShippingServiceClient):
    """
    Client for the shipping ticket registrar.
    Booking is not retried here; idempotency is the registrar's responsibility.
    """

    def __init__(self, sender: Dict[str, str] = None, **kwargs):
        super().__init__(**kwargs)
        self.sender = sender or config.SHIPPING_SENDER

    def book(
        self,
        recipient: ShippingRecipient,
        service_id: str,
        manifest: List[ManifestItem],
        volume: PackageVolume,
        tag: str,
    ) -> str:
        """
        Books a shipment and returns the registrar's ticket id.

        Raises:
            httpx.TimeoutException: If the registrar does not answer within the timeout.
            httpx.HTTPStatusError: If the registrar rejects the ticket.
        """
        products = [
            {"name": item.name, "quantity": item.quantity, "unitary_value": float(item.unitary_value)}
            for item in manifest
        ]
        payload = {
            "service": service_id,
            "from": self.sender,
            "to": recipient.model_dump(),
            "products": products,
            "volumes": [volume.model_dump()],
            "options": {
                "insurance_value": round(sum(p["quantity"] * p["unitary_value"] for p in products), 2),
                "receipt": False,
                "own_hand": False,
                "tags": [{"tag": tag, "url": None}],
            },
        }
        try:
            response = self.client.post("/api/v2/me/cart", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException:
            log.error(f"Shipping ticket registrar timeout (tag {tag}). Ticket state unknown.")
            raise
        except httpx.HTTPStatusError as e:
            log.error(f"Shipping ticket registrar rejected the ticket (tag {tag}): {e}")
            raise
        return str(response.json()["id"])

    def cancel(self, ticket_id: str):
        """
        Removes a booked ticket. Used as compensation only.

        Raises:
            httpx.HTTPError: If the registrar cannot be reached or refuses.
        """
        log.info(f"Compensation: cancelling shipping ticket {ticket_id}.")
        response = self.client.delete(f"/api/v2/me/cart/{ticket_id}")
        response.raise_for_status()


# --- Fulfillment Publisher (MQ) ---
class FulfillmentPublisher:
    """
    Publishes 'order placed' instructions for the fulfillment subsystem (RabbitMQ).

    A connection is opened per message, which keeps the publisher safe to share
    between request threads.
    """

    def __init__(self, host: str = None, user: str = None, password: str = None, queue: str = None):
        self.host = host or config.RABBITMQ_HOST
        self.queue = queue or config.FULFILLMENT_QUEUE
        self.credentials = pika.PlainCredentials(
            user or config.RABBITMQ_USER, password or config.RABBITMQ_PASSWORD
        )

    def _connect(self) -> pika.BlockingConnection:
        return pika.BlockingConnection(
            pika.ConnectionParameters(host=self.host, credentials=self.credentials, heartbeat=60)
        )

    def publish_order_placed(self, order_id: str, message: Dict):
        """
        Sends a persistent instruction message for `order_id`.

        Raises:
            pika.exceptions.AMQPError: If the broker cannot be reached or the publish fails.
        """
        body = {
            "instructionId": str(uuid.uuid4()),
            "orderId": order_id,
            "instructionTimestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            **message,
        }
        try:
            connection = self._connect()
            try:
                channel = connection.channel()
                channel.queue_declare(queue=self.queue, durable=True)
                channel.basic_publish(
                    exchange='',
                    routing_key=self.queue,
                    body=json.dumps(body),
                    properties=pika.BasicProperties(delivery_mode=2),  # persistent
                )
            finally:
                if connection.is_open:
                    connection.close()
        except pika.exceptions.AMQPError as e:
            log.error(f"[Order: {order_id}] Failed to publish fulfillment instruction: {e}")
            raise
        log.info(f"[Order: {order_id}] Fulfillment instruction published to '{self.queue}'.")
