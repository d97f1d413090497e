"""
ports.py — Narrow Interfaces of the External Systems

The workflow depends on these protocols only. `clients.py` holds one
implementation per provider; tests substitute scripted doubles.
"""

from typing import Dict, List, Optional, Protocol

from .models import (
    GatewayResult,
    ManifestItem,
    PackageVolume,
    RatePackage,
    ShippingQuote,
    ShippingRecipient,
)


class PaymentGateway(Protocol):
    def create_product(self, name: str, price, image_url: str) -> GatewayResult: ...

    def archive_product(self, product_id: str) -> GatewayResult: ...

    def restore_product(self, product_id: str) -> GatewayResult: ...

    def list_products(self, ids: List[str]) -> GatewayResult: ...

    def create_session(
        self,
        line_items: List[Dict],
        shipping_options: List[Dict],
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayResult: ...

    def expire_session(self, session_id: str) -> GatewayResult: ...


class ShippingRateEngine(Protocol):
    def quote(self, origin: str, destination: str, packages: List[RatePackage]) -> List[ShippingQuote]: ...


class ShippingTicketRegistrar(Protocol):
    def book(
        self,
        recipient: ShippingRecipient,
        service_id: str,
        manifest: List[ManifestItem],
        volume: PackageVolume,
        tag: str,
    ) -> str: ...

    def cancel(self, ticket_id: str) -> None: ...


class FulfillmentNotifier(Protocol):
    def publish_order_placed(self, order_id: str, message: Dict) -> None: ...
