"""
workflow.py — Core Orchestration Logic for Checkout

This module turns a shopper's cart into a paid-for order request. It coordinates
the local catalog and address directory with three independently failing
external services, in strict order:

1. Authorize the shopper and resolve the shipping address
2. Reconcile the cart with the catalog and the payment gateway's active prices
3. Quote shipping and pick the fastest carrier offer
4. Open a hosted checkout session at the payment gateway
5. Book a shipping ticket tagged with the session id
6. Persist the order and hand it to fulfillment

Steps 4-6 form a saga: each completed step is recorded in the checkout attempt
log, and a failure after the session exists undoes what it can (ticket
cancellation, session expiry) before reporting the failure.
"""

import json
import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from . import config
from .errors import CheckoutAborted, CheckoutError
from .models import (
    CartLineRequest,
    CheckoutLine,
    CheckoutResult,
    CheckoutSession,
    GatewayProduct,
    ManifestItem,
    OrderDraft,
    OrderLine,
    ShippingAddress,
    ShippingQuote,
)
from .ports import FulfillmentNotifier, PaymentGateway, ShippingRateEngine, ShippingTicketRegistrar
from .repositories import AddressDirectory, CatalogMirror, CheckoutAttemptLog, OrderStore, ShopperDirectory
from .shipping import (
    build_rate_packages,
    build_recipient,
    package_volume,
    select_quote,
    shipping_option,
    to_minor_units,
)

log = logging.getLogger(__name__)


class CheckoutWorkflow:
    """
    End-to-end checkout for one shopper request.

    The workflow holds no per-request state; one instance serves all requests.
    Two concurrent attempts by the same shopper are not serialized and may both
    succeed, producing two sessions and two orders.
    """

    def __init__(
        self,
        catalog: CatalogMirror,
        addresses: AddressDirectory,
        shoppers: ShopperDirectory,
        gateway: PaymentGateway,
        rates: ShippingRateEngine,
        registrar: ShippingTicketRegistrar,
        orders: OrderStore,
        attempts: CheckoutAttemptLog,
        notifier: Optional[FulfillmentNotifier] = None,
        origin_postal_code: str = None,
        store_url: str = None,
        currency: str = None,
    ):
        self.catalog = catalog
        self.addresses = addresses
        self.shoppers = shoppers
        self.gateway = gateway
        self.rates = rates
        self.registrar = registrar
        self.orders = orders
        self.attempts = attempts
        self.notifier = notifier
        self.origin_postal_code = origin_postal_code or config.SHIPPING_SENDER["postal_code"]
        self.store_url = (store_url or config.STORE_URL).rstrip("/")
        self.currency = currency or config.STORE_CURRENCY

    def create_checkout_session(self, user_id: Optional[str], cart_lines: List[CartLineRequest]) -> CheckoutResult:
        """
        Executes the complete checkout workflow for a single cart.

        Args:
            user_id (str | None): Authenticated shopper id; None when the request is anonymous.
            cart_lines (list[CartLineRequest]): Shopper intent, not yet validated against the catalog.

        Returns:
            CheckoutResult: On success, `url` is the gateway redirect for the shopper.
            On failure, `error` names the failing step. Nothing raises, including
            unexpected faults, which are compensated like any other failure.

        Compensation (Saga Pattern):
            - Ticket booking fails → expire the checkout session.
            - Order write fails → cancel the ticket, then expire the checkout session.
            - Fulfillment hand-off fails → logged only; the order is already committed.
        """
        attempt_id = str(uuid.uuid4())
        log_prefix = f"[Checkout: {attempt_id}]"
        log.info(f"{log_prefix} Starting checkout for user {user_id!r} with {len(cart_lines)} cart line(s).")

        session: Optional[CheckoutSession] = None
        ticket_id: Optional[str] = None
        attempt_started = False
        step = CheckoutError.UNAUTHORIZED

        try:
            # --- 1. Authorization + address ---
            if not user_id:
                raise CheckoutAborted(CheckoutError.UNAUTHORIZED, "User is not authorized.")

            step = CheckoutError.PERSISTENCE_FAILED
            address = self._resolve_address(user_id)

            # --- 2. Catalog + gateway reconciliation ---
            step = CheckoutError.GATEWAY_UNAVAILABLE
            lines = self._reconcile(log_prefix, cart_lines)

            # --- 3. Shipping quote ---
            step = CheckoutError.NO_SHIPPING_AVAILABLE
            packages = build_rate_packages(lines)
            quote = self._quote_shipping(log_prefix, address, packages)

            # --- 4. Payment session ---
            step = CheckoutError.SESSION_CREATION_FAILED
            self._record_start(attempt_id, user_id)
            attempt_started = True
            session = self._open_session(log_prefix, attempt_id, user_id, lines, quote)
            self._record(attempt_id, "session_created", session_id=session.session_id)

            # --- 5. Shipping ticket ---
            step = CheckoutError.TICKET_REGISTRATION_FAILED
            manifest = [
                ManifestItem(name=line.item.title, quantity=line.quantity, unitary_value=line.unit_price)
                for line in lines
            ]
            ticket_id = self._book_ticket(
                log_prefix, user_id, address, quote, manifest, package_volume(quote, packages), session
            )
            self._record(attempt_id, "ticket_registered", ticket_id=ticket_id)

            # --- 6. Order ---
            step = CheckoutError.PERSISTENCE_FAILED
            draft = OrderDraft(
                user_id=user_id,
                session_id=session.session_id,
                ticket_id=ticket_id,
                total_price=Decimal(session.total_amount) / 100,
                shipping_price=quote.price,
                shipping_service_id=str(quote.id),
                shipping_service_name=quote.name,
                shipping_days_min=quote.delivery_range.min,
                shipping_days_max=quote.delivery_range.max,
                line_items=[
                    OrderLine(book_id=line.item.internal_id, price=line.unit_price, quantity=line.quantity)
                    for line in lines
                ],
            )
            order_id = self._persist(log_prefix, attempt_id, draft)

        except CheckoutAborted as e:
            log.warning(f"{log_prefix} Checkout aborted ({e.error.value}): {e.message}")
            if session is not None:
                self._compensate(log_prefix, attempt_id, session, ticket_id, e)
            elif attempt_started:
                self._record_failure(attempt_id, "failed", e.message)
            return CheckoutResult.failure(e.error, e.message, session.session_id if session else None)

        except Exception as e:
            # Unmodelled fault: undo what exists and report it as a failure of the step in flight.
            log.critical(f"{log_prefix} Unexpected error during {step.value}: {e}", exc_info=True)
            failure = CheckoutAborted(step, f"Unexpected error: {e}")
            if session is not None:
                self._compensate(log_prefix, attempt_id, session, ticket_id, failure)
            elif attempt_started:
                self._record_failure(attempt_id, "failed", failure.message)
            return CheckoutResult.failure(step, failure.message, session.session_id if session else None)

        self._notify_fulfillment(log_prefix, order_id, draft)
        log.info(f"{log_prefix} Checkout completed. Order {order_id}, session {session.session_id}.")
        return CheckoutResult(
            success=True,
            message="Checkout session created successfully",
            url=session.redirect_url,
            session_id=session.session_id,
            order_id=order_id,
        )

    # --- Steps ---

    def _resolve_address(self, user_id: str) -> ShippingAddress:
        try:
            address = self.addresses.get_for_user(user_id)
        except SQLAlchemyError as e:
            raise CheckoutAborted(CheckoutError.PERSISTENCE_FAILED, f"Failed to read user address: {e}")
        if address is None:
            raise CheckoutAborted(CheckoutError.MISSING_ADDRESS, "User has no address.")
        return address

    def _reconcile(self, log_prefix: str, cart_lines: List[CartLineRequest]) -> List[CheckoutLine]:
        """
        Joins request quantities, catalog records and gateway prices by external id.

        Ids unknown to the catalog, and products the gateway does not return with
        an active price, are dropped rather than rejected.
        """
        requested_ids = [line.externalProductId for line in cart_lines]
        try:
            catalog = {item.external_id: item for item in self.catalog.find_by_external_ids(requested_ids)}
        except SQLAlchemyError as e:
            raise CheckoutAborted(CheckoutError.PERSISTENCE_FAILED, f"Failed to read catalog: {e}")

        quantities: Dict[str, int] = {}
        for line in cart_lines:
            if line.externalProductId in catalog:
                quantities[line.externalProductId] = line.quantity
            else:
                log.info(f"{log_prefix} Dropping unknown product {line.externalProductId!r} from cart.")

        if not quantities:
            raise CheckoutAborted(CheckoutError.CATALOG_MISMATCH, "None of the requested products are available.")

        listed = self.gateway.list_products(list(quantities))
        if not listed.success:
            raise CheckoutAborted(CheckoutError.GATEWAY_UNAVAILABLE, listed.message)

        lines = []
        for product in listed.data:
            line = self._join(log_prefix, product, catalog, quantities)
            if line is not None:
                lines.append(line)

        if not lines:
            raise CheckoutAborted(CheckoutError.CATALOG_MISMATCH, "None of the requested products can be charged.")
        log.info(f"{log_prefix} Reconciled {len(lines)} line(s) against the gateway.")
        return lines

    @staticmethod
    def _join(log_prefix: str, product: GatewayProduct, catalog, quantities) -> Optional[CheckoutLine]:
        item = catalog.get(product.id)
        quantity = quantities.get(product.id)
        if item is None or quantity is None:
            log.warning(f"{log_prefix} Gateway returned unrequested product {product.id!r}; ignoring it.")
            return None
        if not product.active:
            log.warning(f"{log_prefix} Product {product.id!r} is archived at the gateway; dropping it.")
            return None
        if not product.price_id:
            log.warning(f"{log_prefix} Product {product.id!r} has no active price at the gateway; dropping it.")
            return None
        unit_amount = product.unit_amount
        if unit_amount is None:
            unit_amount = to_minor_units(item.unit_price)
        return CheckoutLine(item=item, price_id=product.price_id, unit_amount=unit_amount, quantity=quantity)

    def _quote_shipping(self, log_prefix: str, address: ShippingAddress, packages) -> ShippingQuote:
        try:
            quotes = self.rates.quote(self.origin_postal_code, address.cep, packages)
        except (httpx.HTTPError, ValueError) as e:
            raise CheckoutAborted(CheckoutError.NO_SHIPPING_AVAILABLE, f"Not able to fetch shipping prices: {e}")

        quote = select_quote(quotes)
        if quote is None:
            raise CheckoutAborted(CheckoutError.NO_SHIPPING_AVAILABLE, "Not able to fetch shipping prices.")
        log.info(
            f"{log_prefix} Shipping via {quote.name} (id {quote.id}): {quote.price}, "
            f"{quote.delivery_range.min}-{quote.delivery_range.max} business days "
            f"({len(quotes)} quote(s) offered)."
        )
        return quote

    def _open_session(self, log_prefix, attempt_id, user_id, lines, quote) -> CheckoutSession:
        result = self.gateway.create_session(
            line_items=[{"price": line.price_id, "quantity": line.quantity} for line in lines],
            shipping_options=[shipping_option(quote, self.currency)],
            success_url=f"{self.store_url}/commerce/payment-success/{{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.store_url}/commerce/payment-canceled/{{CHECKOUT_SESSION_ID}}",
            metadata={"attemptId": attempt_id, "userId": user_id},
            idempotency_key=attempt_id,
        )
        if not result.success:
            raise CheckoutAborted(CheckoutError.SESSION_CREATION_FAILED, result.message)
        log.info(f"{log_prefix} Checkout session {result.data.session_id} created.")
        return result.data

    def _book_ticket(self, log_prefix, user_id, address, quote, manifest, volume, session) -> str:
        try:
            profile = self.shoppers.get_profile(user_id)
        except SQLAlchemyError as e:
            raise CheckoutAborted(CheckoutError.PERSISTENCE_FAILED, f"Failed to read shopper profile: {e}")

        tag = json.dumps({"sessionId": session.session_id, "userId": user_id})
        try:
            ticket_id = self.registrar.book(
                recipient=build_recipient(address, profile),
                service_id=str(quote.id),
                manifest=manifest,
                volume=volume,
                tag=tag,
            )
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            raise CheckoutAborted(CheckoutError.TICKET_REGISTRATION_FAILED, f"Failed to register shipping ticket: {e}")
        log.info(f"{log_prefix} Shipping ticket {ticket_id} registered.")
        return ticket_id

    def _persist(self, log_prefix: str, attempt_id: str, draft: OrderDraft) -> str:
        try:
            order_id = self.orders.create_order(draft, attempt_id=attempt_id)
        except SQLAlchemyError as e:
            raise CheckoutAborted(CheckoutError.PERSISTENCE_FAILED, f"Failed to persist order: {e}")
        log.info(f"{log_prefix} Order {order_id} persisted.")
        return order_id

    def _notify_fulfillment(self, log_prefix: str, order_id: str, draft: OrderDraft):
        if self.notifier is None:
            return
        message = {
            "sessionId": draft.session_id,
            "ticketId": draft.ticket_id,
            "userId": draft.user_id,
            "items": [{"bookId": line.book_id, "quantity": line.quantity} for line in draft.line_items],
        }
        try:
            self.notifier.publish_order_placed(order_id, message)
        except Exception as e:
            # The order is committed; fulfillment can be replayed from the orders table.
            log.critical(f"{log_prefix} Order {order_id} committed but fulfillment was not notified: {e}")

    # --- Saga bookkeeping ---

    def _record_start(self, attempt_id: str, user_id: str):
        try:
            self.attempts.start(attempt_id, user_id)
        except SQLAlchemyError as e:
            raise CheckoutAborted(CheckoutError.PERSISTENCE_FAILED, f"Failed to record checkout attempt: {e}")

    def _record(self, attempt_id: str, status: str, **fields):
        try:
            self.attempts.mark(attempt_id, status, **fields)
        except SQLAlchemyError as e:
            raise CheckoutAborted(CheckoutError.PERSISTENCE_FAILED, f"Failed to record step '{status}': {e}")

    def _record_failure(self, attempt_id: str, status: str, reason: str):
        try:
            self.attempts.mark(attempt_id, status, failure_reason=reason[:1024])
        except SQLAlchemyError as e:
            log.error(f"[Checkout: {attempt_id}] Could not record final attempt status '{status}': {e}")

    def _compensate(self, log_prefix, attempt_id, session: CheckoutSession, ticket_id, failure: CheckoutAborted):
        """Undoes the external side effects of a failed attempt, newest first."""
        log.info(f"{log_prefix} Starting compensation for session {session.session_id}.")
        clean = True

        if ticket_id is not None:
            try:
                self.registrar.cancel(ticket_id)
                log.info(f"{log_prefix} Shipping ticket {ticket_id} cancelled.")
            except Exception as e:
                clean = False
                log.critical(f"{log_prefix} COMPENSATION FAILED: ticket {ticket_id} not cancelled: {e}. MANUAL ACTION REQUIRED!")

        expired = self.gateway.expire_session(session.session_id)
        if expired.success:
            log.info(f"{log_prefix} Checkout session {session.session_id} expired.")
        else:
            clean = False
            log.critical(
                f"{log_prefix} COMPENSATION FAILED: session {session.session_id} still open: "
                f"{expired.message}. MANUAL ACTION REQUIRED!"
            )

        self._record_failure(attempt_id, "compensated" if clean else "failed", failure.message)
