"""
main.py — FastAPI Entry Point for the Checkout Service

This module provides the REST API interface between the storefront and the
checkout workflow.

Responsibilities:
    • Accept checkout requests for the authenticated shopper
    • Expose the gateway product operations used by the catalog admin
    • Wire configuration, database and external clients at startup
    • Provide system health information
"""

from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from . import config
from .clients import (
    FulfillmentPublisher,
    ShippingRateClient,
    ShippingTicketClient,
    StripeGatewayClient,
    configure_stripe,
)
from .db import init_db, make_engine, make_session_factory
from .errors import CheckoutError
from .logging_config import get_logger, setup_logging
from .models import CheckoutRequest, CheckoutResponse, GatewayResult, NewProductRequest
from .repositories import AddressDirectory, CatalogMirror, CheckoutAttemptLog, OrderStore, ShopperDirectory
from .workflow import CheckoutWorkflow

setup_logging()
log = get_logger(__name__)
app = FastAPI(title="Checkout Service")

ERROR_STATUS = {
    CheckoutError.UNAUTHORIZED: 401,
    CheckoutError.MISSING_ADDRESS: 422,
    CheckoutError.CATALOG_MISMATCH: 422,
    CheckoutError.NO_SHIPPING_AVAILABLE: 422,
    CheckoutError.GATEWAY_UNAVAILABLE: 502,
    CheckoutError.SESSION_CREATION_FAILED: 502,
    CheckoutError.TICKET_REGISTRATION_FAILED: 502,
    CheckoutError.PERSISTENCE_FAILED: 500,
}


def build_workflow(session_factory, gateway=None) -> CheckoutWorkflow:
    """Assembles the workflow from configuration-driven clients and SQL stores."""
    notifier = FulfillmentPublisher() if config.FULFILLMENT_NOTIFICATIONS else None
    return CheckoutWorkflow(
        catalog=CatalogMirror(session_factory),
        addresses=AddressDirectory(session_factory),
        shoppers=ShopperDirectory(session_factory),
        gateway=gateway or StripeGatewayClient(),
        rates=ShippingRateClient(),
        registrar=ShippingTicketClient(),
        orders=OrderStore(session_factory),
        attempts=CheckoutAttemptLog(session_factory),
        notifier=notifier,
    )


@app.on_event("startup")
def on_startup():
    """
    Configures Stripe, creates missing tables and builds the shared workflow.
    """
    log.info("Checkout service starting...")
    configure_stripe()
    engine = make_engine(config.DATABASE_URL)
    init_db(engine)
    gateway = StripeGatewayClient()
    app.state.gateway = gateway
    app.state.workflow = build_workflow(make_session_factory(engine), gateway=gateway)
    log.info("Checkout workflow ready.")


@app.on_event("shutdown")
def on_shutdown():
    workflow = getattr(app.state, "workflow", None)
    if workflow is not None:
        workflow.rates.close()
        workflow.registrar.close()


def get_workflow(request: Request) -> CheckoutWorkflow:
    return request.app.state.workflow


def get_gateway(request: Request) -> StripeGatewayClient:
    return request.app.state.gateway


# API Endpoint: Storefront → Checkout Service
@app.post("/v1/checkout/sessions", response_model=CheckoutResponse)
def create_checkout_session(
        checkout: CheckoutRequest,
        user_id: Optional[str] = Header(None, alias="X-User-Id"),
        workflow: CheckoutWorkflow = Depends(get_workflow),
):
    """
    Runs the checkout workflow for the shopper identified by `X-User-Id`.

    The header is set by the upstream authentication layer; a request without it
    is rejected as unauthorized.

    Returns:
        CheckoutResponse: 201 with the gateway redirect URL on success, otherwise
        a failure body with the status code mapped from the error.
    """
    result = workflow.create_checkout_session(user_id, checkout.items)
    body = CheckoutResponse(success=result.success, message=result.message, url=result.url, error=result.error)
    status_code = 201 if result.success else ERROR_STATUS[result.error]
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _gateway_response(result: GatewayResult) -> JSONResponse:
    return JSONResponse(status_code=200 if result.success else 502, content=result.model_dump(mode="json"))


# Admin endpoints: gateway product lifecycle
@app.post("/v1/products")
def create_product(product: NewProductRequest, gateway=Depends(get_gateway)):
    return _gateway_response(gateway.create_product(product.name, product.price, product.imageUrl))


@app.post("/v1/products/{product_id}/archive")
def archive_product(product_id: str, gateway=Depends(get_gateway)):
    return _gateway_response(gateway.archive_product(product_id))


@app.post("/v1/products/{product_id}/restore")
def restore_product(product_id: str, gateway=Depends(get_gateway)):
    return _gateway_response(gateway.restore_product(product_id))


# Health Check Endpoint
@app.get("/health")
def health_check():
    return {"status": "ok"}
