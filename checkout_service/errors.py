"""
errors.py — Checkout Failure Taxonomy

Each external-call failure inside the checkout workflow is converted into exactly
one `CheckoutError` code. `CheckoutAborted` is the internal signal used to leave
the workflow early; it never escapes `CheckoutWorkflow.create_checkout_session`.
"""

from enum import Enum


class CheckoutError(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    MISSING_ADDRESS = "MISSING_ADDRESS"
    CATALOG_MISMATCH = "CATALOG_MISMATCH"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    NO_SHIPPING_AVAILABLE = "NO_SHIPPING_AVAILABLE"
    SESSION_CREATION_FAILED = "SESSION_CREATION_FAILED"
    TICKET_REGISTRATION_FAILED = "TICKET_REGISTRATION_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class CheckoutAborted(Exception):
    """Raised by a workflow step to stop the checkout with a structured failure."""

    def __init__(self, error: CheckoutError, message: str):
        super().__init__(message)
        self.error = error
        self.message = message
