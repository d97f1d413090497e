"""
config.py — Environment-based Settings for the Checkout Service

All service addresses, credentials and store-wide constants are read from
environment variables once at import time. Clients and the workflow take these
values as constructor defaults, so tests can pass their own.
"""

import os


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Persistence ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./checkout.db")

# --- Payment gateway (Stripe) ---
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "sk_test_placeholder")
STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS", "10"))

# --- Storefront ---
STORE_URL = os.environ.get("STORE_URL", "http://localhost:3000")
STORE_CURRENCY = os.environ.get("STORE_CURRENCY", "brl")
STORE_LOCALE = os.environ.get("STORE_LOCALE", "pt-BR")

# --- Shipping rate + ticket service ---
SHIPPING_SERVICE_URL = os.environ.get("SHIPPING_SERVICE_URL", "http://shipping_service:8002")
SHIPPING_API_TOKEN = os.environ.get("SHIPPING_API_TOKEN", "")
SHIPPING_TIMEOUT_SECONDS = float(os.environ.get("SHIPPING_TIMEOUT_SECONDS", "8"))

# Sender block printed on every shipping ticket
SHIPPING_SENDER = {
    "name": os.environ.get("SHIPPING_SENDER_NAME", "Livraria"),
    "email": os.environ.get("SHIPPING_SENDER_EMAIL", "envios@example.com"),
    "address": os.environ.get("SHIPPING_SENDER_ADDRESS", "Rua Augusta, 100"),
    "district": os.environ.get("SHIPPING_SENDER_DISTRICT", "Consolação"),
    "city": os.environ.get("SHIPPING_SENDER_CITY", "São Paulo"),
    "state_abbr": os.environ.get("SHIPPING_SENDER_STATE", "SP"),
    "postal_code": os.environ.get("SHIPPING_ORIGIN_POSTAL_CODE", "01305-000"),
}

# --- Fulfillment hand-off (RabbitMQ) ---
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "checkout")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "checkout")
FULFILLMENT_QUEUE = os.environ.get("FULFILLMENT_QUEUE", "fulfillment.orders.placed")
FULFILLMENT_NOTIFICATIONS = _flag("FULFILLMENT_NOTIFICATIONS", "on")

# --- Logging ---
LOG_FILE = os.environ.get("LOG_FILE", "checkout_service.log")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
