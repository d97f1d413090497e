"""
mock_shipping_service.py — Mock Implementation of the Shipping Provider (REST API)

This module simulates the shipping provider used by the checkout service for
both rate quotes and shipping tickets. It exposes a small FastAPI application
shaped like the provider's API.

Simulation Scenarios (by destination postal code):
    • "00000-000" → no carrier serves the route (empty quote list)
    • "99999-999" → every carrier reports an error for the route
    • "66666-666" → ticket booking is rejected (HTTP 422)
    • Any other   → three carriers quoted, tickets accepted

Endpoints:
    POST   /api/v2/me/shipment/calculate — Quote carriers for a package set.
    POST   /api/v2/me/cart               — Book a shipping ticket.
    DELETE /api/v2/me/cart/{ticket_id}   — Cancel a booked ticket.

Port:
    Default: 8002 (HTTP)
"""

import logging
import uuid
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

app = FastAPI(title="Mock Shipping Service")
logging.basicConfig(level=logging.INFO)

NO_ROUTE_CEP = "00000-000"
ALL_ERRORS_CEP = "99999-999"
REJECT_TICKET_CEP = "66666-666"

# (id, name, base price, price per kg, min days, max days)
CARRIERS = [
    (1, "PAC", 12.40, 3.10, 5, 9),
    (2, "SEDEX", 21.90, 5.75, 1, 3),
    (3, "Jadlog .Package", 15.05, 2.20, 3, 6),
]

# Booked tickets, kept in memory for the lifetime of the process
TICKETS: Dict[str, dict] = {}


class PostalCode(BaseModel):
    postal_code: str


class QuoteProduct(BaseModel):
    id: Optional[str] = None
    quantity: int
    height: float
    width: float
    length: float
    weight: float


class CalculateRequest(BaseModel):
    """
    Represents a rate quote request.

    Attributes:
        origin (PostalCode): Origin, sent as "from".
        to (PostalCode): Destination.
        products (List[QuoteProduct]): Units to ship; weight in kilograms.
    """
    model_config = ConfigDict(populate_by_name=True)

    origin: PostalCode = Field(..., alias="from")
    to: PostalCode
    products: List[QuoteProduct]


def _pack(products: List[QuoteProduct]) -> dict:
    """Stacks every unit into one box: widest footprint, summed height."""
    return {
        "dimensions": {
            "height": round(sum(p.height * p.quantity for p in products), 2),
            "width": max((p.width for p in products), default=0),
            "length": max((p.length for p in products), default=0),
        },
        "weight": round(sum(p.weight * p.quantity for p in products), 3),
    }


@app.post("/api/v2/me/shipment/calculate")
def calculate(request: CalculateRequest):
    """
    Quotes every carrier for the requested package set.

    Returns:
        list[dict]: One entry per carrier with id, name, price, delivery_range and
        packages, or with an `error` field when the carrier cannot serve the route.
    """
    destination = request.to.postal_code
    logging.info(f"[SHIP] Quote request {request.origin.postal_code} → {destination} ({len(request.products)} products)")

    if destination == NO_ROUTE_CEP:
        logging.warning(f"[SHIP] No carrier serves {destination}.")
        return []

    if destination == ALL_ERRORS_CEP:
        return [
            {"id": cid, "name": name, "error": "Transportadora não atende este trecho."}
            for cid, name, *_ in CARRIERS
        ]

    package = _pack(request.products)
    quotes = []
    for cid, name, base, per_kg, min_days, max_days in CARRIERS:
        price = round(base + per_kg * package["weight"], 2)
        quotes.append({
            "id": cid,
            "name": name,
            "price": f"{price:.2f}",
            "delivery_range": {"min": min_days, "max": max_days},
            "packages": [package],
        })
    return quotes


@app.post("/api/v2/me/cart")
def book_ticket(payload: dict):
    """
    Books a shipping ticket.

    Raises:
        HTTPException(422): If the recipient postal code triggers the rejection scenario.
    """
    recipient = payload.get("to") or {}
    if recipient.get("postal_code") == REJECT_TICKET_CEP:
        logging.warning("[SHIP] Ticket rejected for recipient postal code.")
        raise HTTPException(status_code=422, detail={"message": "Destinatário inválido."})

    ticket_id = str(uuid.uuid4())
    TICKETS[ticket_id] = payload
    logging.info(f"[SHIP] Ticket {ticket_id} booked for service {payload.get('service')}.")
    return {"id": ticket_id, "status": "pending", "service_id": payload.get("service")}


@app.delete("/api/v2/me/cart/{ticket_id}", status_code=204)
def cancel_ticket(ticket_id: str):
    if TICKETS.pop(ticket_id, None) is None:
        raise HTTPException(status_code=404, detail={"message": "Ticket not found."})
    logging.info(f"[SHIP] Ticket {ticket_id} cancelled.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8002)
