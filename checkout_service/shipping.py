"""
shipping.py — Shipping Calculations for the Checkout Workflow

Pure helpers that turn resolved cart lines into rate-service packages, pick the
quote to charge, render it as a gateway shipping option and build the
registrar's recipient and volume blocks.
"""

from decimal import ROUND_CEILING, Decimal
from typing import Dict, List, Optional

from .models import (
    CheckoutLine,
    PackageVolume,
    RatePackage,
    ShippingAddress,
    ShippingQuote,
    ShippingRecipient,
    ShopperProfile,
)


def to_minor_units(amount) -> int:
    """
    Converts a major-unit amount into gateway minor units, rounding up.

    Floats go through `str` first so that 15.3 stays 1530 instead of picking up
    binary noise. 10.001 → 1001.
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return int((amount * 100).to_integral_value(rounding=ROUND_CEILING))


def build_rate_packages(lines: List[CheckoutLine]) -> List[RatePackage]:
    """Per-line package attributes; catalog grams become kilograms, missing weight is zero."""
    return [
        RatePackage(
            quantity=line.quantity,
            height=line.item.height_cm,
            width=line.item.width_cm,
            length=line.item.thickness_cm,
            weight=(line.item.weight_grams or 0) / 1000,
        )
        for line in lines
    ]


def select_quote(quotes: List[ShippingQuote]) -> Optional[ShippingQuote]:
    """
    Picks the quote with the smallest maximum delivery-day bound.

    `sorted` is stable, so on a tie the quote listed first by the rate
    service wins. Returns None for an empty list.
    """
    if not quotes:
        return None
    return sorted(quotes, key=lambda q: q.delivery_range.max)[0]


def shipping_option(quote: ShippingQuote, currency: str) -> Dict:
    """Renders the chosen quote as a fixed-amount gateway shipping option."""
    return {
        "shipping_rate_data": {
            "type": "fixed_amount",
            "metadata": {"serviceId": str(quote.id)},
            "display_name": quote.name,
            "delivery_estimate": {
                "minimum": {"unit": "business_day", "value": quote.delivery_range.min},
                "maximum": {"unit": "business_day", "value": quote.delivery_range.max},
            },
            "fixed_amount": {
                "amount": to_minor_units(quote.price),
                "currency": currency,
            },
        }
    }


def package_volume(quote: ShippingQuote, packages: List[RatePackage]) -> PackageVolume:
    """
    Volume declared on the shipping ticket.

    Uses the first package the carrier packed for the quote. When the quote
    carries no packing, falls back to the largest line dimensions and the
    total weight of all units.
    """
    if quote.packages:
        first = quote.packages[0]
        return PackageVolume(
            height=first.dimensions.height,
            width=first.dimensions.width,
            length=first.dimensions.length,
            weight=first.weight,
        )
    return PackageVolume(
        height=max((p.height for p in packages), default=0),
        width=max((p.width for p in packages), default=0),
        length=max((p.length for p in packages), default=0),
        weight=sum(p.weight * p.quantity for p in packages),
    )


def build_recipient(address: ShippingAddress, profile: Optional[ShopperProfile]) -> ShippingRecipient:
    street = f"{address.street}, número {address.number}"
    if address.complement:
        street = f"{street}, {address.complement}"
    return ShippingRecipient(
        name=profile.full_name if profile else "",
        address=street,
        district=address.neighborhood,
        city=address.city,
        state_abbr=address.state,
        postal_code=address.cep,
        email=(profile.email if profile and profile.email else "N/A"),
    )
