"""
models.py — Data Models for Checkout Processing

Pydantic models for everything that crosses a boundary of the checkout workflow:
the inbound HTTP payloads, the records read from the catalog and address
directory, the payloads exchanged with the payment gateway and the shipping
services, and the order written at the end.

Wire models (`CartLineRequest`, `CheckoutRequest`, `CheckoutResponse`,
`NewProductRequest`) use camelCase field names like the storefront sends them.
Money is held as `Decimal` in major units; gateway amounts are `int` minor units.
"""

from decimal import Decimal
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import CheckoutError


# --- Inbound (storefront → checkout service) ---

class CartLineRequest(BaseModel):
    """
    A single cart entry as submitted by the shopper's browser.

    Attributes:
        externalProductId (str): Gateway-side product identifier of the book.
        quantity (int): Requested quantity. Must be greater than zero.
    """
    externalProductId: str
    quantity: int = Field(..., gt=0)


class CheckoutRequest(BaseModel):
    items: List[CartLineRequest]


class CheckoutResponse(BaseModel):
    success: bool
    message: str
    url: Optional[str] = None
    error: Optional[CheckoutError] = None


class NewProductRequest(BaseModel):
    name: str
    price: Decimal = Field(..., gt=0)
    imageUrl: str


# --- Local records ---

class CatalogItem(BaseModel):
    """
    A sellable book as recorded in the store's own catalog.

    The catalog is authoritative for physical attributes only; the charged price
    always comes from the payment gateway.
    """
    model_config = ConfigDict(frozen=True)

    internal_id: str
    external_id: str
    title: str
    unit_price: Decimal
    weight_grams: Optional[int] = None
    width_cm: float
    height_cm: float
    thickness_cm: float


class ShippingAddress(BaseModel):
    user_id: str
    cep: str
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: str
    city: str
    state: str


class ShopperProfile(BaseModel):
    user_id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# --- Payment gateway ---

class GatewayResult(BaseModel):
    """
    Outcome of a single payment gateway call. Gateway calls never raise;
    callers inspect `success` instead.
    """
    success: bool
    message: str
    data: Any = None


class GatewayProduct(BaseModel):
    """Gateway-side product record carrying its currently active price."""
    id: str
    name: str = ""
    active: bool = True
    price_id: Optional[str] = None
    unit_amount: Optional[int] = None


class CheckoutLine(BaseModel):
    """
    A fully resolved cart line: the request quantity joined with the catalog
    record and the gateway's active price for the same external id.
    """
    item: CatalogItem
    price_id: str
    unit_amount: int
    quantity: int

    @property
    def unit_price(self) -> Decimal:
        return Decimal(self.unit_amount) / 100


class CheckoutSession(BaseModel):
    session_id: str
    redirect_url: str
    total_amount: int
    line_items: List[dict] = []


# --- Shipping ---

class DeliveryRange(BaseModel):
    min: int
    max: int


class PackageDimensions(BaseModel):
    height: float
    width: float
    length: float


class ShippingPackage(BaseModel):
    dimensions: PackageDimensions
    weight: float


class ShippingQuote(BaseModel):
    """A carrier offer returned by the rate service for one checkout attempt."""
    id: Union[int, str]
    name: str
    price: Decimal
    delivery_range: DeliveryRange
    packages: List[ShippingPackage] = []


class RatePackage(BaseModel):
    """Per-line package attributes sent to the rate service. Weight is in kilograms."""
    quantity: int
    height: float
    width: float
    length: float
    weight: float


class ShippingRecipient(BaseModel):
    name: str
    address: str
    district: str
    city: str
    state_abbr: str
    postal_code: str
    email: str


class ManifestItem(BaseModel):
    name: str
    quantity: int
    unitary_value: Decimal


class PackageVolume(BaseModel):
    height: float
    width: float
    length: float
    weight: float


# --- Orders ---

class OrderLine(BaseModel):
    book_id: str
    price: Decimal
    quantity: int = 1


class OrderDraft(BaseModel):
    """Everything needed to persist an order once session and ticket exist."""
    user_id: str
    session_id: str
    ticket_id: str
    total_price: Decimal
    shipping_price: Decimal
    shipping_service_id: str
    shipping_service_name: str
    shipping_days_min: int
    shipping_days_max: int
    line_items: List[OrderLine]


class Order(OrderDraft):
    order_id: str


class CheckoutResult(BaseModel):
    """Outcome of one checkout attempt, as returned by the workflow."""
    success: bool
    message: str
    url: Optional[str] = None
    error: Optional[CheckoutError] = None
    session_id: Optional[str] = None
    order_id: Optional[str] = None

    @classmethod
    def failure(cls, error: CheckoutError, message: str, session_id: str = None):
        return cls(success=False, message=message, error=error, session_id=session_id)
