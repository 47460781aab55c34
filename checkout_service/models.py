"""
models.py — Data Models for Checkout and Payment Reconciliation

This module defines the data structures exchanged between the storefront, the
checkout services and the payment processor. It uses Pydantic models to ensure
type safety and validation of incoming data.

Models:
    - PriceRequest: The buyer's selection (service, tier, add-ons).
    - Quote: The computed price of a PriceRequest.
    - OrderStatus / Order: Locally observed snapshot of a processor order.
    - CreatedOrder / CaptureResult: Results of the create and capture services.
    - AccessToken: Short-lived bearer token from the credential gateway.
    - WebhookEvent: Event delivered asynchronously by the processor.
    - CaptureOrderRequest: Request body of the capture endpoint.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

CURRENCY = "USD"


class PriceRequest(BaseModel):
    """
    Represents the buyer's purchase selection.

    Service and tier are optional at the model level so that a missing field is
    reported by the order services as an `InvalidRequest` instead of a schema error.

    Attributes:
        service (str): Service identifier from the pricing catalog (e.g. 'aiReel').
        tier (str): One of 'basic', 'standard', 'premium'. Sent as `package` by the storefront.
        addons (List[str]): Add-on identifiers. Unknown identifiers are ignored when pricing.
    """
    model_config = ConfigDict(populate_by_name=True)

    service: Optional[str] = None
    tier: Optional[str] = Field(None, validation_alias=AliasChoices("package", "tier"))
    addons: List[str] = Field(default_factory=list)

    def metadata(self) -> Dict[str, Any]:
        """The purchase as it is round-tripped through the processor's `custom_id`."""
        return {"service": self.service, "package": self.tier, "addons": list(self.addons)}


class Quote(BaseModel):
    """
    Immutable price of a PriceRequest.

    Attributes:
        total_amount (Decimal): Sum of the base price and all known add-ons.
        currency (str): Always 'USD'.
    """
    model_config = ConfigDict(frozen=True)

    total_amount: Decimal
    currency: str = CURRENCY

    @property
    def value(self) -> str:
        """Wire representation with exactly two decimal places."""
        return f"{self.total_amount:.2f}"


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    APPROVED = "APPROVED"
    CAPTURED = "CAPTURED"
    DENIED = "DENIED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Order(BaseModel):
    """
    Locally observed snapshot of an order; the processor remains the source of truth.

    Attributes:
        order_id (str): Processor-assigned order identifier.
        status (OrderStatus): Last observed status.
        purchase (dict | None): Round-tripped purchase metadata, not validated.
        capture_id (str | None): Capture identifier once captured.
        payer_email (str | None): Payer e-mail if the processor reported one.
        amount_captured (str | None): Captured amount as reported by the processor.
    """
    order_id: str
    status: OrderStatus
    purchase: Optional[Dict[str, Any]] = None
    capture_id: Optional[str] = None
    payer_email: Optional[str] = None
    amount_captured: Optional[str] = None


class CreatedOrder(BaseModel):
    order_id: str
    status: str


class CaptureResult(BaseModel):
    """
    Settlement facts extracted from a successful capture response.

    All enrichment fields are best effort and default to None.
    """
    status: Optional[str] = None
    order_id: str
    capture_id: Optional[str] = None
    payer_email: Optional[str] = None
    amount_paid: Optional[str] = None
    currency: str = CURRENCY


class AccessToken(BaseModel):
    value: str
    expires_in: Optional[int] = None


class WebhookEvent(BaseModel):
    """
    Event delivered by the processor (at-least-once).

    Attributes:
        id (str | None): Event identifier, the deduplication key.
        event_type (str | None): Processor event type, e.g. 'PAYMENT.CAPTURE.COMPLETED'.
        resource (dict): Opaque nested payload.
    """
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    event_type: Optional[str] = None
    resource: Optional[Dict[str, Any]] = Field(default_factory=dict)


class CaptureOrderRequest(BaseModel):
    orderID: Optional[str] = None
