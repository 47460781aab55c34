"""
orders.py — Order Create and Order Capture Services

This module contains the synchronous part of the payment lifecycle:

1. create_order: validate the buyer's selection, price it and register an order
   with the processor (intent CAPTURE). The full selection is embedded in the
   order's `custom_id` so later confirmation steps can recover it without a
   local database.
2. capture_order: finalize a buyer-approved order and extract the settlement
   facts. This response is the fast confirmation path for the buyer's browser;
   the webhook (see webhooks.py) is the asynchronous one.

Each call fetches its own access token; nothing is retried.
"""

import json
from typing import Optional

from .clients import PayPalClient, as_object, first_object
from .errors import AuthError, InvalidRequest, PricingError, UpstreamAuthFailure
from .logging_config import get_logger
from .models import CURRENCY, CaptureResult, CreatedOrder, PriceRequest
from .pricing import BRAND_NAME, PricingCatalog, catalog as default_catalog
from .settings import site_origin

log = get_logger(__name__)


def _access_token(paypal: PayPalClient, log_prefix: str):
    try:
        return paypal.gateway.get_access_token()
    except AuthError as e:
        log.error(f"{log_prefix} Access token unavailable: {e.message}")
        raise UpstreamAuthFailure(e) from e


def build_order_payload(request: PriceRequest, quote, description: str, origin: str) -> dict:
    """Order registration body: one purchase unit carrying the total and the round-tripped selection."""
    return {
        "intent": "CAPTURE",
        "purchase_units": [{
            "amount": {
                "currency_code": quote.currency,
                "value": quote.value,
            },
            "description": description,
            "custom_id": json.dumps(request.metadata()),
        }],
        "application_context": {
            "brand_name": BRAND_NAME,
            "landing_page": "NO_PREFERENCE",
            "user_action": "PAY_NOW",
            "return_url": f"{origin}/thank-you.html",
            "cancel_url": f"{origin}/order.html",
        },
    }


def create_order(
        request: PriceRequest,
        paypal: PayPalClient,
        request_origin: Optional[str] = None,
        catalog: PricingCatalog = default_catalog
) -> CreatedOrder:
    """
    Prices a purchase selection and registers it as an order with the processor.

    Args:
        request (PriceRequest): Service, tier and add-ons chosen by the buyer.
        paypal (PayPalClient): Processor client; its gateway supplies the token.
        request_origin (str): Origin header of the inbound request, used when no site origin is configured.
        catalog (PricingCatalog): Price list, the storefront catalog by default.

    Returns:
        CreatedOrder: Processor order id and initial status (normally 'CREATED').

    Raises:
        InvalidRequest: If service or tier is missing or unknown.
        UpstreamAuthFailure: If no access token could be obtained.
        ProcessorRejected: If the processor declines the order.
    """
    if not request.service or not request.tier:
        raise InvalidRequest("Missing service or package")

    try:
        quote = catalog.price(request.service, request.tier, request.addons)
    except PricingError as e:
        log.warning(f"[Checkout] Rejected selection {request.service}/{request.tier}: {e.message}")
        raise InvalidRequest(e.message) from e

    log_prefix = f"[Checkout: {request.service}/{request.tier}]"
    log.info(f"{log_prefix} Quote {quote.currency} {quote.value} (addons: {', '.join(request.addons) or 'none'})")

    token = _access_token(paypal, log_prefix)

    origin = site_origin(paypal.settings, request_origin)
    payload = build_order_payload(request, quote, catalog.describe(request.service, request.tier), origin)
    order = paypal.create_order(token, payload)

    created = CreatedOrder(order_id=order["id"], status=order.get("status", "CREATED"))
    log.info(f"[Order: {created.order_id}] Order registered with status {created.status}.")
    return created


def parse_capture(order_id: str, capture_data: dict) -> CaptureResult:
    """
    Extracts the settlement facts from a capture response.

    Capture id, payer e-mail and amount are best effort: any missing nested
    field simply yields None.
    """
    unit = first_object(capture_data.get("purchase_units"))
    capture = first_object(as_object(unit.get("payments")).get("captures"))
    amount = as_object(capture.get("amount"))
    payer = as_object(capture_data.get("payer"))

    return CaptureResult(
        status=capture_data.get("status"),
        order_id=order_id,
        capture_id=capture.get("id"),
        payer_email=payer.get("email_address"),
        amount_paid=amount.get("value"),
        currency=amount.get("currency_code") or CURRENCY,
    )


def capture_order(order_id: Optional[str], paypal: PayPalClient) -> CaptureResult:
    """
    Captures a buyer-approved order.

    Args:
        order_id (str): Processor order id returned by `create_order`.
        paypal (PayPalClient): Processor client; a fresh token is fetched for this call.

    Returns:
        CaptureResult: Settlement status (normally 'COMPLETED') and extracted facts.

    Raises:
        InvalidRequest: If the order id is missing (the processor is not contacted).
        UpstreamAuthFailure: If no access token could be obtained.
        ProcessorRejected: If the processor declines the capture; its status is preserved.
    """
    if not order_id:
        raise InvalidRequest("Missing orderID")

    log_prefix = f"[Order: {order_id}]"
    token = _access_token(paypal, log_prefix)
    capture_data = paypal.capture_order(token, order_id)

    result = parse_capture(order_id, capture_data)
    log.info(
        f"{log_prefix} Payment captured: Capture {result.capture_id}, "
        f"Amount {result.currency} {result.amount_paid}, Payer: {result.payer_email}"
    )
    return result
