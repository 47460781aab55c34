"""
main.py — FastAPI Entry Point for the Checkout Service

This module provides the REST API used by the storefront's checkout page and
the webhook endpoint called by the payment processor.

Responsibilities:
    • Create processor orders for a priced service selection
    • Capture buyer-approved orders (synchronous confirmation path)
    • Expose the public PayPal SDK configuration to the storefront
    • Receive, verify and reconcile processor webhooks (asynchronous confirmation path)
    • Provide system health information

Every route except the webhook answers with permissive CORS headers. The
webhook always acknowledges with 200 unless its signature verification fails,
so that processing errors never trigger the processor's redelivery.
"""

import time
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .clients import PayPalClient, cached_gateway_for
from .errors import AuthenticityFailure, CheckoutError, InternalException
from .logging_config import get_logger, setup_logging
from .models import CURRENCY, CaptureOrderRequest, PriceRequest, WebhookEvent
from .orders import capture_order, create_order
from .settings import Settings, get_settings
from .settlement import InMemoryIdempotencyStore, SettlementTracker
from .webhooks import WebhookVerifier, reconcile_event

# Initialization
# Configure logging and initialize FastAPI app
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="ShortFormFactory Checkout")

WEBHOOK_PATHS = ("/api/paypal/webhook", "/api/webhook")

settlement_tracker = SettlementTracker(InMemoryIdempotencyStore())


def cors_headers(methods: str) -> dict:
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": methods,
        "Access-Control-Allow-Headers": "Content-Type",
    }


# Dependencies
def get_paypal_client(settings: Settings = Depends(get_settings)):
    """
    Yields a processor client for the duration of one request.

    With PAYPAL_TOKEN_CACHE enabled the client shares the process-wide cached
    credential gateway; otherwise every operation fetches its own token.
    """
    gateway = cached_gateway_for(settings) if settings.token_cache else None
    client = PayPalClient(settings, gateway=gateway)
    try:
        yield client
    finally:
        client.close()


def get_settlement_tracker() -> SettlementTracker:
    return settlement_tracker


# Error translation
@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    headers = None if request.url.path in WEBHOOK_PATHS else cors_headers("GET, POST, OPTIONS")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    log.warning(f"Invalid request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid request body"}, headers=cors_headers("POST, OPTIONS"))


# CORS preflight
@app.options("/api/create-order")
@app.options("/api/capture-order")
def preflight_post():
    return Response(status_code=200, headers=cors_headers("POST, OPTIONS"))


@app.options("/api/paypal/config")
def preflight_config():
    return Response(status_code=200, headers=cors_headers("GET, OPTIONS"))


# API Endpoint: Storefront → Create Order
@app.post("/api/create-order")
def create_order_endpoint(
        purchase: PriceRequest,
        response: Response,
        origin: Optional[str] = Header(None),
        paypal: PayPalClient = Depends(get_paypal_client)
):
    """
    Prices the buyer's selection and registers an order with the processor.

    Returns:
        dict: `orderId` (also as `orderID`, the key the storefront script reads) and `status`.

    Raises:
        InvalidRequest (400): Missing or unknown service / package.
        ProcessorRejected: With the processor's status, `debug_id` and field `details`.
        CheckoutError (500): Credentials missing or unexpected failure.
    """
    response.headers.update(cors_headers("POST, OPTIONS"))
    try:
        created = create_order(purchase, paypal, request_origin=origin)
    except CheckoutError:
        raise
    except Exception as e:
        log.critical(f"Create order error: {e}", exc_info=True)
        raise InternalException(str(e) or "Internal server error")

    return {"orderId": created.order_id, "orderID": created.order_id, "status": created.status}


# API Endpoint: Storefront → Capture Order
@app.post("/api/capture-order")
def capture_order_endpoint(
        body: CaptureOrderRequest,
        response: Response,
        paypal: PayPalClient = Depends(get_paypal_client),
        tracker: SettlementTracker = Depends(get_settlement_tracker)
):
    """
    Captures a buyer-approved order. The storefront unlocks its intake step from this response.

    Raises:
        InvalidRequest (400): Missing orderID.
        ProcessorRejected: With the processor's own status code.
        CheckoutError (500): Credentials missing or unexpected failure.
    """
    response.headers.update(cors_headers("POST, OPTIONS"))
    try:
        result = capture_order(body.orderID, paypal)
    except CheckoutError:
        raise
    except Exception as e:
        log.critical(f"[Order: {body.orderID}] Capture order error: {e}", exc_info=True)
        raise InternalException(str(e) or "Internal server error")

    tracker.observe_capture(result)

    return {
        "success": True,
        "status": result.status,
        "orderID": result.order_id,
        "captureID": result.capture_id,
        "payerEmail": result.payer_email,
        "amountPaid": result.amount_paid,
        "currency": result.currency,
    }


# API Endpoint: Storefront → SDK configuration
@app.get("/api/paypal/config")
def paypal_config(response: Response, settings: Settings = Depends(get_settings)):
    """
    Returns the public client id for the PayPal JS SDK, so sandbox and live can be
    switched without a storefront deploy. Cacheable for one hour.
    """
    response.headers.update(cors_headers("GET, OPTIONS"))
    response.headers["Cache-Control"] = "public, max-age=3600"

    if not settings.client_id:
        log.error("[PayPal Config] PAYPAL_CLIENT_ID not set")
        raise InternalException("PayPal not configured")

    log.info(f"[PayPal Config] Returning client ID for mode: {settings.mode}")
    return {"clientId": settings.client_id, "mode": settings.mode, "currency": CURRENCY}


# Webhook Endpoint: Processor → Checkout Service
@app.post("/api/paypal/webhook")
@app.post("/api/webhook")
async def paypal_webhook(
        request: Request,
        paypal: PayPalClient = Depends(get_paypal_client),
        tracker: SettlementTracker = Depends(get_settlement_tracker)
):
    """
    Verifies and reconciles a processor webhook event.

    Returns:
        dict: `received: true` with the event type, id, handler result and processing time,
        or `received: true` with an `error` if processing failed.

    Raises:
        AuthenticityFailure (401): Signature verification failed. The only non-200 answer.
    """
    start_time = time.monotonic()
    raw_body = await request.body()

    verifier = WebhookVerifier(paypal)
    is_valid = await run_in_threadpool(verifier.verify, request.headers, raw_body)
    if not is_valid:
        log.error("[Webhook] REJECTED: Invalid signature")
        raise AuthenticityFailure()

    try:
        event = WebhookEvent.model_validate_json(raw_body)
        log.info(f"[Webhook] INCOMING WEBHOOK: Event Type: {event.event_type}, Event ID: {event.id}")

        result = reconcile_event(event)
        tracker.observe_event(event, result)

        duration = int((time.monotonic() - start_time) * 1000)
        log.info(f"[Webhook] Processed in {duration}ms")
        return {
            "received": True,
            "eventType": event.event_type,
            "eventId": event.id,
            "result": result,
            "processingTime": duration,
        }

    except Exception as e:
        # Still acknowledge, the processor would otherwise keep redelivering
        log.error(f"[Webhook] EXCEPTION: {e}", exc_info=True)
        return {"received": True, "error": str(e)}


# Health Check Endpoint
@app.get("/health")
def health_check(response: Response):
    """
    Simple health check endpoint for monitoring systems or container orchestrators.
    """
    response.headers.update(cors_headers("GET, OPTIONS"))
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
