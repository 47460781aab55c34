"""
webhooks.py — Webhook Authenticity Verification and Event Reconciliation

The processor delivers webhook events asynchronously and at least once. This
module handles them in two steps:

1. WebhookVerifier.verify: confirm with the processor that the transmission is
   genuine. Fail-closed once PAYPAL_WEBHOOK_ID is configured. Without a webhook
   id every event is accepted and a warning is logged. That mode is INSECURE
   and meant for local development only.
2. reconcile_event: route a verified event by type to exactly one handler and
   return the extracted facts. Nothing is stored, so handling the same event
   twice returns the same result twice. Downstream effects that must happen
   once (notifications, persistence) have to key on the event id; see
   settlement.py.
"""

import json
from typing import Callable, Dict, Mapping, Union

from .clients import PayPalClient, as_object, first_object
from .logging_config import get_logger, mask_credential
from .models import CURRENCY, WebhookEvent

log = get_logger(__name__)

TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class WebhookVerifier:
    """
    Verifies webhook transmissions through the processor's verification API.

    Args:
        paypal (PayPalClient): Processor client; settings supply the webhook id.
    """

    def __init__(self, paypal: PayPalClient):
        self.paypal = paypal

    def verify(self, headers: Mapping[str, str], raw_body: Union[bytes, str]) -> bool:
        """
        Returns True only if the processor reports verification_status 'SUCCESS'.

        Any other status, and any network, parsing or token failure, yields
        False. With no webhook id configured the check is skipped and True is
        returned.
        """
        webhook_id = self.paypal.settings.webhook_id
        log.info(f"[Webhook] Verifying signature (mode: {self.paypal.settings.mode}, "
                 f"webhook id: {mask_credential(webhook_id)})")

        if not webhook_id:
            log.warning("[Webhook] WARNING: PAYPAL_WEBHOOK_ID not set")
            log.warning("[Webhook] Skipping signature verification (INSECURE for production!)")
            return True

        try:
            lowered = {str(k).lower(): v for k, v in headers.items()}
            transmission = {field: lowered.get(name) for field, name in TRANSMISSION_HEADERS.items()}
            present = {field: value is not None for field, value in transmission.items()}
            log.info(f"[Webhook] Verification headers present: {present}")

            payload = dict(transmission)
            payload["webhook_id"] = webhook_id
            payload["webhook_event"] = json.loads(raw_body)

            token = self.paypal.gateway.get_access_token()
            data = self.paypal.verify_webhook_signature(token, payload)
        except Exception as e:
            log.error(f"[Webhook] Verification error: {e}")
            return False

        status = data.get("verification_status") if isinstance(data, dict) else None
        if status == "SUCCESS":
            log.info("[Webhook] Signature VERIFIED")
            return True
        log.error(f"[Webhook] Signature FAILED: {status}")
        return False


def _describe_addons(addons) -> str:
    if isinstance(addons, list) and addons:
        return ", ".join(map(str, addons))
    return "none"


def decode_purchase(custom_id) -> dict:
    """
    Recovers the purchase selection round-tripped through `custom_id`.

    Unparseable metadata is logged and an empty dict is returned; it never
    fails the event.
    """
    if not custom_id:
        return {}
    try:
        details = json.loads(custom_id)
    except (TypeError, ValueError):
        log.warning(f"[Webhook] Could not parse custom_id: {custom_id}")
        return {}
    if not isinstance(details, dict):
        log.warning(f"[Webhook] Unexpected custom_id payload: {custom_id}")
        return {}
    return details


def handle_order_approved(event: WebhookEvent) -> dict:
    log.info("[Webhook] Order approved, awaiting capture...")
    return {"status": "order_approved", "orderId": (event.resource or {}).get("id")}


def handle_payment_completed(event: WebhookEvent) -> dict:
    resource = event.resource or {}
    unit = first_object(resource.get("purchase_units"))
    capture = first_object(as_object(unit.get("payments")).get("captures"))
    payer = as_object(resource.get("payer"))
    related_ids = as_object(as_object(resource.get("supplementary_data")).get("related_ids"))

    order_id = resource.get("id") or related_ids.get("order_id")
    amount = (
        as_object(unit.get("amount")).get("value")
        or as_object(capture.get("amount")).get("value")
        or as_object(resource.get("amount")).get("value")
    )
    currency = as_object(unit.get("amount")).get("currency_code") or CURRENCY
    order_details = decode_purchase(unit.get("custom_id"))

    log.info("[Webhook] PAYMENT CAPTURE COMPLETED")
    log.info(f"[Webhook] Order ID: {order_id}, Capture ID: {capture.get('id')}, Amount: {currency} {amount}")
    log.info(f"[Webhook] Payer: {as_object(payer.get('name')).get('given_name')} <{payer.get('email_address')}>")
    log.info(f"[Webhook] Service: {order_details.get('service', 'N/A')}, "
             f"Package: {order_details.get('package', 'N/A')}, "
             f"Addons: {_describe_addons(order_details.get('addons'))}")

    return {
        "success": True,
        "status": "captured",
        "orderId": order_id,
        "captureId": capture.get("id"),
        "payerEmail": payer.get("email_address"),
        "payerName": as_object(payer.get("name")).get("given_name"),
        "amount": amount,
        "currency": currency,
        "orderDetails": order_details,
    }


def handle_payment_denied(event: WebhookEvent) -> dict:
    resource = event.resource or {}
    order_id = resource.get("id")
    reason = (resource.get("status_details") or {}).get("reason") or resource.get("status")
    log.warning(f"[Webhook] PAYMENT DENIED: Order {order_id}, Reason: {reason}")
    return {"success": False, "status": "denied", "orderId": order_id, "reason": reason}


def handle_order_cancelled(event: WebhookEvent) -> dict:
    order_id = (event.resource or {}).get("id")
    log.info(f"[Webhook] ORDER CANCELLED: Order {order_id}")
    return {"success": False, "status": "cancelled", "orderId": order_id}


def handle_refund_completed(event: WebhookEvent) -> dict:
    resource = event.resource or {}
    amount = resource.get("amount") or {}
    refund_id = resource.get("id")
    currency = amount.get("currency_code") or CURRENCY
    log.info(f"[Webhook] REFUND COMPLETED: Refund {refund_id}, Amount: {currency} {amount.get('value')}")
    return {
        "success": True,
        "status": "refunded",
        "refundId": refund_id,
        "amount": amount.get("value"),
        "currency": currency,
    }


EVENT_HANDLERS: Dict[str, Callable[[WebhookEvent], dict]] = {
    "CHECKOUT.ORDER.APPROVED": handle_order_approved,
    "PAYMENT.CAPTURE.COMPLETED": handle_payment_completed,
    "CHECKOUT.ORDER.COMPLETED": handle_payment_completed,
    "PAYMENT.CAPTURE.DENIED": handle_payment_denied,
    "CHECKOUT.ORDER.CANCELLED": handle_order_cancelled,
    "PAYMENT.CAPTURE.REFUNDED": handle_refund_completed,
}


def reconcile_event(event: WebhookEvent) -> dict:
    """
    Routes a verified event to its handler and returns the extracted facts.

    Unknown event types are acknowledged with status 'unhandled'.
    """
    handler = EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        log.info(f"[Webhook] Unhandled event type: {event.event_type}")
        return {"status": "unhandled", "eventType": event.event_type}
    return handler(event)
