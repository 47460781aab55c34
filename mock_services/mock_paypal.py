"""
mock_paypal.py — Mock Implementation of the PayPal REST API

This module provides a simulated payment processor for local development and
tests. It exposes the subset of the PayPal REST API used by the checkout
service as a FastAPI application and keeps its orders in memory.

Simulation Scenarios:
    • Client id "bad_client"             → token request rejected (HTTP 401)
    • Order description contains "REJECT" → order creation rejected (HTTP 422)
    • Custom id contains "DECLINE"        → capture declined (HTTP 422, INSTRUMENT_DECLINED)
    • Unknown order id                    → capture fails (HTTP 404)
    • Second capture of the same order    → ORDER_ALREADY_CAPTURED (HTTP 422)
    • transmission_sig "valid-sig"        → webhook verification SUCCESS, otherwise FAILURE

Endpoints:
    POST /v1/oauth2/token
    POST /v2/checkout/orders
    POST /v2/checkout/orders/{order_id}/capture
    POST /v1/notifications/verify-webhook-signature

Port:
    Default: 8001 (HTTP)
"""

import base64
import logging
import time
import uuid

from fastapi import FastAPI, Form, Header, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock PayPal API")
logging.basicConfig(level=logging.INFO)

ORDERS = {}


def _error(status: int, name: str, message: str, details=None) -> JSONResponse:
    debug_id = uuid.uuid4().hex[:13]
    return JSONResponse(
        status_code=status,
        content={"name": name, "message": message, "debug_id": debug_id, "details": details or []},
        headers={"PayPal-Debug-Id": debug_id},
    )


def _unauthorized() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "invalid_token", "error_description": "Token signature verification failed"},
    )


def _has_bearer(authorization) -> bool:
    return bool(authorization) and authorization.startswith("Bearer ")


@app.post("/v1/oauth2/token")
def issue_token(
        grant_type: str = Form(...),
        authorization: str = Header(None)
):
    """
    Issues an access token for the client-credentials grant.

    Returns:
        dict: `access_token`, `token_type` and `expires_in` on success.
        JSONResponse(401): For missing Basic credentials or client id "bad_client".
    """
    if not authorization or not authorization.startswith("Basic "):
        return JSONResponse(status_code=401, content={"error": "invalid_client",
                                                      "error_description": "Client Authentication failed"})
    client_id = base64.b64decode(authorization[len("Basic "):]).decode().split(":", 1)[0]
    if client_id == "bad_client" or grant_type != "client_credentials":
        logging.warning(f"[PP] Token request for {client_id} rejected.")
        return JSONResponse(status_code=401, content={"error": "invalid_client",
                                                      "error_description": "Client Authentication failed"})

    logging.info(f"[PP] Token issued for {client_id}.")
    return {
        "access_token": f"A21AA{uuid.uuid4().hex}",
        "token_type": "Bearer",
        "expires_in": 32400,
    }


@app.post("/v2/checkout/orders")
async def register_order(request: Request, authorization: str = Header(None)):
    """
    Registers an order. Only the fields the checkout service sends are checked.

    Returns:
        dict: Order `id`, `status` CREATED and the approval link.
        JSONResponse(422): If the order is malformed or its description contains "REJECT".
    """
    if not _has_bearer(authorization):
        return _unauthorized()

    payload = await request.json()
    units = payload.get("purchase_units") or []
    if payload.get("intent") != "CAPTURE" or not units:
        return _error(422, "UNPROCESSABLE_ENTITY", "The requested action could not be performed.", [
            {"field": "/intent", "issue": "INVALID_PARAMETER_VALUE",
             "description": "intent and purchase_units are required."}
        ])
    unit = units[0]
    if "REJECT" in (unit.get("description") or ""):
        return _error(422, "UNPROCESSABLE_ENTITY", "The requested action could not be performed.", [
            {"field": "/purchase_units/@reference_id=='default'/description",
             "issue": "INVALID_STRING_LENGTH", "description": "Description rejected."}
        ])

    order_id = uuid.uuid4().hex[:17].upper()
    ORDERS[order_id] = {"unit": unit, "status": "CREATED"}
    logging.info(f"[PP] Order {order_id} registered ({unit['amount']['currency_code']} {unit['amount']['value']}).")
    return {
        "id": order_id,
        "status": "CREATED",
        "links": [{"href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}", "rel": "approve"}],
    }


@app.post("/v2/checkout/orders/{order_id}/capture")
def capture(order_id: str, authorization: str = Header(None)):
    """
    Captures a registered order.

    Returns:
        dict: Order with status COMPLETED, payer and the capture.
        JSONResponse(404): Unknown order.
        JSONResponse(422): Declined instrument or order already captured.
    """
    if not _has_bearer(authorization):
        return _unauthorized()

    order = ORDERS.get(order_id)
    if order is None:
        return _error(404, "RESOURCE_NOT_FOUND", "The specified resource does not exist.", [
            {"issue": "INVALID_RESOURCE_ID", "description": "Specified resource ID does not exist."}
        ])
    if order["status"] == "COMPLETED":
        return _error(422, "UNPROCESSABLE_ENTITY", "The requested action could not be performed.", [
            {"issue": "ORDER_ALREADY_CAPTURED", "description": "Order already captured."}
        ])
    unit = order["unit"]
    if "DECLINE" in (unit.get("custom_id") or ""):
        logging.warning(f"[PP] Capture for {order_id} declined.")
        return _error(422, "UNPROCESSABLE_ENTITY", "The requested action could not be performed.", [
            {"issue": "INSTRUMENT_DECLINED", "description": "The instrument presented was declined."}
        ])

    order["status"] = "COMPLETED"
    capture_id = uuid.uuid4().hex[:17].upper()
    logging.info(f"[PP] Order {order_id} captured (Capture {capture_id}).")
    return {
        "id": order_id,
        "status": "COMPLETED",
        "payer": {"name": {"given_name": "John"}, "email_address": "buyer@example.com"},
        "purchase_units": [{
            "payments": {"captures": [{
                "id": capture_id,
                "status": "COMPLETED",
                "amount": dict(unit["amount"]),
                "create_time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            }]}
        }],
    }


@app.post("/v1/notifications/verify-webhook-signature")
async def verify_webhook_signature(request: Request, authorization: str = Header(None)):
    """Reports SUCCESS for transmission_sig "valid-sig" and FAILURE otherwise."""
    if not _has_bearer(authorization):
        return _unauthorized()

    payload = await request.json()
    status = "SUCCESS" if payload.get("transmission_sig") == "valid-sig" else "FAILURE"
    logging.info(f"[PP] Webhook {payload.get('transmission_id')} verification: {status}")
    return {"verification_status": status}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
