"""
This module provides the communication clients for the payment processor (PayPal REST API):
- CredentialGateway: client-credentials token exchange (one call per token)
- CachedCredentialGateway: opt-in expiry-aware token cache with single-flight refresh
- PayPalClient: order registration, order capture and webhook signature verification
Each class encapsulates its protocol logic, error handling, and connection management.
"""

import threading
import time
from typing import Optional

import httpx

from .errors import MissingCredentials, ProcessorRejected, TokenRequestFailed
from .logging_config import get_logger
from .models import AccessToken
from .settings import Settings

log = get_logger(__name__)


def build_http_client(settings: Settings) -> httpx.Client:
    """Creates the HTTP client for the processor with the configured timeout."""
    timeout_config = httpx.Timeout(settings.timeout_seconds, connect=5.0)
    return httpx.Client(base_url=settings.api_base, timeout=timeout_config)


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def as_object(value) -> dict:
    return value if isinstance(value, dict) else {}


def first_object(items) -> dict:
    """First element of a processor list field if it is an object, else an empty dict."""
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


# Assumed token lifetime when the token response omits `expires_in`.
DEFAULT_TOKEN_LIFETIME_SECONDS = 300


# --- Credential Gateway ---
class CredentialGateway:
    """
    Obtains short-lived access tokens from the processor's token endpoint.

    No caching and no retry: every call to `get_access_token` performs exactly
    one outbound request, callers decide whether to retry.
    """
    def __init__(self, settings: Settings, http_client: httpx.Client):
        self.settings = settings
        self.client = http_client

    def get_access_token(self) -> AccessToken:
        """
        Performs the client-credentials exchange over HTTP Basic authentication.
        Returns:
            AccessToken: The bearer token and its lifetime in seconds.
        Raises:
            MissingCredentials: If client id or secret is not configured (no request is made).
            TokenRequestFailed: If the token endpoint answers with a non-success status.
            httpx.TransportError: If the processor cannot be reached.
        """
        client_id = self.settings.client_id
        client_secret = self.settings.client_secret
        if not client_id or not client_secret:
            log.error("[PayPal] FATAL: Missing credentials")
            raise MissingCredentials()

        try:
            response = self.client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(client_id, client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            log.error(f"[PayPal] Token endpoint not reachable (mode: {self.settings.mode}): {e}")
            raise

        body = _json_body(response)
        if not response.is_success:
            log.error(f"[PayPal] Token request failed: {response.status_code} {body.get('error')}")
            raise TokenRequestFailed(response.status_code, body.get("error"), body.get("error_description"))

        access_token = body.get("access_token")
        if not access_token:
            raise TokenRequestFailed(response.status_code, None, "Token response did not contain an access token")
        return AccessToken(value=access_token, expires_in=body.get("expires_in"))


class CachedCredentialGateway:
    """
    Token cache in front of a `CredentialGateway`, enabled with PAYPAL_TOKEN_CACHE.

    A single lock serializes refreshes so that concurrent callers wait for the
    one in-flight token request instead of each hitting the token endpoint.
    Tokens are refreshed `leeway_seconds` before the lifetime reported by the processor,
    or before DEFAULT_TOKEN_LIFETIME_SECONDS when it reports none.
    """
    def __init__(self, gateway: CredentialGateway, leeway_seconds: int = 60, clock=time.monotonic):
        self.gateway = gateway
        self.leeway_seconds = leeway_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._token: Optional[AccessToken] = None
        self._expires_at = 0.0

    def get_access_token(self) -> AccessToken:
        with self._lock:
            now = self.clock()
            if self._token is not None and now < self._expires_at:
                return self._token
            token = self.gateway.get_access_token()
            lifetime = token.expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS
            self._token = token
            self._expires_at = now + max(lifetime - self.leeway_seconds, 0)
            log.info(f"[PayPal] Access token refreshed (valid for {lifetime}s)")
            return token


_cached_gateways = {}
_cached_gateways_lock = threading.Lock()


def cached_gateway_for(settings: Settings) -> CachedCredentialGateway:
    """Returns the process-wide cached gateway for a credential and mode pair."""
    key = (settings.client_id, settings.mode, settings.api_base)
    with _cached_gateways_lock:
        gateway = _cached_gateways.get(key)
        if gateway is None:
            gateway = CachedCredentialGateway(CredentialGateway(settings, build_http_client(settings)))
            _cached_gateways[key] = gateway
        return gateway


# --- PayPal Client (REST) ---
class PayPalClient:
    """
    Client for the processor's Orders and Notifications APIs.
    All calls are bearer-token authorized JSON requests; the token is passed in
    by the caller so each operation decides when to fetch one.
    """
    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None, gateway=None):
        """
        Args:
            settings (Settings): Process configuration (base URL, credentials, timeout).
            http_client (httpx.Client): Optional pre-built client, e.g. with a mock transport.
            gateway: Optional credential gateway; defaults to a `CredentialGateway` sharing this client.
        """
        self.settings = settings
        self.client = http_client or build_http_client(settings)
        self.gateway = gateway or CredentialGateway(settings, self.client)

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _post(self, path: str, token: AccessToken, payload: Optional[dict] = None) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token.value}",
            "Content-Type": "application/json",
        }
        return self.client.post(path, json=payload, headers=headers)

    @staticmethod
    def _rejected(response: httpx.Response, default_message: str) -> ProcessorRejected:
        body = _json_body(response)
        details = body.get("details")
        return ProcessorRejected(
            status=response.status_code,
            message=body.get("message") or default_message,
            error_code=body.get("name"),
            debug_id=body.get("debug_id") or response.headers.get("paypal-debug-id"),
            field_errors=details if isinstance(details, list) else [],
        )

    def create_order(self, token: AccessToken, payload: dict) -> dict:
        """
        Registers an order with the processor.
        Args:
            token (AccessToken): Bearer token from the credential gateway.
            payload (dict): Order request body (intent, purchase units, application context).
        Returns:
            dict: The processor's order representation (contains `id` and `status`).
        Raises:
            ProcessorRejected: If the processor answers with a non-success status.
            httpx.TransportError: If the processor cannot be reached.
        """
        response = self._post("/v2/checkout/orders", token, payload)
        if not response.is_success:
            error = self._rejected(response, "Failed to create PayPal order")
            log.error(f"[PayPal] Create order rejected: {error.status} {error.error_code} (debug_id: {error.debug_id})")
            raise error
        return response.json()

    def capture_order(self, token: AccessToken, order_id: str) -> dict:
        """
        Captures the funds of a buyer-approved order.
        Raises:
            ProcessorRejected: If the processor answers with a non-success status.
            httpx.TransportError: If the processor cannot be reached.
        """
        response = self._post(f"/v2/checkout/orders/{order_id}/capture", token)
        if not response.is_success:
            error = self._rejected(response, "Failed to capture payment")
            log.error(f"[Order: {order_id}] Capture rejected: {error.status} {error.error_code} (debug_id: {error.debug_id})")
            raise error
        return response.json()

    def verify_webhook_signature(self, token: AccessToken, payload: dict) -> dict:
        """
        Asks the processor to verify a webhook transmission.
        Returns:
            dict: Verification response, `verification_status` is 'SUCCESS' or 'FAILURE'.
        Raises:
            ProcessorRejected: If the processor answers with a non-success status.
        """
        response = self._post("/v1/notifications/verify-webhook-signature", token, payload)
        if not response.is_success:
            raise self._rejected(response, "Webhook signature verification failed")
        return response.json()
