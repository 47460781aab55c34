"""
settings.py — Process-wide Configuration

Configuration is read from environment variables once and is read-only for the
lifetime of the process. Routes receive it through the `get_settings`
dependency, which tests override with their own `Settings` instance.

Environment variables:
    PAYPAL_CLIENT_ID, PAYPAL_CLIENT_SECRET  Processor credentials.
    PAYPAL_WEBHOOK_ID                       Webhook id used for signature verification.
                                            When unset, verification is SKIPPED (development only).
    PAYPAL_MODE                             'sandbox' (default) or 'live'.
    PAYPAL_API_BASE                         Optional override of the processor base URL.
    SITE_URL / VERCEL_URL                   Site origin used for the approve/cancel redirects.
    PAYPAL_TIMEOUT_SECONDS                  Timeout for processor calls (default 10).
    PAYPAL_TOKEN_CACHE                      'true' enables the access token cache (default off).
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict

SANDBOX_API_BASE = "https://api-m.sandbox.paypal.com"
LIVE_API_BASE = "https://api-m.paypal.com"
DEFAULT_SITE_ORIGIN = "https://shortformfactory.com"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    webhook_id: Optional[str] = None
    mode: str = "sandbox"
    api_base_override: Optional[str] = None
    site_url: Optional[str] = None
    timeout_seconds: float = 10.0
    token_cache: bool = False

    @property
    def api_base(self) -> str:
        if self.api_base_override:
            return self.api_base_override.rstrip("/")
        return LIVE_API_BASE if self.mode == "live" else SANDBOX_API_BASE

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            client_id=os.environ.get("PAYPAL_CLIENT_ID") or None,
            client_secret=os.environ.get("PAYPAL_CLIENT_SECRET") or None,
            webhook_id=os.environ.get("PAYPAL_WEBHOOK_ID") or None,
            mode=os.environ.get("PAYPAL_MODE", "sandbox"),
            api_base_override=os.environ.get("PAYPAL_API_BASE") or None,
            site_url=os.environ.get("SITE_URL") or os.environ.get("VERCEL_URL") or None,
            timeout_seconds=float(os.environ.get("PAYPAL_TIMEOUT_SECONDS", "10")),
            token_cache=os.environ.get("PAYPAL_TOKEN_CACHE", "false").lower() in ("1", "true", "yes"),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


def site_origin(settings: Settings, request_origin: Optional[str] = None) -> str:
    """
    Origin used to build the processor's approve and cancel redirect targets.

    Priority: configured site origin, then the request's Origin header, then
    the production storefront origin.
    """
    origin = settings.site_url or request_origin or DEFAULT_SITE_ORIGIN
    if "://" not in origin:
        # VERCEL_URL is published without a scheme
        origin = f"https://{origin}"
    return origin.rstrip("/")
