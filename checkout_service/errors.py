"""
errors.py — Exception Hierarchy for the Checkout Service

Every failure the service can report to a caller is expressed as a subclass of
`CheckoutError`. Each class carries the HTTP status the API layer answers with,
so the FastAPI exception handlers in `main.py` stay a thin translation layer.

Hierarchy:
    CheckoutError
     ├── InvalidRequest          (400) client data failed local validation
     ├── PricingError            (400) raised by the pricing catalog
     │    ├── UnknownService
     │    └── UnknownTier
     ├── AuthError               (500) raised by the credential gateway
     │    ├── MissingCredentials
     │    └── TokenRequestFailed
     ├── UpstreamAuthFailure     (500) gateway failure seen by a service
     ├── ProcessorRejected       (processor status) PayPal declined the call
     ├── InternalException       (500) anything unexpected
     └── AuthenticityFailure     (401) webhook signature rejected
"""

from typing import List, Optional


class CheckoutError(Exception):
    """Base class for all errors surfaced by the checkout service."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> dict:
        return {"error": self.message}


class InvalidRequest(CheckoutError):
    status_code = 400


class PricingError(CheckoutError):
    status_code = 400


class UnknownService(PricingError):
    def __init__(self, service):
        super().__init__(f"Invalid service: {service}")
        self.service = service


class UnknownTier(PricingError):
    def __init__(self, service, tier):
        super().__init__(f"Invalid package: {tier}")
        self.service = service
        self.tier = tier


class AuthError(CheckoutError):
    status_code = 500


class MissingCredentials(AuthError):
    def __init__(self):
        super().__init__("PayPal credentials not configured")


class TokenRequestFailed(AuthError):
    """
    The processor's token endpoint answered with a non-success status.

    Attributes:
        status (int): HTTP status returned by the token endpoint.
        processor_error_code (str | None): The `error` field of the processor body.
    """

    def __init__(self, status: int, processor_error_code: Optional[str], description: Optional[str] = None):
        super().__init__(description or "Failed to get access token")
        self.status = status
        self.processor_error_code = processor_error_code


class UpstreamAuthFailure(CheckoutError):
    """Wraps an `AuthError` raised while a service needed a token."""

    status_code = 500

    def __init__(self, cause: AuthError):
        super().__init__(cause.message)
        self.cause = cause


class ProcessorRejected(CheckoutError):
    """
    The payment processor declined an operation.

    The processor's HTTP status is kept and becomes the status of the API
    response; its per-field issue list is passed through untouched.
    """

    def __init__(
            self,
            status: int,
            message: str,
            error_code: Optional[str] = None,
            debug_id: Optional[str] = None,
            field_errors: Optional[List[dict]] = None
    ):
        super().__init__(message)
        self.status = status
        self.status_code = status
        self.error_code = error_code
        self.debug_id = debug_id
        self.field_errors = field_errors or []

    def to_response(self) -> dict:
        return {
            "error": self.message,
            "debug_id": self.debug_id,
            "details": self.field_errors,
        }


class InternalException(CheckoutError):
    status_code = 500


class AuthenticityFailure(CheckoutError):
    status_code = 401

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)
