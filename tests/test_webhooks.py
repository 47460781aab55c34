import json

import httpx
import pytest

from checkout_service.models import WebhookEvent
from checkout_service.settings import Settings
from checkout_service.webhooks import WebhookVerifier, decode_purchase, reconcile_event

VERIFY_PATH = "/v1/notifications/verify-webhook-signature"

TRANSMISSION = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42",
    "PAYPAL-TRANSMISSION-ID": "103e3700-8b1c-11e8-a2d7-a5f5d9d7fe3b",
    "PAYPAL-TRANSMISSION-SIG": "t8q7rBp8s0...",
    "PAYPAL-TRANSMISSION-TIME": "2026-10-18T09:12:31Z",
}

CAPTURE_COMPLETED = {
    "id": "WH-58D329510W468432D-8HN650336L201105X",
    "event_type": "PAYMENT.CAPTURE.COMPLETED",
    "resource": {
        "purchase_units": [{
            "amount": {"value": "60.00", "currency_code": "USD"},
            "custom_id": "{\"service\":\"aiReel\",\"package\":\"standard\",\"addons\":[]}",
            "payments": {"captures": [{"id": "CAP1"}]},
        }],
    },
}


@pytest.fixture()
def verifying_settings():
    return Settings(client_id="AXtestclientid1234567890", client_secret="secret", webhook_id="8PT597110X687430LY")


class TestReconcileEvent:
    def test_capture_completed(self):
        result = reconcile_event(WebhookEvent.model_validate(CAPTURE_COMPLETED))

        assert result["captureId"] == "CAP1"
        assert result["amount"] == "60.00"
        assert result["currency"] == "USD"
        assert result["orderDetails"] == {"service": "aiReel", "package": "standard", "addons": []}
        assert result["success"] is True

    def test_order_completed_is_an_alias(self):
        event = dict(CAPTURE_COMPLETED, event_type="CHECKOUT.ORDER.COMPLETED")
        assert reconcile_event(WebhookEvent.model_validate(event)) == \
            reconcile_event(WebhookEvent.model_validate(CAPTURE_COMPLETED))

    def test_redispatch_yields_identical_result(self):
        event = WebhookEvent.model_validate(CAPTURE_COMPLETED)
        assert reconcile_event(event) == reconcile_event(event)

    def test_order_id_from_related_ids(self):
        event = WebhookEvent.model_validate({
            "id": "WH-1",
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource": {
                "amount": {"value": "35.00", "currency_code": "USD"},
                "supplementary_data": {"related_ids": {"order_id": "ORDER-9"}},
            },
        })
        result = reconcile_event(event)
        assert result["orderId"] == "ORDER-9"
        assert result["amount"] == "35.00"
        assert result["orderDetails"] == {}

    def test_capture_amount_used_when_unit_amount_missing(self):
        event = WebhookEvent.model_validate({
            "event_type": "CHECKOUT.ORDER.COMPLETED",
            "resource": {
                "id": "ORDER-2",
                "payer": {"email_address": "buyer@example.com", "name": {"given_name": "Ann"}},
                "purchase_units": [{"payments": {"captures": [{"id": "CAP2", "amount": {"value": "25.00"}}]}}],
            },
        })
        result = reconcile_event(event)
        assert result["orderId"] == "ORDER-2"
        assert result["amount"] == "25.00"
        assert result["payerEmail"] == "buyer@example.com"
        assert result["payerName"] == "Ann"

    def test_corrupt_metadata_does_not_fail_the_event(self):
        event = json.loads(json.dumps(CAPTURE_COMPLETED))
        event["resource"]["purchase_units"][0]["custom_id"] = "{not json"
        result = reconcile_event(WebhookEvent.model_validate(event))
        assert result["captureId"] == "CAP1"
        assert result["orderDetails"] == {}

    @pytest.mark.parametrize("addons", [[1, 2], 5, "rush", {"rush": True}, None])
    def test_odd_addons_do_not_fail_the_event(self, addons):
        event = json.loads(json.dumps(CAPTURE_COMPLETED))
        custom_id = json.dumps({"service": "aiReel", "package": "standard", "addons": addons})
        event["resource"]["purchase_units"][0]["custom_id"] = custom_id
        result = reconcile_event(WebhookEvent.model_validate(event))
        assert result["captureId"] == "CAP1"
        assert result["orderDetails"]["addons"] == addons

    def test_malformed_nested_objects(self):
        event = WebhookEvent(event_type="PAYMENT.CAPTURE.COMPLETED", resource={
            "id": "CAP-9", "payer": "anonymous", "purchase_units": ["not-an-object"],
            "supplementary_data": {"related_ids": None},
        })
        result = reconcile_event(event)
        assert result["orderId"] == "CAP-9"
        assert result["payerEmail"] is None

    def test_capture_resource_keeps_resource_id(self):
        event = WebhookEvent(event_type="PAYMENT.CAPTURE.COMPLETED", resource={
            "id": "CAP-1", "amount": {"value": "55.00", "currency_code": "USD"},
            "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
        })
        result = reconcile_event(event)
        assert result["orderId"] == "CAP-1"
        assert result["amount"] == "55.00"

    def test_order_approved(self):
        event = WebhookEvent(id="WH-2", event_type="CHECKOUT.ORDER.APPROVED", resource={"id": "ORDER-3"})
        assert reconcile_event(event) == {"status": "order_approved", "orderId": "ORDER-3"}

    def test_capture_denied(self):
        event = WebhookEvent(event_type="PAYMENT.CAPTURE.DENIED",
                             resource={"id": "ORDER-4", "status": "DECLINED",
                                       "status_details": {"reason": "BUYER_COMPLAINT"}})
        assert reconcile_event(event) == {
            "success": False, "status": "denied", "orderId": "ORDER-4", "reason": "BUYER_COMPLAINT",
        }

    def test_denied_reason_falls_back_to_status(self):
        event = WebhookEvent(event_type="PAYMENT.CAPTURE.DENIED", resource={"id": "ORDER-4", "status": "DECLINED"})
        assert reconcile_event(event)["reason"] == "DECLINED"

    def test_order_cancelled(self):
        event = WebhookEvent(event_type="CHECKOUT.ORDER.CANCELLED", resource={"id": "ORDER-5"})
        assert reconcile_event(event) == {"success": False, "status": "cancelled", "orderId": "ORDER-5"}

    def test_capture_refunded(self):
        event = WebhookEvent(event_type="PAYMENT.CAPTURE.REFUNDED",
                             resource={"id": "REF-1", "amount": {"value": "55.00", "currency_code": "USD"}})
        assert reconcile_event(event) == {
            "success": True, "status": "refunded", "refundId": "REF-1", "amount": "55.00", "currency": "USD",
        }

    def test_unknown_event_type(self):
        event = WebhookEvent(event_type="BILLING.SUBSCRIPTION.CREATED", resource={})
        assert reconcile_event(event) == {"status": "unhandled", "eventType": "BILLING.SUBSCRIPTION.CREATED"}

    def test_null_resource(self):
        event = WebhookEvent.model_validate({"event_type": "CHECKOUT.ORDER.CANCELLED", "resource": None})
        assert reconcile_event(event)["orderId"] is None


class TestDecodePurchase:
    @pytest.mark.parametrize("custom_id", [None, "", "{oops", "[1, 2]", "42"])
    def test_unusable_metadata(self, custom_id):
        assert decode_purchase(custom_id) == {}


class TestWebhookVerifier:
    def test_unconfigured_passes_everything(self, settings, processor):
        verifier = WebhookVerifier(processor.client(settings))
        assert verifier.verify({"x-garbage": "???"}, b"not even json") is True
        assert processor.requests == []

    def test_success(self, verifying_settings, processor):
        processor.respond(VERIFY_PATH, 200, {"verification_status": "SUCCESS"})
        raw_body = json.dumps(CAPTURE_COMPLETED).encode()

        assert WebhookVerifier(processor.client(verifying_settings)).verify(TRANSMISSION, raw_body) is True

        payload = processor.json_sent(VERIFY_PATH)
        assert payload == {
            "auth_algo": "SHA256withRSA",
            "cert_url": TRANSMISSION["PAYPAL-CERT-URL"],
            "transmission_id": TRANSMISSION["PAYPAL-TRANSMISSION-ID"],
            "transmission_sig": TRANSMISSION["PAYPAL-TRANSMISSION-SIG"],
            "transmission_time": TRANSMISSION["PAYPAL-TRANSMISSION-TIME"],
            "webhook_id": "8PT597110X687430LY",
            "webhook_event": CAPTURE_COMPLETED,
        }
        assert processor.calls(VERIFY_PATH)[0].headers["authorization"] == "Bearer TOKEN-1"

    def test_failure_status(self, verifying_settings, processor):
        processor.respond(VERIFY_PATH, 200, {"verification_status": "FAILURE"})
        verifier = WebhookVerifier(processor.client(verifying_settings))
        assert verifier.verify(TRANSMISSION, json.dumps(CAPTURE_COMPLETED)) is False

    def test_missing_status(self, verifying_settings, processor):
        processor.respond(VERIFY_PATH, 200, {})
        assert WebhookVerifier(processor.client(verifying_settings)).verify(TRANSMISSION, b"{}") is False

    def test_processor_error_fails_closed(self, verifying_settings, processor):
        processor.respond(VERIFY_PATH, 400, {"name": "VALIDATION_ERROR"})
        assert WebhookVerifier(processor.client(verifying_settings)).verify(TRANSMISSION, b"{}") is False

    def test_network_error_fails_closed(self, verifying_settings, processor):
        processor.respond(VERIFY_PATH, 200, httpx.ReadTimeout("timed out"))
        assert WebhookVerifier(processor.client(verifying_settings)).verify(TRANSMISSION, b"{}") is False

    def test_token_error_fails_closed(self, verifying_settings, processor):
        processor.respond("/v1/oauth2/token", 401, {"error": "invalid_client"})
        assert WebhookVerifier(processor.client(verifying_settings)).verify(TRANSMISSION, b"{}") is False
        assert processor.calls(VERIFY_PATH) == []

    def test_unparseable_body_fails_closed(self, verifying_settings, processor):
        processor.respond(VERIFY_PATH, 200, {"verification_status": "SUCCESS"})
        assert WebhookVerifier(processor.client(verifying_settings)).verify(TRANSMISSION, b"{broken") is False
