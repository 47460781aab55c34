import json
import os

# Keep the test run from writing a log file into the working directory
os.environ.setdefault("LOG_FILE", os.devnull)

import httpx
import pytest
from fastapi.testclient import TestClient

from checkout_service import main
from checkout_service.clients import PayPalClient
from checkout_service.models import AccessToken
from checkout_service.settings import Settings, get_settings
from checkout_service.settlement import InMemoryIdempotencyStore, SettlementTracker


class FakeProcessor:
    """Records every request sent to the processor and answers from a path → response table."""

    def __init__(self):
        self.requests = []
        self.routes = {
            "/v1/oauth2/token": (200, {"access_token": "TOKEN-1", "token_type": "Bearer", "expires_in": 32400}),
        }

    def respond(self, path, status, body):
        self.routes[path] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path not in self.routes:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "Not found"})
        status, body = self.routes[request.url.path]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]

    def json_sent(self, path):
        return json.loads(self.calls(path)[-1].content)

    def client(self, settings, gateway=None):
        http_client = httpx.Client(base_url=settings.api_base, transport=httpx.MockTransport(self.handler))
        return PayPalClient(settings, http_client=http_client, gateway=gateway)


class CountingGateway:
    def __init__(self):
        self.calls = 0

    def get_access_token(self):
        self.calls += 1
        return AccessToken(value=f"TOKEN-{self.calls}", expires_in=32400)


@pytest.fixture()
def settings():
    return Settings(
        client_id="AXtestclientid1234567890",
        client_secret="test-secret",
        mode="sandbox",
    )


@pytest.fixture()
def processor():
    return FakeProcessor()


@pytest.fixture()
def paypal(settings, processor):
    client = processor.client(settings)
    yield client
    client.close()


@pytest.fixture()
def tracker():
    return SettlementTracker(InMemoryIdempotencyStore())


@pytest.fixture()
def api_client(settings, processor, tracker):
    """TestClient whose processor calls go to the FakeProcessor."""
    main.app.dependency_overrides[get_settings] = lambda: settings
    main.app.dependency_overrides[main.get_paypal_client] = lambda: processor.client(settings)
    main.app.dependency_overrides[main.get_settlement_tracker] = lambda: tracker
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
