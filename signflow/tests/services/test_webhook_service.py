"""Tests for outbound webhook delivery."""

import asyncio
import json

import httpx
import pytest

from signflow.infrastructure.webhooks import (
    DeliveryStatus,
    WebhookConfig,
    WebhookEventType,
    WebhookService,
    WebhookSignature,
    build_request_event_data,
    subscribed,
)


def make_service(handler, **config):
    """WebhookService whose HTTP calls go to ``handler``."""
    config.setdefault("first_retry_delay", 0)
    config.setdefault("signing_secret", "whsec_test")
    return WebhookService(WebhookConfig(**config), transport=httpx.MockTransport(handler))


class TestWebhookSignature:
    """Tests for WebhookSignature."""

    def test_round_trip(self):
        """Test a generated signature verifies with the same secret only."""
        signer = WebhookSignature()
        header = signer.generate('{"a":1}', "secret")

        assert signer.verify('{"a":1}', header, "secret")
        assert not signer.verify('{"a":1}', header, "other")
        assert not signer.verify('{"a":2}', header, "secret")

    def test_stale_timestamp(self):
        """Test old signatures are rejected."""
        signer = WebhookSignature()
        header = signer.generate("{}", "secret", timestamp=1000)
        assert not signer.verify("{}", header, "secret")

    def test_malformed_header(self):
        """Test a garbled header does not verify."""
        assert not WebhookSignature().verify("{}", "garbage", "secret")


class TestDeliver:
    """Tests for WebhookService.deliver."""

    def test_signed_delivery(self):
        """Test the receiver gets a signed JSON payload."""
        received = []

        def handler(request):
            received.append(request)
            return httpx.Response(200)

        delivery = asyncio.run(make_service(handler).deliver(
            "https://hooks.example.com/sign", "completed", {"request_id": 5},
        ))

        assert delivery.status == DeliveryStatus.DELIVERED
        (request,) = received
        body = request.content.decode()
        assert json.loads(body)["data"] == {"request_id": 5}
        assert json.loads(body)["event_type"] == "completed"
        assert WebhookSignature().verify(body, request.headers["X-SignFlow-Signature"], "whsec_test")

    def test_retries_until_success(self):
        """Test server errors are retried."""
        responses = iter([httpx.Response(503), httpx.Response(500), httpx.Response(204)])

        delivery = asyncio.run(make_service(lambda request: next(responses)).deliver("https://h", "signed", {}))

        assert delivery.status == DeliveryStatus.DELIVERED
        assert [a.response_code for a in delivery.attempts] == [503, 500, 204]

    def test_gives_up_after_max_retries(self):
        """Test delivery fails after the first attempt plus max_retries."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        delivery = asyncio.run(make_service(handler, max_retries=2).deliver("https://h", "expired", {}))

        assert delivery.status == DeliveryStatus.FAILED
        assert len(delivery.attempts) == 3
        assert all(a.error_message.startswith("Request error") for a in delivery.attempts)

    def test_oversized_payload(self):
        """Test payloads over the limit are not sent."""
        calls = []
        service = make_service(lambda request: calls.append(request) or httpx.Response(200), max_payload_bytes=10)

        delivery = asyncio.run(service.deliver("https://h", "completed", {"big": "x" * 100}))

        assert delivery.status == DeliveryStatus.FAILED
        assert calls == []

    def test_backoff_is_capped(self):
        """Test retry delays grow exponentially up to the maximum."""
        service = WebhookService(WebhookConfig(first_retry_delay=1, backoff_factor=2, max_retry_delay=5))
        assert [service._calculate_retry_delay(a) for a in range(4)] == [1, 2, 4, 5]


class TestEventData:
    """Tests for payload building and subscriptions."""

    @pytest.fixture
    def hooked_request(self, make_request):
        return make_request(
            recipients=2,
            webhook_url="https://hooks.example.com/sign",
            webhook_events=["signed", "completed"],
        )

    def test_event_data(self, hooked_request):
        """Test the payload summarizes the request and each recipient."""
        data = build_request_event_data(hooked_request)

        assert data["request_id"] == hooked_request.id
        assert data["status"] == "pending"
        assert data["signed_count"] == 0
        assert [r["email"] for r in data["recipients"]] == ["signer1@example.com", "signer2@example.com"]
        json.dumps(data)

    def test_subscriptions(self, hooked_request, make_request):
        """Test only subscribed events on requests with a URL are delivered."""
        assert subscribed(hooked_request, WebhookEventType.SIGNED)
        assert not subscribed(hooked_request, WebhookEventType.EXPIRED)
        assert not subscribed(make_request(), WebhookEventType.COMPLETED)
