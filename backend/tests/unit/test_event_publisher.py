"""Unit tests for webhook event publishing (event_publisher.py)"""
import hashlib
import hmac
import json
from types import SimpleNamespace

import httpx
import pytest

from docservice.services.event_publisher import (
    LoggingEventPublisher, WebhookEventPublisher, build_event_publisher,
)


def recording_client(status_code=200, requests=None):
    requests = requests if requests is not None else []

    def handler(request):
        requests.append(request)
        return httpx.Response(status_code)

    return httpx.Client(transport=httpx.MockTransport(handler)), requests


@pytest.mark.unit
class TestWebhookEventPublisher:
    def test_posts_event(self):
        client, requests = recording_client()
        publisher = WebhookEventPublisher("https://hooks.example.com/hr", client=client)

        publisher.publish("document.deleted", {"document_id": "abc", "policy_id": "p-1"})

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/hr"
        assert request.headers["X-Webhook-Event"] == "document.deleted"
        assert "X-Webhook-Signature" not in request.headers

        body = json.loads(request.content)
        assert body["event"] == "document.deleted"
        assert body["data"] == {"document_id": "abc", "policy_id": "p-1"}
        assert body["id"] == request.headers["X-Webhook-ID"]
        assert body["timestamp"]

    def test_signs_payload_with_secret(self):
        client, requests = recording_client()
        publisher = WebhookEventPublisher("https://hooks.example.com/hr", secret="s3cret", client=client)

        publisher.publish("document.archived", {"document_id": "abc"})

        request = requests[0]
        expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
        assert request.headers["X-Webhook-Signature"] == f"sha256={expected}"

    def test_error_status_is_logged_not_raised(self, caplog):
        client, _ = recording_client(status_code=503)
        publisher = WebhookEventPublisher("https://hooks.example.com/hr", client=client)

        publisher.publish("retention.job_completed", {"job_id": "j-1"})

        assert "returned 503" in caplog.text

    def test_transport_error_is_swallowed(self, caplog):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        publisher = WebhookEventPublisher("https://hooks.example.com/hr", client=client)

        publisher.publish("document.deleted", {"document_id": "abc"})

        assert "delivery failed" in caplog.text

    def test_non_json_values_are_stringified(self):
        client, requests = recording_client()
        publisher = WebhookEventPublisher("https://hooks.example.com/hr", client=client)
        import uuid
        document_id = uuid.uuid4()

        publisher.publish("document.deleted", {"document_id": document_id})

        assert json.loads(requests[0].content)["data"]["document_id"] == str(document_id)


@pytest.mark.unit
class TestBuildEventPublisher:
    def test_webhook_when_url_configured(self):
        settings = SimpleNamespace(
            event_webhook_url="https://hooks.example.com/hr",
            event_webhook_timeout=2.0,
            event_webhook_secret="",
        )

        publisher = build_event_publisher(settings)

        assert isinstance(publisher, WebhookEventPublisher)
        assert publisher.secret is None
        publisher.close()

    def test_logging_publisher_without_url(self):
        settings = SimpleNamespace(event_webhook_url="", event_webhook_timeout=5.0, event_webhook_secret="")
        publisher = build_event_publisher(settings)

        assert isinstance(publisher, LoggingEventPublisher)
        publisher.publish("document.deleted", {"document_id": "abc"})
