"""
Event publishing over an HTTP webhook.

Retention events (terminal actions, legal hold changes, job completion)
are POSTed as JSON to one configured URL. Delivery is best effort: a
failed delivery is logged and dropped, never raised to the caller.
"""

import hashlib
import hmac
import json
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from docservice.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class WebhookEventPublisher:
    """EventPublisher that POSTs each event to a webhook endpoint"""

    def __init__(self, url: str, timeout: float = 5.0, secret: Optional[str] = None,
                 client: Optional[httpx.Client] = None):
        self.url = url
        self.secret = secret or None
        self.client = client or httpx.Client(timeout=timeout)

    def build_payload(self, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "event": event_type,
            "timestamp": utcnow().isoformat(),
            "data": data,
        }

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        body = self.build_payload(event_type, payload)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-ID": body["id"],
            "X-Webhook-Event": event_type,
        }
        if self.secret:
            headers["X-Webhook-Signature"] = self._sign_payload(body, self.secret)

        try:
            response = self.client.post(self.url, content=self._serialize(body), headers=headers)
            if response.status_code >= 400:
                logger.warning(f"Event webhook returned {response.status_code} for {event_type}")
        except httpx.HTTPError as e:
            logger.error(f"Event webhook delivery failed for {event_type}: {e}")

    @staticmethod
    def _serialize(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, separators=(',', ':'), sort_keys=True, default=str)

    def _sign_payload(self, payload: Dict, secret: str) -> str:
        """Sign payload with HMAC-SHA256"""
        signature = hmac.new(
            secret.encode(),
            self._serialize(payload).encode(),
            hashlib.sha256
        ).hexdigest()
        return f"sha256={signature}"

    def close(self) -> None:
        self.client.close()


class LoggingEventPublisher:
    """Used when no webhook is configured; events only reach the log"""

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"Event {event_type}: {payload}")


def build_event_publisher(settings):
    if settings.event_webhook_url:
        return WebhookEventPublisher(
            settings.event_webhook_url,
            timeout=settings.event_webhook_timeout,
            secret=settings.event_webhook_secret,
        )
    return LoggingEventPublisher()
