"""
Chat-webhook sink.

Posts JSON payloads (Discord-compatible ``content`` / ``embeds`` bodies)
to a webhook URL. A non-2xx status is a rejection; transport failures are
raised as ``SinkError`` so callers can tell the two apart.
"""

from typing import Any, Dict, Optional

import requests
import structlog

from collector.core.errors import SinkError, SinkNotConfiguredError
from collector.core.utils.metrics import DELIVERY_PAYLOADS

logger = structlog.get_logger(__name__)


class WebhookSink:
    """Send payloads to a chat webhook over HTTPS."""

    def __init__(self, webhook_url: Optional[str], timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def post(self, payload: Dict[str, Any]) -> requests.Response:
        """POST ``payload`` and return the raw response."""
        if not self.webhook_url:
            raise SinkNotConfiguredError()
        try:
            return requests.post(
                self.webhook_url,
                json=payload,
                timeout=self.timeout,
                headers={'Content-Type': 'application/json'}
            )
        except requests.exceptions.RequestException as e:
            raise SinkError(f"Webhook request failed: {e}") from e

    def send(self, payload: Dict[str, Any], kind: str = "message") -> bool:
        """POST ``payload``; True on a 2xx response, False on any other status."""
        response = self.post(payload)
        ok = 200 <= response.status_code < 300
        DELIVERY_PAYLOADS.labels(kind=kind, status='sent' if ok else 'rejected').inc()
        if not ok:
            logger.warning("Webhook rejected payload",
                          kind=kind,
                          status=response.status_code,
                          response=(response.text or "")[:200])
        return ok
