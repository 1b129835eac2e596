"""
Failure alerting.

Error records are posted to a Slack-compatible incoming webhook. Delivery
happens on a background thread so a slow webhook never blocks the daemon;
the CLI waits a short, configurable delay before exiting to let pending
alerts go out.
"""

import logging
import threading
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookAlertHandler(logging.Handler):
    """Logging handler that forwards records to a webhook."""

    def __init__(
        self,
        webhook_url: str,
        channel: Optional[str] = None,
        level: int = logging.ERROR,
        timeout: float = 10.0,
    ):
        super().__init__(level=level)
        self.webhook_url = webhook_url
        self.channel = channel
        self.timeout = timeout

    def build_payload(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Build the webhook JSON body for a record."""
        host = getattr(record, "host", None)
        prefix = f"[{host}] " if host else ""
        text = f"{prefix}{record.levelname}: {self.format(record)}"
        payload: Dict[str, Any] = {"text": text}
        if self.channel:
            payload["channel"] = self.channel
        return payload

    def emit(self, record: logging.LogRecord) -> None:
        try:
            payload = self.build_payload(record)
        except Exception:
            self.handleError(record)
            return

        thread = threading.Thread(target=self._post, args=(payload,), daemon=True)
        thread.start()

    def _post(self, payload: Dict[str, Any]) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.webhook_url, json=payload)
            if response.status_code >= 400:
                logger.debug(f"Alert webhook returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.debug(f"Alert webhook delivery failed: {e}")


def install_alert_handler(
    webhook_url: Optional[str], channel: Optional[str] = None
) -> Optional[WebhookAlertHandler]:
    """Attach a webhook handler to the root logger when a URL is configured."""
    if not webhook_url:
        return None

    handler = WebhookAlertHandler(webhook_url, channel=channel)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger().addHandler(handler)
    return handler
