"""
Notification webhook client.

The engine does not deliver e-mails or in-app messages itself: it hands a
JSON payload to an external notification service, which owns the transport.
"""

from typing import Any, Optional
import logging

import httpx

from core.config import settings

logger = logging.getLogger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when the notification service did not accept a payload."""


class NotificationClient:
    """Posts alert payloads to the configured notification webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the client.

        Args:
            webhook_url: Notification service endpoint (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
        """
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.timeout = timeout or settings.notification_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def send(
        self,
        event_type: str,
        payload: dict[str, Any],
        tenant_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Hand one notification to the external service.

        Args:
            event_type: e.g. ``budget.alert_triggered`` or ``sla.breach``
            payload: JSON-serializable body
            tenant_id: Tenant the notification belongs to

        Returns:
            Dictionary with the response status code

        Raises:
            NotificationDeliveryError: Not configured, unreachable or rejected
        """
        if not self.is_configured:
            raise NotificationDeliveryError("No notification webhook is configured")

        headers = {
            "Content-Type": "application/json",
            "X-Notification-Event": event_type,
        }
        if tenant_id:
            headers["X-Tenant-ID"] = tenant_id

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self.webhook_url,
                    json={"event_type": event_type, "data": payload},
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Notification service rejected {event_type}: {e.response.status_code}"
            )
            raise NotificationDeliveryError(
                f"Notification service answered {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Notification service unreachable for {event_type}: {e}")
            raise NotificationDeliveryError(str(e) or e.__class__.__name__) from e

        logger.info(f"Delivered {event_type} notification ({response.status_code})")
        return {"status_code": response.status_code}
