"""
Outbound webhook integration.

Posts embed-style alerts (bulk update finished, bulk transaction undone) to the
configured notification webhook. Delivery is best-effort: failures are
logged and reported as False, never raised to the engine.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

import aiohttp

from config import settings
from ..utils.retry import with_retry, WEBHOOK_RETRY, RetryExhausted

logger = logging.getLogger(__name__)

COLOR_MAP = {
    "warning": 0xF39C12,
    "error": 0xE74C3C,
    "info": 0x3498DB,
    "success": 0x2ECC71,
}


class WebhookTransientError(ConnectionError):
    """Webhook answered with a retryable status (429/5xx)."""
    pass


class WebhookClient:
    """Client for the notification webhook."""

    def __init__(self, webhook_url: Optional[str] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = aiohttp.ClientTimeout(total=settings.notification_timeout_seconds)

    @with_retry(**{**WEBHOOK_RETRY, "retry_on": (WebhookTransientError, aiohttp.ClientConnectionError, asyncio.TimeoutError)})
    async def _post(self, payload: Dict[str, Any]) -> int:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self.webhook_url, json=payload) as response:
                if response.status == 429 or response.status >= 500:
                    raise WebhookTransientError(f"Webhook returned {response.status}")
                return response.status

    async def post_alert(
        self,
        title: str,
        message: str,
        alert_type: str = "info",
        fields: Optional[List[Dict[str, Any]]] = None,
    ) -> bool:
        """
        Post an alert message.

        Args:
            title: Alert title
            message: Alert message
            alert_type: "warning", "error", "info", "success"
            fields: Optional embed fields ({"name", "value", "inline"})
        """
        if not self.webhook_url:
            return False

        embed = {
            "title": title,
            "description": message,
            "color": COLOR_MAP.get(alert_type, 0x95A5A6),
            "timestamp": datetime.now().isoformat(),
        }
        if fields:
            embed["fields"] = fields

        payload = {
            "embeds": [embed],
            "username": "PipeTrak",
        }

        try:
            status = await self._post(payload)
            return status in (200, 204)
        except RetryExhausted as e:
            logger.error(f"Webhook alert not delivered: {e}")
            return False
        except Exception as e:
            logger.error(f"Error posting alert: {e}")
            return False


# Singleton
_webhook_client: Optional[WebhookClient] = None


def get_webhook_client() -> WebhookClient:
    """Get the webhook client singleton."""
    global _webhook_client
    if _webhook_client is None:
        _webhook_client = WebhookClient()
    return _webhook_client
