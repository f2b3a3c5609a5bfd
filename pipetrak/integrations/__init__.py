"""External integrations."""

from .webhook import WebhookClient, get_webhook_client

__all__ = ["WebhookClient", "get_webhook_client"]
