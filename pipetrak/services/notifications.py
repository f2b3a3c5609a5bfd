"""
Milestone change notifications.

Publishes events on the per-project realtime channel ("project:<id>") and
posts summary alerts to the notification webhook for bulk updates and undos.
Everything here is best-effort: failures are logged and never raised.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Iterable

from ..cache.redis_client import CacheClient, cache
from ..integrations.webhook import WebhookClient, get_webhook_client

logger = logging.getLogger(__name__)

BULK_MILESTONE_UPDATE = "bulk_milestone_update"
MILESTONE_UPDATE = "milestone_update"
CONFLICT_RESOLVED = "milestone_conflict_resolved"
TRANSACTION_UNDONE = "bulk_transaction_undone"


def project_channel(project_id: str) -> str:
    return f"project:{project_id}"


class MilestoneNotifier:
    """Best-effort realtime and webhook notifications."""

    def __init__(
        self,
        cache_client: Optional[CacheClient] = None,
        webhook: Optional[WebhookClient] = None,
    ):
        self.cache = cache_client or cache
        self.webhook = webhook or get_webhook_client()

    async def publish(self, project_id: Optional[str], event: str, payload: Dict[str, Any]) -> bool:
        """Publish an event on a project's channel."""
        if not project_id:
            return False
        try:
            return await self.cache.publish(
                project_channel(project_id),
                {
                    "event": event,
                    "payload": payload,
                    "timestamp": datetime.now().isoformat(),
                },
            )
        except Exception as e:
            logger.error(f"Failed to publish {event} for project {project_id}: {e}")
            return False

    async def milestone_updated(self, project_id: str, milestone: Dict[str, Any], actor_id: str):
        await self.publish(project_id, MILESTONE_UPDATE, {"milestone": milestone, "user_id": actor_id})

    async def bulk_completed(
        self,
        project_ids: Iterable[str],
        result: Dict[str, Any],
        actor_id: str,
    ):
        """Announce a finished bulk update on every touched project and the webhook."""
        summary = {
            "transaction_id": result.get("transaction_id"),
            "successful": result.get("successful", 0),
            "failed": result.get("failed", 0),
            "user_id": actor_id,
        }
        for project_id in project_ids:
            await self.publish(project_id, BULK_MILESTONE_UPDATE, summary)

        try:
            await self.webhook.post_alert(
                title="Bulk Milestone Update Complete",
                message=(
                    f"Transaction {summary['transaction_id']}\n"
                    f"Succeeded: {summary['successful']}\n"
                    f"Failed: {summary['failed']}"
                ),
                alert_type="success" if not summary["failed"] else "warning",
            )
        except Exception as e:
            logger.error(f"Failed to send bulk completion alert: {e}")

    async def conflict_resolved(self, project_id: str, resolution: Dict[str, Any], actor_id: str):
        await self.publish(project_id, CONFLICT_RESOLVED, {**resolution, "user_id": actor_id})

    async def transaction_undone(self, project_id: Optional[str], undo_result: Dict[str, Any], actor_id: str):
        """Announce an undone bulk transaction on its project and the webhook."""
        summary = {
            "transaction_id": undo_result.get("transaction_id"),
            "undone": undo_result.get("undone", 0),
            "failed": undo_result.get("failed", 0),
            "user_id": actor_id,
        }
        await self.publish(project_id, TRANSACTION_UNDONE, summary)

        try:
            await self.webhook.post_alert(
                title="Bulk Transaction Undone",
                message=(
                    f"Transaction {summary['transaction_id']} undone by {actor_id}\n"
                    f"Reverted: {summary['undone']}\n"
                    f"Failed: {summary['failed']}"
                ),
                alert_type="info" if not summary["failed"] else "warning",
            )
        except Exception as e:
            logger.error(f"Failed to send undo alert: {e}")
