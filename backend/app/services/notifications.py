"""
Notification Service for the E-Filing engine.

Handles all outbound notifications:
- Persisted in-app notifications (the `notifications` table feeds the
  realtime toast channel)
- Optional outbound webhook (via httpx), delivered out of band

Provides:
- Fire-and-forget publish: storage failures are logged, never raised, and
  publishing never waits on the network
- A delivery pass for queued webhook notifications, with exponential
  backoff persisted between attempts
- Fan-out helpers for "notify every admin of a department"
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from app.core.clock import Clock, SystemClock, to_iso
from app.core.config import settings
from app.core.database import get_supabase_client
from app.models.enums import NotificationPriority, NotificationType


# Configure logging
logger = logging.getLogger(__name__)

WEBHOOK_PENDING = "pending"
WEBHOOK_DELIVERED = "delivered"
WEBHOOK_FAILED = "failed"

WEBHOOK_PAYLOAD_FIELDS = (
    "id", "user_id", "type", "title", "message", "file_id",
    "priority", "actions", "metadata", "created_at",
)


class NotificationChannel(Enum):
    """Supported notification channels."""
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


@dataclass
class NotificationResult:
    """Result of a notification attempt."""
    success: bool
    channel: NotificationChannel
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class NotificationEvent:
    """An event addressed to one user."""
    user_id: str
    type: NotificationType
    title: str
    message: str
    file_id: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    actions: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["type"] = self.type.value
        record["priority"] = self.priority.value
        record["is_read"] = False
        return record


def action_button(label: str, action: str, **payload) -> dict[str, Any]:
    """Build an action button attached to a notification."""
    return {"label": label, "action": action, "payload": payload}


# ==========================================
# NOTIFICATION SERVICE
# ==========================================

class NotificationService:
    """
    Unified notification service.

    Features:
    - In-app notification rows
    - Webhook queue drained by deliver_pending_webhooks()
    - Never propagates delivery errors to the caller
    """

    def __init__(
        self,
        db=None,
        webhook_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self._db = db
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.max_retries = max_retries or settings.notification_max_retries
        self.base_delay = settings.notification_retry_base_delay if base_delay is None else base_delay
        self.clock = clock or SystemClock()

    @property
    def db(self):
        return self._db or get_supabase_client()

    def publish(self, event: NotificationEvent) -> NotificationResult:
        """
        Publish one event. Fire-and-forget.

        With a webhook configured the stored row is queued for delivery;
        no request is made here. Returns a failed NotificationResult
        instead of raising.
        """
        record = event.to_record()
        if self.webhook_url:
            record["webhook_status"] = WEBHOOK_PENDING
            record["webhook_attempts"] = 0

        try:
            row = self.db.insert_notification(record)
        except Exception as e:
            logger.error(
                f"Failed to store {event.type.value} notification for user {event.user_id}: {e}"
            )
            return NotificationResult(
                success=False,
                channel=NotificationChannel.IN_APP,
                error=str(e)
            )

        logger.debug(f"Notification {event.type.value} -> {event.user_id}")
        return NotificationResult(
            success=True,
            channel=NotificationChannel.IN_APP,
            message_id=row.get("id")
        )

    def publish_many(self, user_ids: list[str], build: Callable[[str], NotificationEvent]) -> int:
        """Publish one event per distinct user. Returns the number delivered."""
        delivered = 0
        for user_id in dict.fromkeys(user_ids):
            if self.publish(build(user_id)).success:
                delivered += 1
        return delivered

    def notify_admins(
        self,
        department_id: Optional[str],
        build: Callable[[str], NotificationEvent],
        exclude: Optional[set[str]] = None
    ) -> int:
        """Notify super admins and the department's admins."""
        try:
            admin_ids = self.db.get_admin_ids(department_id)
        except Exception as e:
            logger.error(f"Failed to resolve admins for department {department_id}: {e}")
            return 0

        exclude = exclude or set()
        return self.publish_many([a for a in admin_ids if a not in exclude], build)

    # ==========================================
    # WEBHOOK DELIVERY
    # ==========================================

    async def deliver_pending_webhooks(self, limit: Optional[int] = None) -> dict[str, int]:
        """
        Make one delivery attempt for every queued notification that is due.

        A failed attempt is rescheduled with exponential backoff
        (base_delay, 2x, 4x ... capped at NOTIFICATION_RETRY_MAX_DELAY);
        after max_retries attempts the row is marked failed.
        """
        summary = {"attempted": 0, "delivered": 0, "retrying": 0, "failed": 0}
        if not self.webhook_url:
            return summary

        now = self.clock.now()
        rows = self.db.list_pending_webhooks(
            to_iso(now),
            limit or settings.notification_delivery_batch_size
        )
        if not rows:
            return summary

        async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
            for row in rows:
                result = await self._post_webhook_once(client, row)
                summary["attempted"] += 1
                try:
                    status = self._record_attempt(row, result, now)
                except Exception as e:
                    logger.error(f"Failed to record webhook attempt for notification {row.get('id')}: {e}")
                    continue
                summary[status] += 1

        logger.info(
            f"Webhook delivery: {summary['delivered']} delivered, {summary['retrying']} retrying, "
            f"{summary['failed']} failed"
        )
        return summary

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the `attempt`-th failure (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), settings.notification_retry_max_delay)

    def _record_attempt(self, row: dict, result: NotificationResult, now: datetime) -> str:
        attempts = (row.get("webhook_attempts") or 0) + 1

        if result.success:
            self.db.update_notification(row["id"], {
                "webhook_status": WEBHOOK_DELIVERED,
                "webhook_attempts": attempts,
                "webhook_delivered_at": to_iso(now),
                "webhook_last_error": None,
            })
            return "delivered"

        if attempts >= self.max_retries:
            logger.error(
                f"Webhook for notification {row['id']} failed after {attempts} attempts: {result.error}"
            )
            self.db.update_notification(row["id"], {
                "webhook_status": WEBHOOK_FAILED,
                "webhook_attempts": attempts,
                "webhook_last_error": result.error,
            })
            return "failed"

        delay = self.backoff_delay(attempts)
        logger.warning(
            f"Webhook for notification {row['id']} failed (attempt {attempts}/{self.max_retries}): "
            f"{result.error}. Retrying in {delay:.0f}s"
        )
        self.db.update_notification(row["id"], {
            "webhook_attempts": attempts,
            "webhook_next_attempt_at": to_iso(now + timedelta(seconds=delay)),
            "webhook_last_error": result.error,
        })
        return "retrying"

    async def _post_webhook_once(self, client: httpx.AsyncClient, row: dict) -> NotificationResult:
        """POST one stored notification to the outbound webhook (single attempt)."""
        headers = {"Content-Type": "application/json"}
        if settings.notification_webhook_token:
            headers["Authorization"] = f"Bearer {settings.notification_webhook_token}"

        payload = {key: row.get(key) for key in WEBHOOK_PAYLOAD_FIELDS}

        try:
            response = await client.post(self.webhook_url, json=payload, headers=headers)

            if response.status_code in (200, 201, 202, 204):
                return NotificationResult(
                    success=True,
                    channel=NotificationChannel.WEBHOOK,
                    message_id=response.headers.get("X-Message-Id")
                )
            return NotificationResult(
                success=False,
                channel=NotificationChannel.WEBHOOK,
                error=f"Webhook error: {response.status_code} - {response.text}"
            )
        except httpx.HTTPError as e:
            logger.error(f"Webhook send failed: {e}")
            return NotificationResult(
                success=False,
                channel=NotificationChannel.WEBHOOK,
                error=str(e)
            )
