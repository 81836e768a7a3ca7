"""
Enqueue operation: one pending queue row per resolved recipient.

Fan-out is best effort. A row that fails to insert is logged and skipped,
the remaining recipients are still queued.
"""

from datetime import datetime
from typing import Any

from models.content import Content
from models.preference import DEFAULT_CADENCE, Cadence
from models.queue import AttemptMeta, QueueItem, QueueStatus
from models.types import TriggerID, UserID
from notifications.error_logger import ErrorLogger, log_notification_error
from notifications.preferences import PreferenceStore
from notifications.queue_store import QueueStore
from notifications.resolver import RecipientResolver
from notifications.scheduler import NotificationScheduler
from shared.utils import utc_now

MENTION_REASON = "mention"


class NotificationQueue:
    def __init__(
        self,
        store: QueueStore,
        preferences: PreferenceStore,
        resolver: RecipientResolver,
        scheduler: NotificationScheduler,
        log_error: ErrorLogger = log_notification_error,
    ):
        self.store = store
        self.preferences = preferences
        self.resolver = resolver
        self.scheduler = scheduler
        self.log_error = log_error

    def _cadence(self, user_id: UserID, content: Content, channel: str) -> Cadence:
        try:
            return self.preferences.get_schedule(user_id, content.tenant_id, channel)
        except Exception as e:
            self.log_error(
                error_type="queuing",
                error_message=f"Schedule lookup failed, using immediate: {e}",
                context={"user_id": user_id, "tenant_id": content.tenant_id, "channel": channel},
            )
            return DEFAULT_CADENCE

    def enqueue(
        self,
        content: Content,
        reason: str,
        trigger_id: TriggerID,
        meta: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Queue ``content`` for every recipient of ``trigger_id``.

        Args:
            content: The post or comment the event is about
            reason: Why recipients are notified ('new_post', 'new_comment', ...)
            trigger_id: Trigger the event fired; its channel selects recipients
            meta: Extra attempt metadata stored with each row

        Returns:
            Number of rows inserted
        """
        now = now or utc_now()
        context = {
            "tenant_id": content.tenant_id,
            "content_id": content.id,
            "object_type": content.object_type,
            "trigger_id": trigger_id,
            "reason": reason,
        }

        try:
            trigger = self.preferences.get_trigger(trigger_id)
        except Exception as e:
            self.log_error(
                error_type="queuing",
                error_message=f"Trigger lookup failed: {e}",
                context=context,
            )
            return 0
        if trigger is None:
            self.log_error(
                error_type="configuration",
                error_message=f"Unknown trigger {trigger_id}",
                context=context,
            )
            return 0

        resolution = self.resolver.resolve(content, trigger.channel)
        if not resolution.ok:
            print(f"  ✗ Recipient resolution failed ({resolution.status.value}), nothing queued")
            return 0
        if resolution.trigger_id is not None and resolution.trigger_id != trigger_id:
            self.log_error(
                error_type="configuration",
                error_message=(
                    f"Trigger {trigger_id} ('{trigger.key}') does not match "
                    f"'{content.trigger_key}' on '{trigger.channel}'"
                ),
                context=context,
            )
            return 0
        if not resolution.user_ids:
            return 0

        attempt_meta = AttemptMeta.from_raw(meta or {})
        queued = 0
        for user_id in sorted(resolution.user_ids):
            cadence = self._cadence(user_id, content, trigger.channel)
            item = QueueItem(
                recipient_id=user_id,
                tenant_id=content.tenant_id,
                content_id=content.id,
                content_type=content.object_type,
                trigger_id=trigger_id,
                reason=MENTION_REASON if user_id in resolution.mentioned else reason,
                schedule_kind=cadence,
                scheduled_at=self.scheduler.calculate_scheduled_send_time(cadence, now),
                status=QueueStatus.PENDING,
                meta=attempt_meta,
                created_at=now,
            )
            try:
                self.store.insert(item)
                queued += 1
            except Exception as e:
                self.log_error(
                    error_type="queuing",
                    error_message=f"Failed to insert queue row: {e}",
                    context={**context, "user_id": user_id},
                )

        print(f"  ✓ Queued {queued}/{len(resolution.user_ids)} notifications for "
              f"{content.object_type} {content.id} ({reason})")
        return queued
