"""
Entry points called by the host platform.

New posts and approved comments are queued for every matching trigger
(one per channel). Deletions cascade to the settings and queue rows that
belong to the deleted object, never to broader scopes.
"""

from typing import Any, Callable

from config.settings import NotifySettings
from models.content import Content
from models.preference import Scope
from models.types import ContentID, TenantID, TermID, UserID
from notifications.error_logger import ErrorLogger, log_notification_error
from notifications.preferences import PreferenceStore
from notifications.queue import NotificationQueue
from notifications.queue_store import QueueStore

COMMENT_REASON = "new_comment"


class NotificationHooks:
    def __init__(
        self,
        queue: NotificationQueue,
        preferences: PreferenceStore,
        queue_store: QueueStore,
        settings: NotifySettings,
        on_queued: Callable[[], Any] | None = None,
        log_error: ErrorLogger = log_notification_error,
    ):
        self.queue = queue
        self.preferences = preferences
        self.queue_store = queue_store
        self.settings = settings
        self.on_queued = on_queued
        self.log_error = log_error

    def _queue_for_triggers(self, content: Content, reason: str) -> int:
        try:
            triggers = self.preferences.list_triggers(content.trigger_key)
        except Exception as e:
            self.log_error(
                error_type="queuing",
                error_message=f"Could not list triggers: {e}",
                context={"trigger_key": content.trigger_key, "content_id": content.id},
            )
            return 0

        if not triggers:
            self.log_error(
                error_type="configuration",
                error_message=f"No triggers configured for '{content.trigger_key}'",
                context={"tenant_id": content.tenant_id, "content_id": content.id},
            )
            return 0

        queued = 0
        for trigger in triggers:
            queued += self.queue.enqueue(content, reason, trigger.id)

        print(f"Finished queuing for '{reason}' event: {queued} notification(s)")
        if queued and self.on_queued is not None:
            self.on_queued()
        return queued

    def handle_new_post(self, content: Content, status: str) -> int:
        """Queue a post if its status is one that notifies."""
        if status not in self.settings.send_for_post_statuses:
            configured = ", ".join(self.settings.send_for_post_statuses)
            print(f"Post status '{status}' not in configured statuses ({configured}), skipping")
            return 0
        if not content.notify_others:
            print(f"Post {content.id} opted out of notifying others, skipping")
            return 0
        return self._queue_for_triggers(content, f"new_{content.post_type}")

    def handle_new_comment(self, content: Content, approved: bool) -> int:
        """Queue an approved comment."""
        if not approved:
            print(f"Comment {content.id} is not approved, skipping")
            return 0
        return self._queue_for_triggers(content, COMMENT_REASON)

    # --- Cascade cleanup ---

    def _delete(self, label: str, delete: Callable[[], int], context: dict) -> int:
        try:
            deleted = delete()
        except Exception as e:
            self.log_error(
                error_type="maintenance",
                error_message=f"Failed to delete {label}: {e}",
                context=context,
            )
            return 0
        if deleted:
            print(f"  Deleted {deleted} {label} row(s)")
        return deleted

    def on_content_deleted(
        self, tenant_id: TenantID, content_id: ContentID, object_type: str = "post"
    ) -> int:
        context = {"tenant_id": tenant_id, "content_id": content_id, "object_type": object_type}
        deleted = 0
        if object_type == "post":
            deleted += self._delete(
                "content settings",
                lambda: self.preferences.delete_settings(
                    Scope.CONTENT_ITEM, tenant_id=tenant_id, content_id=content_id
                ),
                context,
            )
        deleted += self._delete(
            "queue",
            lambda: self.queue_store.delete_where(
                tenant_id=tenant_id, content_id=content_id, content_type=object_type
            ),
            context,
        )
        return deleted

    def on_user_deleted(self, user_id: UserID) -> int:
        context = {"user_id": user_id}
        deleted = self._delete(
            "schedule", lambda: self.preferences.delete_schedules(user_id=user_id), context
        )
        deleted += self._delete(
            "queue", lambda: self.queue_store.delete_where(user_id=user_id), context
        )
        for scope in Scope:
            deleted += self._delete(
                f"{scope.value} settings",
                lambda scope=scope: self.preferences.delete_settings(scope, user_id=user_id),
                context,
            )
        return deleted

    def on_tenant_deleted(self, tenant_id: TenantID) -> int:
        context = {"tenant_id": tenant_id}
        deleted = self._delete(
            "schedule", lambda: self.preferences.delete_schedules(tenant_id=tenant_id), context
        )
        deleted += self._delete(
            "queue", lambda: self.queue_store.delete_where(tenant_id=tenant_id), context
        )
        for scope in (Scope.TENANT, Scope.TERM, Scope.CONTENT_ITEM):
            deleted += self._delete(
                f"{scope.value} settings",
                lambda scope=scope: self.preferences.delete_settings(scope, tenant_id=tenant_id),
                context,
            )
        return deleted

    def on_term_deleted(self, tenant_id: TenantID, term_id: TermID) -> int:
        return self._delete(
            "term settings",
            lambda: self.preferences.delete_settings(
                Scope.TERM, tenant_id=tenant_id, term_id=term_id
            ),
            {"tenant_id": tenant_id, "term_id": term_id},
        )
