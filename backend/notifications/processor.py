"""
Delivery Processor: sends due queue rows and keeps the queue healthy.

State machine of a row:
    pending -> processing -> sent | failed | orphaned
    failed -> pending            (operator retry, fail_count + 1)
    processing -> pending | sent (stuck recovery; sent when sent_at is set)

Claiming a group (pending -> processing) is a conditional update, so only
one run ever works on a given row.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from config.settings import NotifySettings
from models.content import Content, UserRecord
from models.queue import AttemptMeta, EventGroup, QueueStatus
from models.trigger import MAIL_CHANNEL
from models.types import Channel, QueueID, Row, UserID
from notifications.collaborators import ContentLookup, IdentityLookup, MailTransport
from notifications.email_sender import build_mail
from notifications.error_logger import ErrorLogger, log_notification_error
from notifications.extensions import (
    ChannelSender,
    MailOverride,
    UnhandledChannel,
    no_mail_override,
)
from notifications.preferences import PreferenceStore
from notifications.queue_store import QueueStore
from shared.utils import chunked, parse_timestamp, print_summary, utc_now

EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def select_groups(rows: list[Row], limit: int) -> list[EventGroup]:
    """
    Distinct event groups of ``rows``, oldest first by earliest created_at.
    """
    earliest: dict[EventGroup, datetime | None] = {}
    for row in rows:
        group = EventGroup.from_row(row)
        created = parse_timestamp(row.get("created_at"))
        if group not in earliest:
            earliest[group] = created
        elif created is not None and (earliest[group] is None or created < earliest[group]):
            earliest[group] = created

    # Rows without a timestamp sort last; ties keep scan order
    ordered = sorted(earliest.items(), key=lambda item: (item[1] is None, item[1] or EPOCH))
    return [group for group, _ in ordered[:limit]]


RUN_COUNTERS = ("groups", "sent", "failed", "orphaned", "deferred", "skipped")


class NotificationProcessor:
    def __init__(
        self,
        store: QueueStore,
        preferences: PreferenceStore,
        content_lookup: ContentLookup,
        identity: IdentityLookup,
        transport: MailTransport,
        settings: NotifySettings,
        mail_override: MailOverride = no_mail_override,
        channel_senders: dict[Channel, ChannelSender] | None = None,
        fallback_sender: ChannelSender | None = None,
        log_error: ErrorLogger = log_notification_error,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = time.sleep,
        now: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.preferences = preferences
        self.content_lookup = content_lookup
        self.identity = identity
        self.transport = transport
        self.settings = settings
        self.mail_override = mail_override
        self.channel_senders = channel_senders or {}
        self.fallback_sender = fallback_sender or UnhandledChannel()
        self.log_error = log_error
        self.clock = clock
        self.sleep = sleep
        self.now = now

    # --- Batch run ---

    def process_queue(
        self, limit: int | None = None, time_limit: float | None = None
    ) -> dict[str, int]:
        """
        Send due notifications, at most ``limit`` event groups.

        Args:
            limit: Max groups this run (defaults to the configured batch limit)
            time_limit: Seconds this run may spend; defaults to the configured
                fraction of the runtime's execution limit (None = unbounded)

        Returns:
            Run counters: groups, sent, failed, orphaned, deferred, skipped
        """
        if limit is None:
            limit = self.settings.batch_limit
        budget = time_limit if time_limit is not None else self.settings.time_budget()
        started = self.clock()
        stats = dict.fromkeys(RUN_COUNTERS, 0)

        now = self.now()
        try:
            rows = self.store.fetch_due_rows(now, self.settings.due_scan_limit)
        except Exception as e:
            self.log_error(
                error_type="sending",
                error_message=f"Could not read due queue rows: {e}",
                context={"limit": limit},
            )
            return stats

        groups = select_groups(rows, limit)
        if not groups:
            print("No due notifications to process.")
            return stats

        print(f"Processing {len(groups)} event group(s)...")
        for group in groups:
            if self._out_of_time(started, budget):
                print("  ⏱  Time budget used up, leaving remaining groups for the next run")
                break
            stats["groups"] += 1
            if not self.process_group(group, stats, started, budget):
                break

        if stats["sent"]:
            try:
                self.store.record_sent(stats["sent"], self.now())
            except Exception as e:
                self.log_error(
                    error_type="maintenance",
                    error_message=f"Could not update sent statistics: {e}",
                    context={"sent": stats["sent"]},
                )

        print_summary("Notification Queue Processing Complete", stats)
        return stats

    def _out_of_time(self, started: float, budget: float | None) -> bool:
        return budget is not None and self.clock() - started >= budget

    def process_group(
        self,
        group: EventGroup,
        stats: dict[str, int],
        started: float | None = None,
        budget: float | None = None,
    ) -> bool:
        """
        Claim and deliver one event group.

        Returns:
            False when the time budget ran out during the group, else True
        """
        started = self.clock() if started is None else started
        print(f"\nGroup: {group.describe()} ({group.reason}, {group.schedule_kind})")

        try:
            claimed = self.store.claim_group(group, self.now())
        except Exception as e:
            self.log_error(
                error_type="sending",
                error_message=f"Could not claim group: {e}",
                context=group._asdict(),
            )
            stats["skipped"] += 1
            return True

        if not claimed:
            print("  Already claimed by another run, skipping")
            stats["skipped"] += 1
            return True

        rows_by_user: dict[UserID, list[QueueID]] = {}
        for row in claimed:
            rows_by_user.setdefault(UserID(int(row["user_id"])), []).append(row["id"])
        print(f"  Claimed {len(claimed)} row(s)")

        try:
            trigger = self.preferences.get_trigger(group.trigger_id)
            content = None
            if trigger is not None:
                content = self.content_lookup.get_content(
                    group.content_type, group.content_id, group.tenant_id
                )
            users = self.identity.users_by_ids(list(rows_by_user)) if content else []
        except Exception as e:
            self.log_error(
                error_type="sending",
                error_message=f"Lookup failed, returning rows to pending: {e}",
                context=group._asdict(),
            )
            self._mark(rows_by_user, list(rows_by_user), QueueStatus.PENDING)
            stats["skipped"] += 1
            return True

        if trigger is None or content is None:
            missing = "trigger" if trigger is None else group.content_type
            self.log_error(
                error_type="orphaned",
                error_message=f"Missing {missing}, orphaning {len(claimed)} row(s)",
                context=group._asdict(),
            )
            stats["orphaned"] += self._mark(rows_by_user, list(rows_by_user), QueueStatus.ORPHANED)
            return True

        found = {user.id for user in users}
        missing_users = [user_id for user_id in rows_by_user if user_id not in found]
        if missing_users:
            self.log_error(
                error_type="orphaned",
                error_message=f"{len(missing_users)} recipient(s) no longer exist",
                context={**group._asdict(), "user_ids": missing_users},
            )
            stats["orphaned"] += self._mark(rows_by_user, missing_users, QueueStatus.ORPHANED)

        if not users:
            return True

        if trigger.channel == MAIL_CHANNEL:
            return self._send_mail(group, content, users, rows_by_user, stats, started, budget)

        self._send_custom(trigger.channel, group, content, users, rows_by_user, stats)
        return True

    # --- Dispatch ---

    def _send_mail(
        self,
        group: EventGroup,
        content: Content,
        users: list[UserRecord],
        rows_by_user: dict[UserID, list[QueueID]],
        stats: dict[str, int],
        started: float,
        budget: float | None,
    ) -> bool:
        mail = build_mail(content, group.reason, self.settings.message_id_domain)
        chunks = list(chunked(sorted(users, key=lambda u: u.id), self.settings.mail_chunk_size))

        for index, chunk in enumerate(chunks):
            if index > 0:
                if self._out_of_time(started, budget):
                    remaining = [user.id for rest in chunks[index:] for user in rest]
                    stats["deferred"] += self._mark(rows_by_user, remaining, QueueStatus.PENDING)
                    print(f"  ⏱  Time budget used up, {len(remaining)} recipient(s) left pending")
                    return False
                if self.settings.mail_chunk_pause_ms:
                    self.sleep(self.settings.mail_chunk_pause_ms / 1000)

            user_ids = [user.id for user in chunk]
            try:
                handled = self.mail_override(chunk, content, group)
                if handled is None:
                    handled = self.transport.send_blind(
                        [user.email for user in chunk],
                        mail["subject"],
                        mail["html"],
                        mail["text"],
                        mail["headers"],
                    )
            except Exception as e:
                print(f"  ✗ Mail chunk {index + 1}/{len(chunks)} raised: {e}")
                handled = False

            if handled:
                stats["sent"] += self._mark(rows_by_user, user_ids, QueueStatus.SENT)
                print(f"  ✓ Mail chunk {index + 1}/{len(chunks)} sent to {len(chunk)} recipient(s)")
            else:
                stats["failed"] += self._mark(rows_by_user, user_ids, QueueStatus.FAILED)
                error_file = self.log_error(
                    error_type="sending",
                    error_message=f"Mail chunk {index + 1}/{len(chunks)} was not sent",
                    context={**group._asdict(), "user_ids": user_ids},
                )
                print(f"  ✗ Mail chunk failed, details logged to: {error_file}")

        # The budget is also checked after the last chunk so the caller stops
        return not self._out_of_time(started, budget)

    def _send_custom(
        self,
        channel: Channel,
        group: EventGroup,
        content: Content,
        users: list[UserRecord],
        rows_by_user: dict[UserID, list[QueueID]],
        stats: dict[str, int],
    ) -> None:
        sender = self.channel_senders.get(channel, self.fallback_sender)
        user_ids = {user.id for user in users}
        try:
            succeeded, failed, not_processed = sender.send(channel, users, content, group)
        except Exception as e:
            print(f"  ✗ Channel '{channel}' raised: {e}")
            succeeded, failed, not_processed = set(), set(user_ids), set()

        succeeded = set(succeeded) & user_ids
        # Anything not confirmed is recorded as failed so it can be retried
        unsent = user_ids - succeeded

        stats["sent"] += self._mark(rows_by_user, list(succeeded), QueueStatus.SENT)
        if unsent:
            stats["failed"] += self._mark(rows_by_user, list(unsent), QueueStatus.FAILED)
            self.log_error(
                error_type="sending",
                error_message=f"Channel '{channel}' did not deliver to {len(unsent)} recipient(s)",
                context={
                    **group._asdict(),
                    "failed": sorted(set(failed) & unsent),
                    "not_processed": sorted(set(not_processed) & unsent),
                },
            )
        print(f"  Channel '{channel}': {len(succeeded)} sent, {len(unsent)} failed")

    def _mark(
        self,
        rows_by_user: dict[UserID, list[QueueID]],
        user_ids: list[UserID],
        status: QueueStatus,
    ) -> int:
        """Move claimed rows of ``user_ids`` out of processing; returns rows changed."""
        ids = [row_id for user_id in user_ids for row_id in rows_by_user.get(user_id, [])]
        if not ids:
            return 0
        sent_at = self.now() if status is QueueStatus.SENT else None
        try:
            return self.store.set_status(ids, status, QueueStatus.PROCESSING, sent_at=sent_at)
        except Exception as e:
            # Rows stay in processing and are picked up by stuck recovery
            self.log_error(
                error_type="sending",
                error_message=f"Could not mark {len(ids)} row(s) {status.value}: {e}",
                context={"ids": ids},
            )
            return 0

    # --- Maintenance ---

    def reset_stuck_items(
        self,
        threshold_seconds: int | None = None,
        statuses: tuple[QueueStatus, ...] = (QueueStatus.PROCESSING,),
    ) -> dict[str, int]:
        """
        Recover rows abandoned by a crashed run.

        Rows older than the threshold (measured from the later of scheduled_at
        and created_at) go back to pending, or to sent when sent_at shows the
        send already happened.
        """
        if threshold_seconds is None:
            threshold_seconds = self.settings.stuck_threshold_seconds
        cutoff = self.now() - timedelta(seconds=threshold_seconds)
        result = {"reset": 0, "finalized": 0}

        for status in statuses:
            try:
                rows = self.store.fetch_by_status(status)
                to_pending: list[QueueID] = []
                to_sent: list[QueueID] = []
                for row in rows:
                    times = [
                        t for t in (parse_timestamp(row.get("scheduled_at")),
                                    parse_timestamp(row.get("created_at")))
                        if t is not None
                    ]
                    if not times or max(times) >= cutoff:
                        continue
                    if row.get("sent_at"):
                        to_sent.append(row["id"])
                    else:
                        to_pending.append(row["id"])

                result["finalized"] += self.store.set_status(to_sent, QueueStatus.SENT, status)
                result["reset"] += self.store.set_status(to_pending, QueueStatus.PENDING, status)
            except Exception as e:
                self.log_error(
                    error_type="maintenance",
                    error_message=f"Stuck item recovery failed: {e}",
                    context={"status": status.value, "threshold_seconds": threshold_seconds},
                )

        print(f"  Stuck items: {result['reset']} reset to pending, "
              f"{result['finalized']} finalized as sent")
        return result

    def move_failed_to_pending(self) -> int:
        """Retry every failed row, counting the failure in its meta."""
        try:
            rows = self.store.fetch_by_status(QueueStatus.FAILED)
        except Exception as e:
            self.log_error(
                error_type="maintenance",
                error_message=f"Could not read failed rows: {e}",
            )
            return 0

        moved = 0
        for row in rows:
            try:
                meta = AttemptMeta.from_raw(row.get("meta")).with_failure()
                if self.store.update_row(
                    row["id"],
                    {"status": QueueStatus.PENDING.value, "meta": meta.model_dump()},
                    QueueStatus.FAILED,
                ):
                    moved += 1
            except Exception as e:
                self.log_error(
                    error_type="maintenance",
                    error_message=f"Could not retry row {row['id']}: {e}",
                )
        print(f"  Moved {moved} failed notification(s) back to pending")
        return moved

    def cleanup_old_notifications(self, retention_seconds: int | None = None) -> int:
        """Delete sent rows whose sent_at is older than the retention."""
        if retention_seconds is None:
            retention_seconds = self.settings.sent_retention_seconds
        return self._cleanup(QueueStatus.SENT, "sent_at", retention_seconds)

    def cleanup_failed_notifications(self, retention_seconds: int | None = None) -> int:
        """Delete failed rows whose created_at is older than the retention."""
        if retention_seconds is None:
            retention_seconds = self.settings.failed_retention_seconds
        return self._cleanup(QueueStatus.FAILED, "created_at", retention_seconds)

    def _cleanup(self, status: QueueStatus, column: str, retention_seconds: int) -> int:
        cutoff = self.now() - timedelta(seconds=retention_seconds)
        try:
            deleted = self.store.delete_older_than(status, column, cutoff)
        except Exception as e:
            self.log_error(
                error_type="maintenance",
                error_message=f"Cleanup of {status.value} rows failed: {e}",
                context={"retention_seconds": retention_seconds},
            )
            return 0
        print(f"  Deleted {deleted} {status.value} notification(s) older than {cutoff}")
        return deleted

    def get_stats(self) -> Row:
        return self.store.get_stats()
