"""
Delivery Queue persistence.

Every status change is a conditional update on the row's current status,
so two overlapping runs never both act on the same row.
"""

from datetime import datetime
from typing import Any

from models.queue import EventGroup, QueueItem, QueueStatus
from models.types import QueueID, Row
from shared.db import IN_FILTER_CHUNK, QUEUE_TABLE, STATS_TABLE, get_supabase_client
from shared.utils import chunked, to_utc_iso

SENT_STATS_KEY = "sent"


def _due_filter(now: datetime) -> str:
    return f"scheduled_at.is.null,scheduled_at.lte.{to_utc_iso(now)}"


class QueueStore:
    """Supabase-backed storage for queue rows and the sent counter."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def _table(self):
        return self.client.table(QUEUE_TABLE)

    def insert(self, item: QueueItem) -> Row:
        row = item.to_row()
        if row["created_at"] is None:
            # Let the database default (now()) apply
            del row["created_at"]
        response = self._table().insert(row).execute()
        return response.data[0] if response.data else row

    def fetch_due_rows(self, now: datetime, scan_limit: int) -> list[Row]:
        """Pending rows that are due, oldest first."""
        response = (
            self._table()
            .select("id, tenant_id, content_id, content_type, trigger_id, reason, "
                    "schedule_kind, scheduled_at, created_at")
            .eq("status", QueueStatus.PENDING.value)
            .or_(_due_filter(now))
            .order("created_at")
            .limit(scan_limit)
            .execute()
        )
        return response.data or []

    def claim_group(self, group: EventGroup, now: datetime) -> list[Row]:
        """
        Move the group's due pending rows to processing in one statement.

        Only rows still pending change, so a concurrent run claiming the same
        group gets an empty list back.
        """
        response = (
            self._table()
            .update({"status": QueueStatus.PROCESSING.value})
            .eq("status", QueueStatus.PENDING.value)
            .eq("tenant_id", group.tenant_id)
            .eq("content_id", group.content_id)
            .eq("content_type", group.content_type)
            .eq("trigger_id", group.trigger_id)
            .eq("reason", group.reason)
            .eq("schedule_kind", group.schedule_kind)
            .or_(_due_filter(now))
            .execute()
        )
        return response.data or []

    def set_status(
        self,
        ids: list[QueueID],
        status: QueueStatus,
        expected_status: QueueStatus = QueueStatus.PROCESSING,
        sent_at: datetime | None = None,
    ) -> int:
        """Transition rows still in ``expected_status``; returns rows changed."""
        if not ids:
            return 0
        fields: dict[str, Any] = {"status": status.value}
        if sent_at is not None:
            fields["sent_at"] = to_utc_iso(sent_at)

        changed = 0
        for batch in chunked(list(ids), IN_FILTER_CHUNK):
            response = (
                self._table()
                .update(fields)
                .in_("id", batch)
                .eq("status", expected_status.value)
                .execute()
            )
            changed += len(response.data or [])
        return changed

    def update_row(
        self, row_id: QueueID, fields: dict[str, Any], expected_status: QueueStatus
    ) -> bool:
        response = (
            self._table()
            .update(fields)
            .eq("id", row_id)
            .eq("status", expected_status.value)
            .execute()
        )
        return bool(response.data)

    def fetch_by_status(self, status: QueueStatus, limit: int | None = None) -> list[Row]:
        query = (
            self._table()
            .select("id, status, scheduled_at, created_at, sent_at, meta")
            .eq("status", status.value)
            .order("created_at")
        )
        if limit is not None:
            query = query.limit(limit)
        response = query.execute()
        return response.data or []

    def delete_older_than(self, status: QueueStatus, column: str, cutoff: datetime) -> int:
        response = (
            self._table()
            .delete()
            .eq("status", status.value)
            .lt(column, to_utc_iso(cutoff))
            .execute()
        )
        return len(response.data or [])

    def delete_where(self, **filters: Any) -> int:
        query = self._table().delete()
        for key, value in filters.items():
            query = query.eq(key, value)
        response = query.execute()
        return len(response.data or [])

    # --- Sent statistics ---

    def get_stats(self) -> Row:
        response = (
            self.client.table(STATS_TABLE)
            .select("count, since")
            .eq("key", SENT_STATS_KEY)
            .limit(1)
            .execute()
        )
        if not response.data:
            return {"count": 0, "since": None}
        return {"count": int(response.data[0]["count"]), "since": response.data[0]["since"]}

    def record_sent(self, count: int, now: datetime) -> Row:
        """Add ``count`` to the persistent sent counter, starting it if absent."""
        stats = self.get_stats()
        stats = {
            "count": stats["count"] + count,
            "since": stats["since"] or to_utc_iso(now),
        }
        self.client.table(STATS_TABLE).upsert(
            {"key": SENT_STATS_KEY, **stats}, on_conflict="key"
        ).execute()
        return stats
