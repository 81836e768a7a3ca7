"""Pydantic models for the delivery queue."""

from datetime import datetime
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from models.preference import Cadence
from models.types import ContentID, QueueID, TenantID, TriggerID, UserID


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    ORPHANED = "orphaned"


class AttemptMeta(BaseModel):
    """Structured attempt metadata stored with each queue row.

    Unknown keys are kept so rows written by newer code survive a round trip.
    """

    model_config = ConfigDict(extra="allow")

    fail_count: int = Field(0, ge=0)

    @classmethod
    def from_raw(cls, raw) -> "AttemptMeta":
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            return cls()
        try:
            return cls.model_validate(raw)
        except ValidationError:
            # Unusable fail_count: restart the count, keep the other keys
            extras = {key: value for key, value in raw.items() if key != "fail_count"}
            try:
                return cls.model_validate(extras)
            except ValidationError:
                return cls()

    def with_failure(self) -> "AttemptMeta":
        return self.model_copy(update={"fail_count": self.fail_count + 1})


class EventGroup(NamedTuple):
    """Rows sharing an event are sent together; this is their grouping key."""

    tenant_id: TenantID
    content_id: ContentID
    content_type: str
    trigger_id: TriggerID
    reason: str
    schedule_kind: str

    @classmethod
    def from_row(cls, row: dict) -> "EventGroup":
        return cls(
            tenant_id=row["tenant_id"],
            content_id=row["content_id"],
            content_type=row["content_type"],
            trigger_id=row["trigger_id"],
            reason=row["reason"],
            schedule_kind=row["schedule_kind"],
        )

    def describe(self) -> str:
        return (
            f"tenant {self.tenant_id}, {self.content_type} {self.content_id}, "
            f"trigger {self.trigger_id}"
        )


class QueueItem(BaseModel):
    """One row per (recipient, event)."""

    id: QueueID | None = None
    recipient_id: UserID
    tenant_id: TenantID
    content_id: ContentID
    content_type: str = Field(..., pattern="^(post|comment)$")
    trigger_id: TriggerID
    reason: str = Field(..., min_length=1, max_length=50)
    schedule_kind: Cadence = Cadence.IMMEDIATE
    scheduled_at: datetime | None = None
    status: QueueStatus = QueueStatus.PENDING
    meta: AttemptMeta = Field(default_factory=AttemptMeta)
    created_at: datetime | None = None
    sent_at: datetime | None = None

    @property
    def group(self) -> EventGroup:
        return EventGroup(
            self.tenant_id,
            self.content_id,
            self.content_type,
            self.trigger_id,
            self.reason,
            self.schedule_kind.value,
        )

    def to_row(self) -> dict:
        """Serialize for insertion (timestamps as ISO strings)."""
        return {
            "user_id": self.recipient_id,
            "tenant_id": self.tenant_id,
            "content_id": self.content_id,
            "content_type": self.content_type,
            "trigger_id": self.trigger_id,
            "reason": self.reason,
            "schedule_kind": self.schedule_kind.value,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "status": self.status.value,
            "meta": self.meta.model_dump(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
