"""Pydantic models for data validation and type checking."""

from models.content import Content, UserRecord
from models.preference import (
    Cadence,
    NotificationPreference,
    SchedulePreference,
    Scope,
)
from models.queue import AttemptMeta, EventGroup, QueueItem, QueueStatus
from models.trigger import Trigger

__all__ = [
    "Content",
    "UserRecord",
    "Cadence",
    "NotificationPreference",
    "SchedulePreference",
    "Scope",
    "AttemptMeta",
    "EventGroup",
    "QueueItem",
    "QueueStatus",
    "Trigger",
]
