"""Pydantic models and enums for user notification preferences."""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from models.types import Channel, TenantID, UserID


class Scope(str, Enum):
    """Override level of a mute setting, from broadest to most specific."""

    NETWORK = "network"
    TENANT = "tenant"
    TERM = "term"
    CONTENT_ITEM = "content_item"


class NotificationPreference(str, Enum):
    """Coarse three-state preference, stored as a pair of per-trigger mute flags."""

    POSTS_AND_COMMENTS = "posts-and-comments"
    POSTS_ONLY = "posts-only"
    NO_NOTIFICATIONS = "no-notifications"


class Cadence(str, Enum):
    """Delivery frequency chosen by a recipient."""

    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"


DEFAULT_CADENCE = Cadence.IMMEDIATE


class SchedulePreference(BaseModel):
    """Cadence of one recipient for one tenant and channel."""

    model_config = ConfigDict(use_enum_values=False)

    user_id: UserID
    tenant_id: TenantID
    channel: Channel = "mail"
    cadence: Cadence = DEFAULT_CADENCE
