"""Pydantic models for notification triggers."""

from pydantic import BaseModel, ConfigDict, Field

from models.types import Channel, TriggerID, TriggerKey

MAIL_CHANNEL: Channel = "mail"

POST_POST_KEY: TriggerKey = "post-post"
COMMENT_POST_KEY: TriggerKey = "comment-post"


def post_trigger_key(post_type: str) -> TriggerKey:
    """Trigger key for the publication of an item of the given post type."""
    return f"post-{post_type}"


def comment_trigger_key(parent_post_type: str) -> TriggerKey:
    """Trigger key for a comment; keyed by the PARENT item's post type."""
    return f"comment-{parent_post_type}"


class Trigger(BaseModel):
    """An (event key, channel) pair that queue rows and settings refer to."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: TriggerID
    key: TriggerKey = Field(..., min_length=1, max_length=50)
    channel: Channel = MAIL_CHANNEL

    @property
    def object_type(self) -> str:
        """'post' or 'comment'."""
        return self.key.split("-", 1)[0]

    @property
    def post_type(self) -> str:
        """Post type the trigger applies to (for comments: the parent's type)."""
        parts = self.key.split("-", 1)
        return parts[1] if len(parts) > 1 else ""

    @classmethod
    def from_row(cls, row: dict) -> "Trigger":
        return cls(id=row["trigger_id"], key=row["trigger_key"], channel=row["channel"])
