"""Pydantic models for host-platform content and user records."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from models.trigger import comment_trigger_key, post_trigger_key
from models.types import ContentID, TenantID, TermID, TriggerKey, UserID

ObjectType = Literal["post", "comment"]


class Content(BaseModel):
    """A post or comment as seen by the notification core.

    For comments, ``post_type`` is the post type of the parent item,
    ``parent_id`` points at it and ``term_ids`` are the parent's terms.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: ContentID
    tenant_id: TenantID
    object_type: ObjectType
    post_type: str = Field(..., min_length=1)
    author_id: UserID | None = None
    author_name: str = ""
    title: str = ""
    text: str = ""
    term_ids: list[TermID] = Field(default_factory=list)
    parent_id: ContentID | None = None
    parent_title: str = ""
    url: str | None = None
    tenant_name: str = ""
    notify_others: bool = True

    @property
    def trigger_key(self) -> TriggerKey:
        if self.object_type == "comment":
            return comment_trigger_key(self.post_type)
        return post_trigger_key(self.post_type)

    @property
    def settings_item_id(self) -> ContentID | None:
        """Item id that content-item scoped settings are keyed by (comments only)."""
        if self.object_type == "comment":
            return self.parent_id
        return None

    @property
    def root_id(self) -> ContentID:
        """Id of the item a message thread is rooted at."""
        if self.object_type == "comment" and self.parent_id is not None:
            return self.parent_id
        return self.id


class UserRecord(BaseModel):
    """Recipient record returned by the identity lookup."""

    id: UserID
    email: str = Field(..., pattern=r"^[^@]+@[^@]+\.[^@]+$")
    display_name: str = ""
