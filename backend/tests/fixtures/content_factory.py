"""Factory functions for creating test content, users and queue rows."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from models.content import Content, UserRecord


def create_test_post(
    content_id: int = 100,
    tenant_id: int = 1,
    author_id: Optional[int] = 1,
    text: str = "A new post body",
    **overrides,
) -> Content:
    """Factory for a published post."""
    fields: Dict[str, Any] = {
        "id": content_id,
        "tenant_id": tenant_id,
        "object_type": "post",
        "post_type": "post",
        "author_id": author_id,
        "author_name": "Author",
        "title": "Test Post",
        "text": text,
        "term_ids": [],
        "url": f"https://example.com/?p={content_id}",
        "tenant_name": "Test Site",
    }
    fields.update(overrides)
    return Content(**fields)


def create_test_comment(
    content_id: int = 500,
    parent_id: Optional[int] = 100,
    tenant_id: int = 1,
    author_id: Optional[int] = 2,
    text: str = "A comment",
    **overrides,
) -> Content:
    """Factory for an approved comment on a post."""
    fields: Dict[str, Any] = {
        "id": content_id,
        "tenant_id": tenant_id,
        "object_type": "comment",
        "post_type": "post",
        "author_id": author_id,
        "author_name": "Commenter",
        "title": "",
        "text": text,
        "term_ids": [],
        "parent_id": parent_id,
        "parent_title": "Test Post",
        "url": f"https://example.com/?p={parent_id}#comment-{content_id}",
        "tenant_name": "Test Site",
    }
    fields.update(overrides)
    return Content(**fields)


def create_test_user(user_id: int, email: Optional[str] = None, **overrides) -> UserRecord:
    """Factory for a recipient record."""
    fields = {
        "id": user_id,
        "email": email or f"user{user_id}@example.com",
        "display_name": f"user{user_id}",
    }
    fields.update(overrides)
    return UserRecord(**fields)


def create_test_queue_row(
    row_id: int = 1,
    user_id: int = 10,
    tenant_id: int = 1,
    content_id: int = 100,
    content_type: str = "post",
    trigger_id: int = 1,
    reason: str = "new_post",
    status: str = "pending",
    created_at: Optional[datetime] = None,
    **overrides,
) -> Dict[str, Any]:
    """Factory for a raw queue row as the store returns it."""
    row = {
        "id": row_id,
        "user_id": user_id,
        "tenant_id": tenant_id,
        "content_id": content_id,
        "content_type": content_type,
        "trigger_id": trigger_id,
        "reason": reason,
        "schedule_kind": "immediate",
        "scheduled_at": None,
        "status": status,
        "meta": {},
        "created_at": (created_at or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)).isoformat(),
        "sent_at": None,
    }
    row.update(overrides)
    return row
