"""Unit tests for Pydantic models."""

import unittest
from datetime import datetime, timezone

from pydantic import ValidationError

from models import (
    AttemptMeta,
    Cadence,
    Content,
    EventGroup,
    QueueItem,
    QueueStatus,
    Trigger,
    UserRecord,
)
from tests.fixtures.content_factory import create_test_comment, create_test_post


class TestContentModel(unittest.TestCase):
    """Tests for Content trigger keys and thread roots."""

    def test_post_trigger_key(self):
        post = create_test_post(post_type="page")
        self.assertEqual(post.trigger_key, "post-page")

    def test_comment_trigger_key_uses_parent_type(self):
        comment = create_test_comment(post_type="event")
        self.assertEqual(comment.trigger_key, "comment-event")

    def test_settings_item_only_for_comments(self):
        self.assertIsNone(create_test_post().settings_item_id)
        self.assertEqual(create_test_comment(parent_id=77).settings_item_id, 77)

    def test_root_id(self):
        self.assertEqual(create_test_post(content_id=5).root_id, 5)
        self.assertEqual(create_test_comment(content_id=9, parent_id=5).root_id, 5)

    def test_rejects_unknown_object_type(self):
        with self.assertRaises(ValidationError):
            Content(id=1, tenant_id=1, object_type="page", post_type="post")

    def test_rejects_empty_post_type(self):
        with self.assertRaises(ValidationError):
            Content(id=1, tenant_id=1, object_type="post", post_type="")


class TestUserRecord(unittest.TestCase):
    def test_valid_email(self):
        user = UserRecord(id=1, email="a@example.com")
        self.assertEqual(user.display_name, "")

    def test_invalid_email(self):
        with self.assertRaises(ValidationError):
            UserRecord(id=1, email="not-an-email")


class TestTrigger(unittest.TestCase):
    def test_parts(self):
        trigger = Trigger(id=3, key="comment-page", channel="ntfy")
        self.assertEqual(trigger.object_type, "comment")
        self.assertEqual(trigger.post_type, "page")

    def test_from_row(self):
        trigger = Trigger.from_row({"trigger_id": 1, "trigger_key": "post-post", "channel": "mail"})
        self.assertEqual(trigger, Trigger(id=1, key="post-post", channel="mail"))

    def test_frozen(self):
        trigger = Trigger(id=1, key="post-post")
        with self.assertRaises(ValidationError):
            trigger.key = "post-page"


class TestAttemptMeta(unittest.TestCase):
    def test_from_raw_handles_missing_and_garbage(self):
        self.assertEqual(AttemptMeta.from_raw(None).fail_count, 0)
        self.assertEqual(AttemptMeta.from_raw("junk").fail_count, 0)

    def test_with_failure_increments(self):
        meta = AttemptMeta.from_raw({"fail_count": 1})
        self.assertEqual(meta.with_failure().fail_count, 2)
        self.assertEqual(meta.fail_count, 1)

    def test_unknown_fields_survive(self):
        meta = AttemptMeta.from_raw({"source": "import"}).with_failure()
        self.assertEqual(meta.model_dump(), {"fail_count": 1, "source": "import"})

    def test_negative_count_rejected(self):
        with self.assertRaises(ValidationError):
            AttemptMeta(fail_count=-1)


class TestQueueItem(unittest.TestCase):
    def test_defaults(self):
        item = QueueItem(
            recipient_id=10, tenant_id=1, content_id=100, content_type="post",
            trigger_id=1, reason="new_post",
        )
        self.assertEqual(item.status, QueueStatus.PENDING)
        self.assertEqual(item.schedule_kind, Cadence.IMMEDIATE)
        self.assertIsNone(item.scheduled_at)

    def test_to_row(self):
        scheduled = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)
        item = QueueItem(
            recipient_id=10, tenant_id=1, content_id=100, content_type="comment",
            trigger_id=2, reason="new_comment", schedule_kind=Cadence.DAILY,
            scheduled_at=scheduled,
        )
        row = item.to_row()
        self.assertEqual(row["user_id"], 10)
        self.assertEqual(row["schedule_kind"], "daily")
        self.assertEqual(row["status"], "pending")
        self.assertEqual(row["scheduled_at"], "2026-03-02T14:00:00+00:00")
        self.assertEqual(row["meta"], {"fail_count": 0})

    def test_group_matches_row_group(self):
        item = QueueItem(
            recipient_id=10, tenant_id=1, content_id=100, content_type="post",
            trigger_id=1, reason="new_post",
        )
        self.assertEqual(item.group, EventGroup.from_row(item.to_row()))

    def test_rejects_unknown_content_type(self):
        with self.assertRaises(ValidationError):
            QueueItem(
                recipient_id=10, tenant_id=1, content_id=100, content_type="page",
                trigger_id=1, reason="new_post",
            )


if __name__ == "__main__":
    unittest.main()
