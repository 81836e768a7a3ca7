"""Unit tests for the batch run in notifications/processor.py"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from config.settings import NotifySettings
from notifications.processor import NotificationProcessor, select_groups
from tests.fixtures.content_factory import (
    create_test_comment,
    create_test_post,
    create_test_queue_row,
    create_test_user,
)
from tests.fixtures.fakes import (
    FakeClock,
    InMemoryDirectory,
    InMemoryPreferenceStore,
    InMemoryQueueStore,
    RecordingTransport,
)
from tests.fixtures.mock_helpers import RecordingErrorLogger

NOW = datetime(2026, 3, 2, 12, 30, tzinfo=timezone.utc)


class ProcessorTestCase(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryQueueStore()
        self.preferences = InMemoryPreferenceStore()
        self.preferences.add_trigger(1, "post-post")
        self.preferences.add_trigger(2, "comment-post")
        self.preferences.add_trigger(3, "post-post", channel="ntfy")
        self.directory = InMemoryDirectory()
        self.directory.add_content(create_test_post(content_id=100))
        self.directory.add_content(create_test_comment(content_id=500, parent_id=100))
        for user_id in range(10, 20):
            self.directory.add_user(create_test_user(user_id), 1)
        self.transport = RecordingTransport()
        self.logger = RecordingErrorLogger()
        self.sleep = Mock()

    def processor(self, settings=None, clock=None, **kwargs):
        return NotificationProcessor(
            self.store,
            self.preferences,
            self.directory,
            self.directory,
            self.transport,
            settings or NotifySettings(message_id_domain="example.com"),
            log_error=self.logger,
            clock=clock or FakeClock(),
            sleep=self.sleep,
            now=lambda: NOW,
            **kwargs,
        )

    def add_rows(self, user_ids, start_id=1, **fields):
        for offset, user_id in enumerate(user_ids):
            self.store.add_row(create_test_queue_row(row_id=start_id + offset, user_id=user_id, **fields))


class TestSelectGroups(unittest.TestCase):
    def test_distinct_groups_oldest_first(self):
        old = datetime(2026, 3, 1, tzinfo=timezone.utc)
        new = datetime(2026, 3, 2, tzinfo=timezone.utc)
        rows = [
            create_test_queue_row(row_id=1, content_id=200, created_at=new),
            create_test_queue_row(row_id=2, content_id=100, created_at=new),
            create_test_queue_row(row_id=3, content_id=200, created_at=new),
            create_test_queue_row(row_id=4, content_id=100, created_at=old),
        ]
        groups = select_groups(rows, limit=10)
        self.assertEqual([g.content_id for g in groups], [100, 200])

    def test_limit(self):
        rows = [create_test_queue_row(row_id=i, content_id=i) for i in range(1, 6)]
        self.assertEqual(len(select_groups(rows, limit=2)), 2)

    def test_reason_and_cadence_split_groups(self):
        rows = [
            create_test_queue_row(row_id=1, reason="new_comment"),
            create_test_queue_row(row_id=2, reason="mention"),
            create_test_queue_row(row_id=3, reason="mention", schedule_kind="daily"),
        ]
        self.assertEqual(len(select_groups(rows, limit=10)), 3)


class TestMailDelivery(ProcessorTestCase):
    def test_sends_group_and_marks_rows_sent(self):
        self.add_rows([10, 11, 12])
        stats = self.processor().process_queue()

        self.assertEqual(stats["sent"], 3)
        self.assertEqual(set(self.store.statuses().values()), {"sent"})
        for row in self.store.rows:
            self.assertEqual(row["sent_at"], NOW.isoformat())

        self.assertEqual(len(self.transport.sent), 1)
        message = self.transport.sent[0]
        self.assertEqual(
            message["addresses"],
            ["user10@example.com", "user11@example.com", "user12@example.com"],
        )
        self.assertEqual(message["subject"], "[Test Site] New Post Published: Test Post")
        self.assertEqual(message["headers"], {"Message-ID": "<post-1-100@example.com>"})

    def test_comment_threads_under_root(self):
        self.add_rows([10], content_id=500, content_type="comment", trigger_id=2, reason="new_comment")
        self.processor().process_queue()

        headers = self.transport.sent[0]["headers"]
        self.assertEqual(headers["In-Reply-To"], "<post-1-100@example.com>")
        self.assertEqual(headers["References"], "<post-1-100@example.com>")

    def test_chunking(self):
        self.add_rows(range(10, 15))
        settings = NotifySettings(mail_chunk_size=2, mail_chunk_pause_ms=250)
        stats = self.processor(settings=settings).process_queue()

        self.assertEqual([len(m["addresses"]) for m in self.transport.sent], [2, 2, 1])
        self.assertEqual(stats["sent"], 5)
        self.assertEqual(self.sleep.call_count, 2)
        self.sleep.assert_called_with(0.25)

    def test_failed_chunk_only_fails_its_rows(self):
        self.add_rows(range(10, 14))
        self.transport.results = [True, False]
        stats = self.processor(settings=NotifySettings(mail_chunk_size=2)).process_queue()

        self.assertEqual(stats["sent"], 2)
        self.assertEqual(stats["failed"], 2)
        self.assertEqual(self.store.statuses(), {1: "sent", 2: "sent", 3: "failed", 4: "failed"})
        self.assertIsNone(self.store.by_id(3)["sent_at"])
        self.assertEqual(self.logger.types(), ["sending"])

    def test_transport_exception_is_failure(self):
        self.add_rows([10])
        self.transport.send_blind = Mock(side_effect=ConnectionError("smtp down"))
        stats = self.processor().process_queue()

        self.assertEqual(stats["failed"], 1)
        self.assertEqual(self.store.statuses(), {1: "failed"})

    def test_mail_override_takes_over(self):
        self.add_rows([10, 11])
        override = Mock(return_value=True)
        self.processor(mail_override=override).process_queue()

        override.assert_called_once()
        self.assertEqual(self.transport.sent, [])
        self.assertEqual(set(self.store.statuses().values()), {"sent"})

    def test_mail_override_can_decline(self):
        self.add_rows([10])
        self.processor(mail_override=Mock(return_value=None)).process_queue()
        self.assertEqual(len(self.transport.sent), 1)


class TestOrphans(ProcessorTestCase):
    def test_missing_content_orphans_group(self):
        self.add_rows([10, 11], content_id=404)
        stats = self.processor().process_queue()

        self.assertEqual(stats["orphaned"], 2)
        self.assertEqual(set(self.store.statuses().values()), {"orphaned"})
        self.assertEqual(self.transport.sent, [])
        self.assertEqual(self.logger.types(), ["orphaned"])

    def test_missing_recipient_orphans_only_that_row(self):
        self.add_rows([10, 99])
        stats = self.processor().process_queue()

        self.assertEqual(self.store.statuses(), {1: "sent", 2: "orphaned"})
        self.assertEqual(stats["orphaned"], 1)
        self.assertEqual(self.transport.sent[0]["addresses"], ["user10@example.com"])

    def test_missing_trigger_orphans_group(self):
        self.add_rows([10], trigger_id=77)
        self.processor().process_queue()
        self.assertEqual(self.store.statuses(), {1: "orphaned"})

    def test_lookup_failure_returns_rows_to_pending(self):
        self.add_rows([10])
        self.directory.fail_users = True
        stats = self.processor().process_queue()

        self.assertEqual(self.store.statuses(), {1: "pending"})
        self.assertEqual(stats["skipped"], 1)
        self.assertEqual(self.logger.types(), ["sending"])


class TestCustomChannel(ProcessorTestCase):
    def test_outcome_sets(self):
        self.add_rows([10, 11, 12], trigger_id=3)
        sender = Mock()
        sender.send.return_value = ({10}, {11}, {12})
        stats = self.processor(channel_senders={"ntfy": sender}).process_queue()

        channel, users, content, group = sender.send.call_args[0]
        self.assertEqual(channel, "ntfy")
        self.assertEqual({u.id for u in users}, {10, 11, 12})
        self.assertEqual(content.id, 100)
        self.assertEqual(group.trigger_id, 3)
        self.assertEqual(self.store.statuses(), {1: "sent", 2: "failed", 3: "failed"})
        self.assertEqual(stats["sent"], 1)
        self.assertEqual(stats["failed"], 2)

    def test_unregistered_channel_fails_rows(self):
        self.add_rows([10], trigger_id=3)
        self.processor().process_queue()
        self.assertEqual(self.store.statuses(), {1: "failed"})

    def test_unreported_users_are_failed(self):
        self.add_rows([10, 11], trigger_id=3)
        sender = Mock()
        sender.send.return_value = ({10}, set(), set())
        self.processor(channel_senders={"ntfy": sender}).process_queue()
        self.assertEqual(self.store.statuses(), {1: "sent", 2: "failed"})


class TestTimeBudget(ProcessorTestCase):
    def test_budget_checked_between_chunks(self):
        self.add_rows(range(10, 16))
        # Every clock read advances 1s; budget runs out after the first chunk
        processor = self.processor(
            settings=NotifySettings(mail_chunk_size=2), clock=FakeClock(step=1.0)
        )
        stats = processor.process_queue(time_limit=1.5)

        self.assertEqual(len(self.transport.sent), 1)
        self.assertEqual(stats["sent"], 2)
        self.assertEqual(stats["deferred"], 4)
        self.assertEqual(
            sorted(self.store.statuses().values()),
            ["pending"] * 4 + ["sent"] * 2,
        )

    def test_remaining_groups_left_pending(self):
        self.add_rows([10], content_id=100)
        self.add_rows([11], start_id=2, content_id=500, content_type="comment",
                      trigger_id=2, reason="new_comment",
                      created_at=datetime(2026, 3, 2, 12, 5, tzinfo=timezone.utc))
        stats = self.processor(clock=FakeClock(step=1.0)).process_queue(time_limit=2.5)

        self.assertEqual(stats["groups"], 1)
        self.assertEqual(self.store.statuses(), {1: "sent", 2: "pending"})

    def test_zero_budget_processes_nothing(self):
        self.add_rows([10])
        stats = self.processor().process_queue(time_limit=0)

        self.assertEqual(stats["groups"], 0)
        self.assertEqual(self.store.statuses(), {1: "pending"})

    def test_budget_from_settings(self):
        self.add_rows([10])
        settings = NotifySettings(max_execution_time=10, time_budget_fraction=0.1)
        # 1s budget; clock jumps 5s per read
        stats = self.processor(settings=settings, clock=FakeClock(step=5.0)).process_queue()
        self.assertEqual(stats["groups"], 0)


class TestRunSemantics(ProcessorTestCase):
    def test_zero_limit_processes_nothing(self):
        self.add_rows([10])
        stats = self.processor().process_queue(limit=0)

        self.assertEqual(stats["groups"], 0)
        self.assertEqual(self.store.statuses(), {1: "pending"})
        self.assertEqual(self.transport.sent, [])

    def test_second_run_sends_nothing(self):
        self.add_rows([10, 11])
        processor = self.processor()
        processor.process_queue()
        stats = processor.process_queue()

        self.assertEqual(stats["sent"], 0)
        self.assertEqual(len(self.transport.sent), 1)

    def test_future_rows_not_due(self):
        later = (NOW + timedelta(hours=1)).isoformat()
        self.add_rows([10], scheduled_at=later, schedule_kind="daily")
        stats = self.processor().process_queue()

        self.assertEqual(stats["groups"], 0)
        self.assertEqual(self.store.statuses(), {1: "pending"})

    def test_due_scheduled_rows_sent(self):
        earlier = (NOW - timedelta(minutes=1)).isoformat()
        self.add_rows([10], scheduled_at=earlier, schedule_kind="daily")
        self.processor().process_queue()
        self.assertEqual(self.store.statuses(), {1: "sent"})

    def test_group_claimed_elsewhere_is_skipped(self):
        self.add_rows([10])
        self.store.claim_group = Mock(return_value=[])
        stats = self.processor().process_queue()

        self.assertEqual(stats["skipped"], 1)
        self.assertEqual(self.transport.sent, [])

    def test_claim_failure_leaves_rows_pending(self):
        self.add_rows([10])
        self.store.claim_group = Mock(side_effect=ConnectionError("down"))
        self.processor().process_queue()
        self.assertEqual(self.store.statuses(), {1: "pending"})

    def test_sent_counter(self):
        self.add_rows([10, 11])
        processor = self.processor()
        processor.process_queue()
        self.add_rows([12], start_id=3, content_id=500, content_type="comment",
                      trigger_id=2, reason="new_comment")
        processor.process_queue()

        self.assertEqual(processor.get_stats(), {"count": 3, "since": NOW.isoformat()})

    def test_unreadable_queue_is_not_fatal(self):
        self.store.fetch_due_rows = Mock(side_effect=ConnectionError("down"))
        stats = self.processor().process_queue()
        self.assertEqual(stats["sent"], 0)
        self.assertEqual(self.logger.types(), ["sending"])


if __name__ == "__main__":
    unittest.main()
