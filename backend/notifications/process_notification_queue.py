"""
CLI script for processing the notification queue and queue maintenance.

Usage:
    # Send due notifications (run from a scheduler every few minutes)
    uv run python -m notifications.process_notification_queue --process --limit 20

    # Give the run at most 50 seconds
    uv run python -m notifications.process_notification_queue --process --time-limit 50

    # Maintenance
    uv run python -m notifications.process_notification_queue --reset-stuck 3600
    uv run python -m notifications.process_notification_queue --retry-failed
    uv run python -m notifications.process_notification_queue --cleanup

    # Show who would be notified about a post, without queueing anything
    uv run python -m notifications.process_notification_queue --resolve-post 42 --tenant 3 --dry-run
"""

import argparse
from dataclasses import dataclass

from config.settings import NotifySettings
from models.trigger import MAIL_CHANNEL
from notifications.collaborators import ResendTransport, SupabaseDirectory
from notifications.ntfy_channel import NTFY_CHANNEL, NtfyChannel
from notifications.preferences import PreferenceStore
from notifications.processor import NotificationProcessor
from notifications.queue import NotificationQueue
from notifications.queue_store import QueueStore
from notifications.resolver import RecipientResolver
from notifications.scheduler import NotificationScheduler


@dataclass
class Components:
    settings: NotifySettings
    directory: SupabaseDirectory
    preferences: PreferenceStore
    queue_store: QueueStore
    resolver: RecipientResolver
    queue: NotificationQueue
    processor: NotificationProcessor


def build_components(settings: NotifySettings | None = None) -> Components:
    """Wire the default Supabase/Resend-backed components."""
    settings = settings or NotifySettings.from_env()
    directory = SupabaseDirectory()
    preferences = PreferenceStore()
    queue_store = QueueStore()
    resolver = RecipientResolver(preferences, directory, directory, settings)
    queue = NotificationQueue(queue_store, preferences, resolver, NotificationScheduler(settings))
    processor = NotificationProcessor(
        queue_store,
        preferences,
        directory,
        directory,
        ResendTransport(settings.from_email, settings.from_name, settings.noreply_email),
        settings,
        channel_senders={NTFY_CHANNEL: NtfyChannel(settings.ntfy_base_url)},
    )
    return Components(settings, directory, preferences, queue_store, resolver, queue, processor)


def resolve_post(
    components: Components, post_id: int, tenant_id: int, channel: str, dry_run: bool
) -> int:
    """Print the recipients of a post; queue them unless ``dry_run``."""
    content = components.directory.get_content("post", post_id, tenant_id)
    if content is None:
        print(f"Post {post_id} not found in tenant {tenant_id}")
        return 0

    resolution = components.resolver.resolve(content, channel)
    print(f"Resolution: {resolution.status.value}")
    print(f"Recipients ({len(resolution.user_ids)}): {sorted(resolution.user_ids)}")
    if resolution.mentioned:
        print(f"Mentioned: {sorted(resolution.mentioned)}")

    if dry_run or not resolution.ok or resolution.trigger_id is None:
        return 0
    return components.queue.enqueue(content, f"new_{content.post_type}", resolution.trigger_id)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Process notification queue and run queue maintenance"
    )

    parser.add_argument("--process", action="store_true", help="Send due notifications")
    parser.add_argument("--limit", type=int, help="Max event groups per run")
    parser.add_argument(
        "--time-limit",
        type=float,
        help="Seconds this run may spend (defaults to the configured budget)",
    )
    parser.add_argument(
        "--reset-stuck",
        type=int,
        nargs="?",
        const=-1,
        metavar="SECONDS",
        help="Reset rows stuck in processing (threshold defaults to the configured value)",
    )
    parser.add_argument(
        "--retry-failed", action="store_true", help="Move failed rows back to pending"
    )
    parser.add_argument(
        "--cleanup", action="store_true", help="Delete old sent and failed rows"
    )
    parser.add_argument("--stats", action="store_true", help="Show the sent counter")
    parser.add_argument("--resolve-post", type=int, metavar="ID", help="Resolve a post's recipients")
    parser.add_argument("--tenant", type=int, help="Tenant of --resolve-post")
    parser.add_argument("--channel", default=MAIL_CHANNEL, help="Channel for --resolve-post")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (only print recipients, don't queue)",
    )

    args = parser.parse_args()

    actions = [args.process, args.reset_stuck is not None, args.retry_failed,
               args.cleanup, args.stats, args.resolve_post is not None]
    if not any(actions):
        parser.error(
            "Must specify one of --process, --reset-stuck, --retry-failed, "
            "--cleanup, --stats, --resolve-post"
        )
    if args.resolve_post is not None and args.tenant is None:
        parser.error("--resolve-post requires --tenant")

    components = build_components()
    processor = components.processor

    if args.reset_stuck is not None:
        threshold = None if args.reset_stuck < 0 else args.reset_stuck
        processor.reset_stuck_items(threshold)

    if args.retry_failed:
        processor.move_failed_to_pending()

    if args.process:
        processor.process_queue(limit=args.limit, time_limit=args.time_limit)

    if args.cleanup:
        processor.cleanup_old_notifications()
        processor.cleanup_failed_notifications()

    if args.stats:
        stats = processor.get_stats()
        print(f"Sent: {stats['count']} since {stats['since'] or 'never'}")

    if args.resolve_post is not None:
        resolve_post(components, args.resolve_post, args.tenant, args.channel, args.dry_run)


if __name__ == "__main__":
    main()
