"""
Scoped notification core.

This module handles:
- Resolving who is notified about a post or comment from layered mute settings
- Scheduling delivery (immediate, daily or weekly digests)
- Queuing notifications for delivery
- Sending queued notifications by mail (Resend) or custom channels (ntfy.sh)
- Queue maintenance (stuck items, retries, retention cleanup)
"""

from .hooks import NotificationHooks
from .preferences import PreferenceStore
from .processor import NotificationProcessor
from .queue import NotificationQueue
from .queue_store import QueueStore
from .resolver import RecipientResolution, RecipientResolver, ResolutionStatus
from .scheduler import NotificationScheduler

__all__ = [
    'NotificationHooks',
    'PreferenceStore',
    'NotificationProcessor',
    'NotificationQueue',
    'QueueStore',
    'RecipientResolution',
    'RecipientResolver',
    'ResolutionStatus',
    'NotificationScheduler',
]
