"""
Delivery scheduling: turns a recipient's cadence into a UTC dispatch time.

``immediate`` maps to None ("send on the next queue run"). Digest cadences
map to the next local occurrence of the configured time, strictly after now.
"""

import math
from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.settings import NotifySettings
from models.preference import Cadence
from notifications.error_logger import ErrorLogger, log_notification_error


def offset_timezone(gmt_offset: float) -> timezone:
    """
    Fixed-offset zone from a numeric hour offset (e.g. 5.5 -> +05:30, -3.75 -> -03:45).

    Raises:
        ValueError: If the offset is not a finite value within +/-24h
    """
    if not math.isfinite(gmt_offset):
        raise ValueError(f"Invalid GMT offset: {gmt_offset}")
    sign = -1 if gmt_offset < 0 else 1
    hours = math.floor(abs(gmt_offset))
    minutes = round((abs(gmt_offset) - hours) * 60)
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def resolve_timezone(name: str | None, gmt_offset: float = 0.0) -> tzinfo:
    """
    Prefer a named zone; fall back to a fixed offset.

    Raises:
        ValueError: If neither a valid zone name nor a valid offset is available
    """
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return offset_timezone(gmt_offset)


def _at(day: datetime, at: time) -> datetime:
    return day.replace(hour=at.hour, minute=at.minute, second=at.second, microsecond=0)


def next_daily(now_local: datetime, at: time) -> datetime:
    """Next occurrence of ``at`` strictly after ``now_local``."""
    candidate = _at(now_local, at)
    if candidate <= now_local:
        candidate = _at(now_local + timedelta(days=1), at)
    return candidate


def next_weekly(now_local: datetime, weekday: int, at: time) -> datetime:
    """Next ``weekday`` (0 = Monday) at ``at``, strictly after ``now_local``."""
    days_ahead = (weekday - now_local.weekday()) % 7
    candidate = _at(now_local + timedelta(days=days_ahead), at)
    if candidate <= now_local:
        candidate = _at(now_local + timedelta(days=days_ahead + 7), at)
    return candidate


def scheduled_at_utc(
    cadence: Cadence | str,
    now_local: datetime,
    daily_time: time = time(8, 0),
    weekly_day: int = 0,
    weekly_time: time = time(9, 0),
) -> datetime | None:
    """
    Compute the dispatch instant for a cadence.

    Args:
        cadence: Recipient cadence
        now_local: Timezone-aware "now" in the recipient's zone

    Returns:
        Aware UTC datetime, or None for immediate delivery

    Raises:
        ValueError: If ``now_local`` is naive or the cadence is unknown
    """
    if now_local.tzinfo is None:
        raise ValueError("now_local must be timezone-aware")

    cadence = Cadence(cadence)
    if cadence is Cadence.IMMEDIATE:
        return None
    if cadence is Cadence.DAILY:
        local = next_daily(now_local, daily_time)
    else:
        local = next_weekly(now_local, weekly_day, weekly_time)
    return local.astimezone(timezone.utc)


class NotificationScheduler:
    """Scheduler bound to the configured zone and digest times."""

    def __init__(
        self,
        settings: NotifySettings,
        log_error: ErrorLogger = log_notification_error,
    ):
        self.settings = settings
        self.log_error = log_error

    def timezone(self) -> tzinfo:
        return resolve_timezone(self.settings.timezone_name, self.settings.gmt_offset)

    def calculate_scheduled_send_time(
        self, cadence: Cadence | str, now: datetime | None = None
    ) -> datetime | None:
        """
        UTC dispatch time for ``cadence``, or None for immediate.

        Any failure (bad zone, bad cadence) fails closed to immediate
        delivery and is logged.
        """
        if cadence in (Cadence.IMMEDIATE, Cadence.IMMEDIATE.value):
            return None

        try:
            tz = self.timezone()
            now_local = (now or datetime.now(timezone.utc)).astimezone(tz)
            return scheduled_at_utc(
                cadence,
                now_local,
                daily_time=self.settings.daily_time,
                weekly_day=self.settings.weekly_day,
                weekly_time=self.settings.weekly_time,
            )
        except (ValueError, OverflowError, TypeError) as e:
            self.log_error(
                error_type="scheduling",
                error_message=f"Error calculating scheduled send time: {e}",
                context={
                    "cadence": str(getattr(cadence, "value", cadence)),
                    "timezone_name": self.settings.timezone_name,
                    "gmt_offset": self.settings.gmt_offset,
                },
            )
            print(f"  ⚠️  Could not schedule '{cadence}', sending immediately instead")
            return None
