"""Runtime configuration for the notification core, read from the environment."""

import os
from datetime import time

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()

CHUNK_SIZE_FALLBACK = 400
DAY_IN_SECONDS = 24 * 60 * 60

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class NotifySettings(BaseModel):
    """Operator-tunable settings; passed to components by constructor."""

    model_config = ConfigDict(validate_assignment=True)

    default_notify: bool = True
    mail_chunk_size: int = CHUNK_SIZE_FALLBACK
    mail_chunk_pause_ms: int = Field(0, ge=0)

    daily_time: time = time(8, 0)
    weekly_day: int = Field(0, ge=0, le=6)  # Monday
    weekly_time: time = time(9, 0)
    timezone_name: str | None = None
    gmt_offset: float = 0.0

    max_execution_time: int = Field(0, ge=0)
    time_budget_fraction: float = Field(0.8, gt=0, le=1)
    batch_limit: int = Field(20, ge=1)
    due_scan_limit: int = Field(5000, ge=1)

    stuck_threshold_seconds: int = Field(3600, ge=0)
    sent_retention_seconds: int = Field(30 * DAY_IN_SECONDS, ge=0)
    failed_retention_seconds: int = Field(90 * DAY_IN_SECONDS, ge=0)

    from_email: str = "notifications@scoped-notify.local"
    from_name: str = "Scoped Notify"
    noreply_email: str = "noreply@scoped-notify.local"
    message_id_domain: str = "scoped-notify.local"
    send_for_post_statuses: list[str] = Field(default_factory=lambda: ["publish"])

    ntfy_base_url: str = "https://ntfy.sh"

    @field_validator("mail_chunk_size", mode="before")
    @classmethod
    def _fallback_chunk_size(cls, value):
        try:
            value = int(value)
        except (TypeError, ValueError):
            return CHUNK_SIZE_FALLBACK
        return value if value >= 1 else CHUNK_SIZE_FALLBACK

    @field_validator("weekly_day", mode="before")
    @classmethod
    def _parse_weekday(cls, value):
        if isinstance(value, str) and not value.isdigit():
            return WEEKDAYS.index(value.strip().lower())
        return value

    @field_validator("timezone_name", mode="before")
    @classmethod
    def _empty_timezone_is_none(cls, value):
        return value or None

    def time_budget(self) -> float | None:
        """Seconds a run may spend, derived from the runtime limit (None = unbounded)."""
        if self.max_execution_time <= 0:
            return None
        return self.max_execution_time * self.time_budget_fraction

    @classmethod
    def from_env(cls) -> "NotifySettings":
        """
        Build settings from SCOPED_NOTIFY_* environment variables.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value
        """
        env = {
            "default_notify": os.getenv("SCOPED_NOTIFY_DEFAULT_NOTIFY"),
            "mail_chunk_size": os.getenv("SCOPED_NOTIFY_MAIL_CHUNK_SIZE"),
            "mail_chunk_pause_ms": os.getenv("SCOPED_NOTIFY_CHUNK_PAUSE_MS"),
            "daily_time": os.getenv("SCOPED_NOTIFY_DAILY_TIME"),
            "weekly_day": os.getenv("SCOPED_NOTIFY_WEEKLY_DAY"),
            "weekly_time": os.getenv("SCOPED_NOTIFY_WEEKLY_TIME"),
            "timezone_name": os.getenv("SCOPED_NOTIFY_TIMEZONE"),
            "gmt_offset": os.getenv("SCOPED_NOTIFY_GMT_OFFSET"),
            "max_execution_time": os.getenv("SCOPED_NOTIFY_MAX_EXECUTION_TIME"),
            "time_budget_fraction": os.getenv("SCOPED_NOTIFY_TIME_BUDGET_FRACTION"),
            "batch_limit": os.getenv("SCOPED_NOTIFY_BATCH_LIMIT"),
            "due_scan_limit": os.getenv("SCOPED_NOTIFY_DUE_SCAN_LIMIT"),
            "stuck_threshold_seconds": os.getenv("SCOPED_NOTIFY_STUCK_THRESHOLD"),
            "sent_retention_seconds": os.getenv("SCOPED_NOTIFY_SENT_RETENTION"),
            "failed_retention_seconds": os.getenv("SCOPED_NOTIFY_FAILED_RETENTION"),
            "from_email": os.getenv("NOTIFICATION_FROM_EMAIL"),
            "noreply_email": os.getenv("SCOPED_NOTIFY_NOREPLY_EMAIL"),
            "message_id_domain": os.getenv("SCOPED_NOTIFY_MESSAGE_ID_DOMAIN"),
            "ntfy_base_url": os.getenv("NTFY_BASE_URL"),
        }
        statuses = os.getenv("SCOPED_NOTIFY_POST_STATUSES")
        if statuses:
            env["send_for_post_statuses"] = [s.strip() for s in statuses.split(",") if s.strip()]

        # Unset variables keep the model defaults
        return cls(**{key: value for key, value in env.items() if value is not None})
