"""
ntfy.sh push channel.

Users are grouped by their per-tenant topic and each topic gets a single
push. Users without an enabled topic are reported as not processed.
"""

import re
from typing import Any

import requests
from bs4 import BeautifulSoup

from models.content import Content, UserRecord
from models.queue import EventGroup
from models.types import Channel, TenantID, UserID
from notifications.extensions import SendOutcome
from shared.db import NTFY_CONFIG_TABLE, get_supabase_client

NTFY_CHANNEL: Channel = "ntfy"
TOPIC_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
EXCERPT_WORDS = 30


def excerpt(text: str, words: int = EXCERPT_WORDS) -> str:
    """Plain-text excerpt of at most ``words`` words."""
    plain = BeautifulSoup(text or "", "html.parser").get_text(" ", strip=True)
    parts = plain.split()
    if len(parts) <= words:
        return " ".join(parts)
    return " ".join(parts[:words]) + "…"


def format_title(content: Content, reason: str) -> str:
    site = content.tenant_name or f"Site {content.tenant_id}"
    if content.object_type == "post":
        if reason.startswith("new_"):
            return f"[{site}] New Post: {content.title}"
        return f"[{site}] Post: {content.title}"
    post_title = content.parent_title or "a post"
    if reason == "new_comment":
        return f"[{site}] New Comment on: {post_title}"
    if reason == "mention":
        return f"[{site}] You were mentioned in: {post_title}"
    return f"[{site}] Comment on: {post_title}"


def format_message(content: Content) -> str:
    if content.object_type == "comment":
        return f"{content.author_name or 'Someone'}: {excerpt(content.text)}"
    return excerpt(content.text)


class NtfyChannel:
    """Custom channel sender for ntfy.sh topics."""

    def __init__(self, base_url: str = "https://ntfy.sh", client: Any = None, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def user_topic(self, user_id: UserID, tenant_id: TenantID) -> str | None:
        response = (
            self.client.table(NTFY_CONFIG_TABLE)
            .select("ntfy_topic, enabled")
            .eq("user_id", user_id)
            .eq("tenant_id", tenant_id)
            .limit(1)
            .execute()
        )
        if not response.data or not response.data[0].get("enabled"):
            return None
        return response.data[0].get("ntfy_topic") or None

    def save_user_config(
        self, user_id: UserID, tenant_id: TenantID, topic: str, enabled: bool = True
    ) -> bool:
        if not TOPIC_PATTERN.match(topic):
            print(f"  ✗ Invalid ntfy.sh topic format: {topic}")
            return False
        self.client.table(NTFY_CONFIG_TABLE).upsert(
            {"user_id": user_id, "tenant_id": tenant_id, "ntfy_topic": topic, "enabled": enabled},
            on_conflict="user_id,tenant_id",
        ).execute()
        return True

    def send_to_topic(self, topic: str, content: Content, reason: str) -> bool:
        if not TOPIC_PATTERN.match(topic):
            print(f"  ✗ Invalid ntfy.sh topic format: {topic}")
            return False

        payload: dict[str, Any] = {
            "topic": topic,
            "title": format_title(content, reason),
            "message": format_message(content),
            "tags": ["notification"],
        }
        if content.url:
            payload["click"] = content.url

        try:
            response = self.session.post(self.base_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except Exception as e:
            print(f"  ✗ ntfy.sh request for topic '{topic}' failed: {e}")
            return False
        return True

    def send(
        self, channel: Channel, users: list[UserRecord], content: Content, group: EventGroup
    ) -> SendOutcome:
        succeeded: set[UserID] = set()
        failed: set[UserID] = set()
        not_processed: set[UserID] = set()

        users_by_topic: dict[str, list[UserID]] = {}
        for user in users:
            topic = self.user_topic(user.id, group.tenant_id)
            if topic is None:
                not_processed.add(user.id)
                continue
            users_by_topic.setdefault(topic, []).append(user.id)

        for topic, topic_users in users_by_topic.items():
            if self.send_to_topic(topic, content, group.reason):
                succeeded.update(topic_users)
                print(f"  ✓ Sent to ntfy.sh topic '{topic}' for {len(topic_users)} user(s)")
            else:
                failed.update(topic_users)

        return succeeded, failed, not_processed
