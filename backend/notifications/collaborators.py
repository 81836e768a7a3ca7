"""
Host-platform collaborators consumed by the notification core.

The core only talks to the platform through these interfaces. Defaults are
backed by the platform's Supabase tables and by Resend for outbound mail.
"""

import os
from typing import Any, Iterable, Protocol

import resend
from pydantic import ValidationError

from models.content import Content, UserRecord
from models.types import ContentID, TenantID, UserID
from shared.db import (
    CONTENT_TERMS_TABLE,
    CONTENTS_TABLE,
    IN_FILTER_CHUNK,
    TENANT_MEMBERS_TABLE,
    TENANTS_TABLE,
    USER_PROFILES_TABLE,
    get_supabase_client,
)
from shared.utils import chunked

# Tenants in these states have no members as far as notifications go
INACTIVE_TENANT_STATUSES = ("archived", "deleted", "spam")


class MembershipLookup(Protocol):
    def members_of(self, tenant_id: TenantID) -> set[UserID]: ...


class ContentLookup(Protocol):
    def get_content(
        self, object_type: str, content_id: ContentID, tenant_id: TenantID
    ) -> Content | None: ...


class IdentityLookup(Protocol):
    def resolve_mention(self, name: str) -> UserID | None: ...

    def users_by_ids(self, user_ids: Iterable[UserID]) -> list[UserRecord]: ...


class MailTransport(Protocol):
    def send_blind(
        self,
        addresses: list[str],
        subject: str,
        html: str,
        text: str,
        headers: dict[str, str],
    ) -> bool: ...


class SupabaseDirectory:
    """Membership, content and identity lookups against the host tables."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def members_of(self, tenant_id: TenantID) -> set[UserID]:
        tenant = (
            self.client.table(TENANTS_TABLE)
            .select("id, status")
            .eq("id", tenant_id)
            .limit(1)
            .execute()
        )
        if not tenant.data or tenant.data[0].get("status") in INACTIVE_TENANT_STATUSES:
            return set()

        response = (
            self.client.table(TENANT_MEMBERS_TABLE)
            .select("user_id")
            .eq("tenant_id", tenant_id)
            .execute()
        )
        return {UserID(int(row["user_id"])) for row in response.data or []}

    def _fetch_row(self, content_id: ContentID, tenant_id: TenantID) -> dict | None:
        response = (
            self.client.table(CONTENTS_TABLE)
            .select("id, tenant_id, object_type, post_type, author_id, title, body, "
                    "parent_id, url, notify_others")
            .eq("id", content_id)
            .eq("tenant_id", tenant_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def _term_ids(self, content_id: ContentID) -> list[int]:
        response = (
            self.client.table(CONTENT_TERMS_TABLE)
            .select("term_id")
            .eq("content_id", content_id)
            .execute()
        )
        return [int(row["term_id"]) for row in response.data or []]

    def _display_name(self, user_id: int | None) -> str:
        if user_id is None:
            return ""
        response = (
            self.client.table(USER_PROFILES_TABLE)
            .select("display_name")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        return response.data[0].get("display_name") or "" if response.data else ""

    def _tenant_name(self, tenant_id: TenantID) -> str:
        response = (
            self.client.table(TENANTS_TABLE).select("name").eq("id", tenant_id).limit(1).execute()
        )
        return response.data[0].get("name") or "" if response.data else ""

    def get_content(
        self, object_type: str, content_id: ContentID, tenant_id: TenantID
    ) -> Content | None:
        """
        Load a post or comment. Comments carry their parent's post type and terms.

        Returns None when the item (or a comment's parent) no longer exists.
        """
        row = self._fetch_row(content_id, tenant_id)
        if not row or row.get("object_type") != object_type:
            return None

        fields: dict[str, Any] = {
            "id": row["id"],
            "tenant_id": row["tenant_id"],
            "object_type": object_type,
            "post_type": row.get("post_type") or "post",
            "author_id": row.get("author_id"),
            "author_name": self._display_name(row.get("author_id")),
            "title": row.get("title") or "",
            "text": row.get("body") or "",
            "url": row.get("url"),
            "tenant_name": self._tenant_name(tenant_id),
            "notify_others": row.get("notify_others", True) is not False,
        }

        if object_type == "comment":
            parent_id = row.get("parent_id")
            parent = self._fetch_row(parent_id, tenant_id) if parent_id else None
            if not parent:
                return None
            fields.update(
                parent_id=parent["id"],
                post_type=parent.get("post_type") or "post",
                parent_title=parent.get("title") or "",
                term_ids=self._term_ids(parent["id"]),
            )
        else:
            fields["term_ids"] = self._term_ids(content_id)

        return Content(**fields)

    def resolve_mention(self, name: str) -> UserID | None:
        response = (
            self.client.table(USER_PROFILES_TABLE)
            .select("id")
            .eq("username", name)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return UserID(int(response.data[0]["id"]))

    def users_by_ids(self, user_ids: Iterable[UserID]) -> list[UserRecord]:
        ids = list(user_ids)
        if not ids:
            return []
        rows: list[dict] = []
        for batch in chunked(ids, IN_FILTER_CHUNK):
            response = (
                self.client.table(USER_PROFILES_TABLE)
                .select("id, email, display_name")
                .in_("id", batch)
                .execute()
            )
            rows.extend(response.data or [])

        users = []
        for row in rows:
            try:
                users.append(
                    UserRecord(
                        id=row["id"],
                        email=row.get("email") or "",
                        display_name=row.get("display_name") or "",
                    )
                )
            except ValidationError:
                print(f"  ⚠️  User {row.get('id')} has no usable email address, skipping")
        return users


class ResendTransport:
    """Sends one message per chunk, recipients in Bcc only."""

    def __init__(self, from_email: str, from_name: str, to_email: str, api_key: str | None = None):
        self.from_email = from_email
        self.from_name = from_name
        self.to_email = to_email
        resend.api_key = api_key or os.getenv("RESEND_API_KEY")

    def send_blind(
        self,
        addresses: list[str],
        subject: str,
        html: str,
        text: str,
        headers: dict[str, str],
    ) -> bool:
        if not addresses:
            return False
        try:
            response = resend.Emails.send({
                "from": f"{self.from_name} <{self.from_email}>",
                "to": [self.to_email],
                "bcc": addresses,
                "subject": subject,
                "html": html,
                "text": text,
                "headers": headers,
            })
        except Exception as e:
            print(f"  ✗ Resend rejected message for {len(addresses)} recipients: {e}")
            return False
        return bool(response and response.get("id"))
