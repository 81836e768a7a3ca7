"""
Preference Store: layered mute settings, triggers and delivery schedules.

Reads raise on backend failure so callers can tell "no settings" apart from
"settings could not be read". Writes report success as a bool.
"""

from typing import Any

from models.preference import DEFAULT_CADENCE, Cadence, NotificationPreference, Scope
from models.trigger import COMMENT_POST_KEY, MAIL_CHANNEL, POST_POST_KEY, Trigger
from models.types import Channel, TenantID, TriggerID, TriggerKey, UserID
from notifications.error_logger import ErrorLogger, log_notification_error
from notifications.mute_rules import (
    InvalidPreferenceState,
    decode_preference,
    encode_preference,
)
from shared.db import (
    CONTENT_SETTINGS_TABLE,
    IN_FILTER_CHUNK,
    NETWORK_SETTINGS_TABLE,
    SCHEDULES_TABLE,
    TENANT_SETTINGS_TABLE,
    TERM_SETTINGS_TABLE,
    TRIGGERS_TABLE,
    get_supabase_client,
)
from shared.utils import chunked

SCOPE_TABLES = {
    Scope.NETWORK: NETWORK_SETTINGS_TABLE,
    Scope.TENANT: TENANT_SETTINGS_TABLE,
    Scope.TERM: TERM_SETTINGS_TABLE,
    Scope.CONTENT_ITEM: CONTENT_SETTINGS_TABLE,
}

# Columns that, with user_id and trigger_id, form each table's primary key
SCOPE_KEYS = {
    Scope.NETWORK: (),
    Scope.TENANT: ("tenant_id",),
    Scope.TERM: ("tenant_id", "term_id"),
    Scope.CONTENT_ITEM: ("tenant_id", "content_id"),
}


class PreferenceStore:
    """Read/write access to the four override tables, triggers and schedules."""

    def __init__(self, client: Any = None, log_error: ErrorLogger = log_notification_error):
        self._client = client
        self.log_error = log_error

    @property
    def client(self):
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # --- Triggers ---

    def get_trigger_id(self, trigger_key: TriggerKey, channel: Channel) -> TriggerID | None:
        response = (
            self.client.table(TRIGGERS_TABLE)
            .select("trigger_id")
            .eq("trigger_key", trigger_key)
            .eq("channel", channel)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return TriggerID(int(response.data[0]["trigger_id"]))

    def get_trigger(self, trigger_id: TriggerID) -> Trigger | None:
        response = (
            self.client.table(TRIGGERS_TABLE)
            .select("trigger_id, trigger_key, channel")
            .eq("trigger_id", trigger_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Trigger.from_row(response.data[0])

    def list_triggers(self, trigger_key: TriggerKey | None = None) -> list[Trigger]:
        """All triggers (this is never much data), optionally for one key."""
        query = self.client.table(TRIGGERS_TABLE).select("trigger_id, trigger_key, channel")
        if trigger_key is not None:
            query = query.eq("trigger_key", trigger_key)
        response = query.execute()
        return [Trigger.from_row(row) for row in response.data or []]

    def _coarse_trigger_ids(self) -> dict[TriggerKey, TriggerID]:
        response = (
            self.client.table(TRIGGERS_TABLE)
            .select("trigger_id, trigger_key")
            .eq("channel", MAIL_CHANNEL)
            .in_("trigger_key", [POST_POST_KEY, COMMENT_POST_KEY])
            .execute()
        )
        return {row["trigger_key"]: TriggerID(int(row["trigger_id"])) for row in response.data or []}

    # --- Scoped mute settings (batched, used by the resolver) ---

    def fetch_mutes(
        self,
        scope: Scope,
        trigger_id: TriggerID,
        user_ids: list[UserID],
        **scope_keys: Any,
    ) -> dict[UserID, list[bool]]:
        """
        Explicit mute flags per user at one scope, for one trigger.

        Term scope returns one flag per matching term; other scopes at most one.
        A list-valued scope key (e.g. ``term_id=[...]``) is matched with "in".

        Raises:
            Exception: Whatever the backend raises on a failed read
        """
        missing = [key for key in SCOPE_KEYS[scope] if key not in scope_keys]
        if missing:
            raise ValueError(f"Missing scope keys for {scope.value}: {missing}")

        flags: dict[UserID, list[bool]] = {}
        if not user_ids:
            return flags
        for key, value in scope_keys.items():
            if isinstance(value, (list, tuple, set)) and not value:
                # e.g. an item with no terms: nothing can match
                return flags

        table = SCOPE_TABLES[scope]
        for batch in chunked(list(user_ids), IN_FILTER_CHUNK):
            query = (
                self.client.table(table)
                .select("user_id, mute")
                .eq("trigger_id", trigger_id)
                .in_("user_id", batch)
            )
            for key, value in scope_keys.items():
                if isinstance(value, (list, tuple, set)):
                    query = query.in_(key, list(value))
                else:
                    query = query.eq(key, value)
            response = query.execute()
            for row in response.data or []:
                flags.setdefault(UserID(int(row["user_id"])), []).append(bool(row["mute"]))
        return flags

    # --- Coarse three-state preferences ---

    def get_preference(
        self, scope: Scope, user_id: UserID, fields: dict[str, Any] | None = None
    ) -> NotificationPreference | None:
        """
        Decoded preference at exactly this scope, or None when unset/undefined.

        Raises:
            Exception: Whatever the backend raises on a failed read
        """
        trigger_ids = self._coarse_trigger_ids()
        if len(trigger_ids) < 2:
            print("  ⚠️  Coarse preference triggers are not configured")
            return None

        query = (
            self.client.table(SCOPE_TABLES[scope])
            .select("trigger_id, mute")
            .eq("user_id", user_id)
            .in_("trigger_id", list(trigger_ids.values()))
        )
        for key, value in (fields or {}).items():
            query = query.eq(key, value)
        response = query.execute()

        muted = {int(row["trigger_id"]): bool(row["mute"]) for row in response.data or []}
        post_muted = muted.get(int(trigger_ids[POST_POST_KEY]))
        comment_muted = muted.get(int(trigger_ids[COMMENT_POST_KEY]))

        try:
            return decode_preference(post_muted, comment_muted)
        except InvalidPreferenceState as e:
            self.log_error(
                error_type="preferences",
                error_message=f"Invalid stored preference state: {e}",
                context={"scope": scope.value, "user_id": user_id, **(fields or {})},
            )
            return None

    def set_preference(
        self, scope: Scope, fields: dict[str, Any], pref: NotificationPreference
    ) -> bool:
        """
        Upsert both per-trigger flags for a coarse preference in one statement.

        ``fields`` must hold user_id plus the scope's key columns.
        """
        missing = [key for key in ("user_id", *SCOPE_KEYS[scope]) if key not in fields]
        if missing:
            print(f"  ✗ Cannot set {scope.value} preference, missing {missing}")
            return False

        post_muted, comment_muted = encode_preference(pref)
        try:
            trigger_ids = self._coarse_trigger_ids()
            if len(trigger_ids) < 2:
                self.log_error(
                    error_type="configuration",
                    error_message="Coarse preference triggers are not configured",
                    context={"scope": scope.value, "channel": MAIL_CHANNEL},
                )
                return False

            rows = [
                {**fields, "trigger_id": trigger_ids[POST_POST_KEY], "mute": post_muted},
                {**fields, "trigger_id": trigger_ids[COMMENT_POST_KEY], "mute": comment_muted},
            ]
            on_conflict = ",".join((*SCOPE_KEYS[scope], "user_id", "trigger_id"))
            self.client.table(SCOPE_TABLES[scope]).upsert(rows, on_conflict=on_conflict).execute()
            return True
        except Exception as e:
            self.log_error(
                error_type="preferences",
                error_message=f"Failed to store preference: {e}",
                context={"scope": scope.value, "preference": pref.value, **fields},
            )
            return False

    def remove_preference(self, scope: Scope, fields: dict[str, Any]) -> bool:
        """Delete the rows at this scope so the setting is inherited again."""
        try:
            query = self.client.table(SCOPE_TABLES[scope]).delete()
            for key, value in fields.items():
                query = query.eq(key, value)
            query.execute()
            return True
        except Exception as e:
            self.log_error(
                error_type="preferences",
                error_message=f"Failed to remove preference: {e}",
                context={"scope": scope.value, **fields},
            )
            return False

    def delete_settings(self, scope: Scope, **filters: Any) -> int:
        """Cascade delete of one scope's rows; returns rows removed."""
        query = self.client.table(SCOPE_TABLES[scope]).delete()
        for key, value in filters.items():
            query = query.eq(key, value)
        response = query.execute()
        return len(response.data or [])

    # --- Delivery schedules ---

    def get_schedule(self, user_id: UserID, tenant_id: TenantID, channel: Channel) -> Cadence:
        """
        Cadence for a recipient, defaulting to immediate.

        Raises:
            Exception: Whatever the backend raises on a failed read
        """
        response = (
            self.client.table(SCHEDULES_TABLE)
            .select("schedule_kind")
            .eq("user_id", user_id)
            .eq("tenant_id", tenant_id)
            .eq("channel", channel)
            .limit(1)
            .execute()
        )
        if not response.data:
            return DEFAULT_CADENCE

        value = response.data[0].get("schedule_kind")
        try:
            return Cadence(value)
        except ValueError:
            print(f"  ⚠️  Unsupported schedule '{value}' for user {user_id}, using immediate")
            return DEFAULT_CADENCE

    def set_schedule(
        self, user_id: UserID, tenant_id: TenantID, channel: Channel, cadence: Cadence
    ) -> bool:
        try:
            self.client.table(SCHEDULES_TABLE).upsert(
                {
                    "user_id": user_id,
                    "tenant_id": tenant_id,
                    "channel": channel,
                    "schedule_kind": Cadence(cadence).value,
                },
                on_conflict="user_id,tenant_id,channel",
            ).execute()
            return True
        except Exception as e:
            self.log_error(
                error_type="preferences",
                error_message=f"Failed to store schedule: {e}",
                context={"user_id": user_id, "tenant_id": tenant_id, "channel": channel},
            )
            return False

    def delete_schedules(self, **filters: Any) -> int:
        query = self.client.table(SCHEDULES_TABLE).delete()
        for key, value in filters.items():
            query = query.eq(key, value)
        response = query.execute()
        return len(response.data or [])
