"""Supabase client and the table names used by the notification core."""

import os
from functools import lru_cache

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

# Notification core tables (see sql/schema.sql)
TRIGGERS_TABLE = "sn_triggers"
QUEUE_TABLE = "sn_queue"
SCHEDULES_TABLE = "sn_user_tenant_schedules"
NETWORK_SETTINGS_TABLE = "sn_settings_network"
TENANT_SETTINGS_TABLE = "sn_settings_tenants"
TERM_SETTINGS_TABLE = "sn_settings_terms"
CONTENT_SETTINGS_TABLE = "sn_settings_content"
STATS_TABLE = "sn_stats"
NTFY_CONFIG_TABLE = "sn_user_ntfy_config"

# Host platform tables (read only)
TENANTS_TABLE = "tenants"
TENANT_MEMBERS_TABLE = "tenant_members"
CONTENTS_TABLE = "contents"
CONTENT_TERMS_TABLE = "content_terms"
USER_PROFILES_TABLE = "user_profiles"

# Keep PostgREST "in" filters well below URL length limits
IN_FILTER_CHUNK = 500


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Get initialized Supabase client (one per process)."""
    url: str | None = os.getenv("SUPABASE_URL")
    key: str | None = os.getenv("SUPABASE_SERVICE_KEY")

    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

    return create_client(url, key)
