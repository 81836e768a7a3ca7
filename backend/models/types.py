"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
different ID types (e.g., passing UserID where TenantID expected).

Uses TypeAlias for complex types that are purely structural.
"""

from typing import Any, NewType, TypeAlias

# ID types using NewType for type safety
UserID = NewType("UserID", int)
TenantID = NewType("TenantID", int)
ContentID = NewType("ContentID", int)
TermID = NewType("TermID", int)
TriggerID = NewType("TriggerID", int)
QueueID = NewType("QueueID", int)

# Structural aliases using TypeAlias
TriggerKey: TypeAlias = str  # "post-<post_type>" or "comment-<parent_post_type>"
Channel: TypeAlias = str  # "mail", "ntfy", ...
Row: TypeAlias = dict[str, Any]  # raw Supabase row
