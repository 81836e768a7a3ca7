"""
Pure combinators for hierarchical mute resolution.

A mute flag is ``True`` (explicit mute), ``False`` (explicit unmute) or
``None`` (no setting at that scope, inherit from the next broader one).
"""

from typing import Iterable

from models.preference import NotificationPreference


def aggregate_term_mutes(flags: Iterable[bool]) -> bool | None:
    """
    Combine the settings of every term attached to an item.

    Any explicit unmute wins over explicit mutes; all-muted yields mute;
    no term settings at all yields None.
    """
    seen_mute = False
    for flag in flags:
        if flag is False:
            return False
        if flag is True:
            seen_mute = True
    return True if seen_mute else None


def first_defined(*flags: bool | None) -> bool | None:
    """Return the first flag that is not None, most specific scope first."""
    for flag in flags:
        if flag is not None:
            return flag
    return None


def resolve_mute_state(
    content_item: bool | None,
    term: bool | None,
    tenant: bool | None,
    network: bool | None,
) -> bool | None:
    """Final explicit mute state, or None when no scope defines one."""
    return first_defined(content_item, term, tenant, network)


def is_muted(final_state: bool | None, default_notify: bool) -> bool:
    """Apply the global default when no scope defined anything."""
    if final_state is None:
        return not default_notify
    return final_state


class InvalidPreferenceState(ValueError):
    """The (post muted, comment unmuted) combination cannot be expressed."""


def decode_preference(
    post_muted: bool | None, comment_muted: bool | None
) -> NotificationPreference | None:
    """
    Map a pair of per-trigger mute flags to the coarse preference.

    Returns None when either flag is missing.

    Raises:
        InvalidPreferenceState: For the unreachable (True, False) pair
    """
    if post_muted is None or comment_muted is None:
        return None
    if not post_muted and not comment_muted:
        return NotificationPreference.POSTS_AND_COMMENTS
    if not post_muted and comment_muted:
        return NotificationPreference.POSTS_ONLY
    if post_muted and comment_muted:
        return NotificationPreference.NO_NOTIFICATIONS
    raise InvalidPreferenceState(
        "post trigger muted while comment trigger unmuted"
    )


def encode_preference(pref: NotificationPreference) -> tuple[bool, bool]:
    """Coarse preference -> (post trigger muted, comment trigger muted)."""
    if pref is NotificationPreference.POSTS_AND_COMMENTS:
        return (False, False)
    if pref is NotificationPreference.POSTS_ONLY:
        return (False, True)
    if pref is NotificationPreference.NO_NOTIFICATIONS:
        return (True, True)
    raise ValueError(f"Unknown notification preference: {pref!r}")
