"""
Injectable extension points.

Each one is a small strategy interface with a default that changes nothing,
so the core runs unmodified when no integration supplies its own.
"""

from typing import Protocol

from models.content import Content, UserRecord
from models.queue import EventGroup
from models.types import Channel, UserID


class RecipientFilter(Protocol):
    """May add or remove candidates before mentions are merged in."""

    def __call__(self, candidate_ids: set[UserID], content: Content) -> set[UserID]: ...


def keep_all_recipients(candidate_ids: set[UserID], content: Content) -> set[UserID]:
    return set(candidate_ids)


class MailOverride(Protocol):
    """
    Takes over sending of one mail chunk.

    Return True/False when the chunk was handled (sent / failed), or None to
    let the built-in transport send it.
    """

    def __call__(
        self, users: list[UserRecord], content: Content, group: EventGroup
    ) -> bool | None: ...


def no_mail_override(users: list[UserRecord], content: Content, group: EventGroup) -> bool | None:
    return None


SendOutcome = tuple[set[UserID], set[UserID], set[UserID]]


class ChannelSender(Protocol):
    """
    Delivers a group on a non-mail channel.

    Returns three disjoint sets: succeeded, failed and not processed.
    """

    def send(
        self, channel: Channel, users: list[UserRecord], content: Content, group: EventGroup
    ) -> SendOutcome: ...


class UnhandledChannel:
    """Default for channels nobody registered: every user is 'not processed'."""

    def send(
        self, channel: Channel, users: list[UserRecord], content: Content, group: EventGroup
    ) -> SendOutcome:
        return set(), set(), {user.id for user in users}
