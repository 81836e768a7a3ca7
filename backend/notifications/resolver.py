"""
Recipient Resolver: who gets notified about a content event on a channel.

Scopes are evaluated most specific first (content item, term, tenant,
network) and the first explicit setting wins; the global default applies
when no scope defines anything. Mentioned users are added regardless of
mutes; the author never receives their own event.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field

from config.settings import NotifySettings
from models.content import Content
from models.preference import Scope
from models.trigger import MAIL_CHANNEL
from models.types import Channel, TriggerID, UserID
from notifications.collaborators import IdentityLookup, MembershipLookup
from notifications.error_logger import ErrorLogger, log_notification_error
from notifications.extensions import RecipientFilter, keep_all_recipients
from notifications.mute_rules import aggregate_term_mutes, is_muted, resolve_mute_state
from notifications.preferences import PreferenceStore

MENTION_PATTERN = re.compile(r"@([a-zA-Z0-9_-]+)")


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    NO_TRIGGER = "no_trigger"
    NO_MEMBERS = "no_members"
    LOOKUP_FAILED = "lookup_failed"
    MISSING_PARENT = "missing_parent"


class RecipientResolution(BaseModel):
    """Recipients plus how they were arrived at.

    An empty ``user_ids`` with status ``resolved`` or ``no_members`` is a
    legitimate outcome; the other statuses mean resolution did not happen.
    """

    status: ResolutionStatus
    user_ids: set[UserID] = Field(default_factory=set)
    trigger_id: TriggerID | None = None
    mentioned: set[UserID] = Field(default_factory=set)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (ResolutionStatus.RESOLVED, ResolutionStatus.NO_MEMBERS)


def extract_mentions(text: str) -> list[str]:
    """Unique @names in order of first appearance."""
    seen: list[str] = []
    for name in MENTION_PATTERN.findall(text or ""):
        if name not in seen:
            seen.append(name)
    return seen


class RecipientResolver:
    def __init__(
        self,
        store: PreferenceStore,
        membership: MembershipLookup,
        identity: IdentityLookup,
        settings: NotifySettings,
        recipient_filter: RecipientFilter = keep_all_recipients,
        log_error: ErrorLogger = log_notification_error,
    ):
        self.store = store
        self.membership = membership
        self.identity = identity
        self.settings = settings
        self.recipient_filter = recipient_filter
        self.log_error = log_error

    def _context(self, content: Content, channel: Channel) -> dict:
        return {
            "tenant_id": content.tenant_id,
            "content_id": content.id,
            "object_type": content.object_type,
            "trigger_key": content.trigger_key,
            "channel": channel,
        }

    def final_mute_states(
        self, trigger_id: TriggerID, content: Content, user_ids: set[UserID]
    ) -> dict[UserID, bool | None]:
        """
        Explicit mute state per user, or None where no scope defines one.

        Each scope is fetched once for all users still undefined after the
        more specific scopes.

        Raises:
            Exception: Whatever the Preference Store raises on a failed read
        """
        content_item: dict[UserID, bool] = {}
        term: dict[UserID, bool | None] = {}
        tenant: dict[UserID, bool] = {}
        network: dict[UserID, bool] = {}

        undefined = set(user_ids)

        if content.settings_item_id is not None and undefined:
            flags = self.store.fetch_mutes(
                Scope.CONTENT_ITEM,
                trigger_id,
                sorted(undefined),
                tenant_id=content.tenant_id,
                content_id=content.settings_item_id,
            )
            content_item = {user: values[-1] for user, values in flags.items()}
            undefined -= content_item.keys()

        if content.term_ids and undefined:
            flags = self.store.fetch_mutes(
                Scope.TERM,
                trigger_id,
                sorted(undefined),
                tenant_id=content.tenant_id,
                term_id=list(content.term_ids),
            )
            term = {user: aggregate_term_mutes(values) for user, values in flags.items()}
            undefined -= {user for user, state in term.items() if state is not None}

        if undefined:
            flags = self.store.fetch_mutes(
                Scope.TENANT, trigger_id, sorted(undefined), tenant_id=content.tenant_id
            )
            tenant = {user: values[-1] for user, values in flags.items()}
            undefined -= tenant.keys()

        if undefined:
            flags = self.store.fetch_mutes(Scope.NETWORK, trigger_id, sorted(undefined))
            network = {user: values[-1] for user, values in flags.items()}

        return {
            user: resolve_mute_state(
                content_item.get(user), term.get(user), tenant.get(user), network.get(user)
            )
            for user in user_ids
        }

    def _mentioned_ids(self, content: Content) -> set[UserID]:
        mentioned: set[UserID] = set()
        for name in extract_mentions(content.text):
            try:
                user_id = self.identity.resolve_mention(name)
            except Exception as e:
                print(f"  ⚠️  Could not resolve mention @{name}: {e}")
                continue
            if user_id is not None:
                mentioned.add(user_id)
        return mentioned

    def resolve(self, content: Content, channel: Channel = MAIL_CHANNEL) -> RecipientResolution:
        """
        Compute the recipients of ``content`` on ``channel``.

        Never raises; failures are reported through the resolution status.
        """
        context = self._context(content, channel)

        if content.object_type == "comment" and content.parent_id is None:
            self.log_error(
                error_type="resolution",
                error_message="Comment has no parent item",
                context=context,
            )
            return RecipientResolution(status=ResolutionStatus.MISSING_PARENT)

        try:
            trigger_id = self.store.get_trigger_id(content.trigger_key, channel)
        except Exception as e:
            self.log_error(
                error_type="resolution",
                error_message=f"Trigger lookup failed: {e}",
                context=context,
            )
            return RecipientResolution(status=ResolutionStatus.LOOKUP_FAILED, error=str(e))

        if trigger_id is None:
            self.log_error(
                error_type="configuration",
                error_message=f"No trigger configured for '{content.trigger_key}' on '{channel}'",
                context=context,
            )
            return RecipientResolution(status=ResolutionStatus.NO_TRIGGER)

        try:
            members = self.membership.members_of(content.tenant_id)
        except Exception as e:
            self.log_error(
                error_type="resolution",
                error_message=f"Membership lookup failed: {e}",
                context=context,
            )
            return RecipientResolution(
                status=ResolutionStatus.LOOKUP_FAILED, trigger_id=trigger_id, error=str(e)
            )

        author_id = content.author_id
        candidates = {user for user in members if user != author_id}

        if not members:
            print(f"  No members in tenant {content.tenant_id}, nobody to notify")
            status = ResolutionStatus.NO_MEMBERS
            notified: set[UserID] = set()
        else:
            try:
                states = self.final_mute_states(trigger_id, content, candidates)
            except Exception as e:
                self.log_error(
                    error_type="resolution",
                    error_message=f"Preference lookup failed: {e}",
                    context=context,
                )
                return RecipientResolution(
                    status=ResolutionStatus.LOOKUP_FAILED, trigger_id=trigger_id, error=str(e)
                )
            status = ResolutionStatus.RESOLVED
            notified = {
                user
                for user, state in states.items()
                if not is_muted(state, self.settings.default_notify)
            }

            try:
                notified = set(self.recipient_filter(notified, content))
            except Exception as e:
                self.log_error(
                    error_type="resolution",
                    error_message=f"Recipient filter failed, using unfiltered list: {e}",
                    context=context,
                )

        mentioned = self._mentioned_ids(content)
        recipients = (notified | mentioned) - {author_id}

        if status is ResolutionStatus.NO_MEMBERS and recipients:
            status = ResolutionStatus.RESOLVED
        if not recipients:
            print(f"  Resolved zero recipients for {content.object_type} {content.id}")

        return RecipientResolution(
            status=status,
            user_ids=recipients,
            trigger_id=trigger_id,
            mentioned=mentioned - {author_id},
        )

    def is_notified(
        self, user_id: UserID, content: Content, channel: Channel = MAIL_CHANNEL
    ) -> bool:
        """
        Effective toggle state of one user for one item, mentions aside.

        Raises:
            Exception: Whatever the Preference Store raises on a failed read
        """
        if user_id == content.author_id:
            return False
        trigger_id = self.store.get_trigger_id(content.trigger_key, channel)
        if trigger_id is None:
            return False
        state = self.final_mute_states(trigger_id, content, {user_id})[user_id]
        return not is_muted(state, self.settings.default_notify)
