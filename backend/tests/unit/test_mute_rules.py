"""Unit tests for notifications/mute_rules.py"""

import itertools
import unittest

from models.preference import NotificationPreference
from notifications.mute_rules import (
    InvalidPreferenceState,
    aggregate_term_mutes,
    decode_preference,
    encode_preference,
    first_defined,
    is_muted,
    resolve_mute_state,
)

STATES = (True, False, None)


class TestTermAggregation(unittest.TestCase):
    """Any explicit unmute on a term wins."""

    def test_mute_and_unmute_yields_unmute(self):
        self.assertIs(aggregate_term_mutes([True, False]), False)
        self.assertIs(aggregate_term_mutes([False, True]), False)

    def test_only_mutes_yields_mute(self):
        self.assertIs(aggregate_term_mutes([True, True]), True)

    def test_no_settings_is_undefined(self):
        self.assertIsNone(aggregate_term_mutes([]))


class TestScopeResolution(unittest.TestCase):
    def test_first_defined(self):
        self.assertIs(first_defined(None, False, True), False)
        self.assertIsNone(first_defined(None, None))

    def test_content_item_overrides_everything(self):
        for term, tenant, network in itertools.product(STATES, repeat=3):
            with self.subTest(term=term, tenant=tenant, network=network):
                self.assertIs(resolve_mute_state(True, term, tenant, network), True)
                self.assertIs(resolve_mute_state(False, term, tenant, network), False)

    def test_term_overrides_tenant_and_network(self):
        for tenant, network in itertools.product(STATES, repeat=2):
            with self.subTest(tenant=tenant, network=network):
                self.assertIs(resolve_mute_state(None, False, tenant, network), False)

    def test_tenant_overrides_network(self):
        self.assertIs(resolve_mute_state(None, None, False, True), False)

    def test_nothing_defined(self):
        self.assertIsNone(resolve_mute_state(None, None, None, None))

    def test_global_default_only_when_undefined(self):
        self.assertFalse(is_muted(None, default_notify=True))
        self.assertTrue(is_muted(None, default_notify=False))
        self.assertFalse(is_muted(False, default_notify=False))
        self.assertTrue(is_muted(True, default_notify=True))


class TestCoarsePreference(unittest.TestCase):
    def test_decode(self):
        self.assertEqual(decode_preference(False, False), NotificationPreference.POSTS_AND_COMMENTS)
        self.assertEqual(decode_preference(False, True), NotificationPreference.POSTS_ONLY)
        self.assertEqual(decode_preference(True, True), NotificationPreference.NO_NOTIFICATIONS)

    def test_decode_missing_flag(self):
        self.assertIsNone(decode_preference(None, True))
        self.assertIsNone(decode_preference(False, None))

    def test_unreachable_state_raises(self):
        with self.assertRaises(InvalidPreferenceState):
            decode_preference(True, False)

    def test_encode_inverts_decode(self):
        for pref in NotificationPreference:
            with self.subTest(pref=pref):
                self.assertEqual(decode_preference(*encode_preference(pref)), pref)


if __name__ == "__main__":
    unittest.main()
