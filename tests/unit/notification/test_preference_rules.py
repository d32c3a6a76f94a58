#!/usr/bin/env python3
"""
Tests for preference evaluation: channel/type switches, quiet hours and
partial preference merges.

Usage:
    python -m pytest tests/unit/notification/test_preference_rules.py -v
"""

import unittest
import uuid
from datetime import datetime, timezone

from notification.models import NotificationType
from notification.preferences import (
    PreferenceSnapshot,
    QuietHours,
    default_channel_settings,
    is_channel_enabled,
    is_in_quiet_hours,
    is_valid_timezone,
    merge_channel_preferences,
    next_quiet_hours_end,
    parse_hhmm,
)
from tests.mocks.notification_mocks import make_preferences

UTC = timezone.utc


class TestChannelSwitches(unittest.TestCase):

    def setUp(self):
        self.user_id = uuid.uuid4()

    def test_defaults_enable_everything_but_marketing(self):
        snapshot = PreferenceSnapshot.from_model(make_preferences(self.user_id))
        for channel in ('email', 'push', 'in_app'):
            self.assertTrue(is_channel_enabled(snapshot, channel, NotificationType.GOAL_REMINDER))
            self.assertFalse(is_channel_enabled(snapshot, channel, NotificationType.MARKETING))

    def test_globally_disabled_channel(self):
        snapshot = PreferenceSnapshot.from_model(
            make_preferences(self.user_id, channels={'email': {'enabled': False}})
        )
        self.assertFalse(is_channel_enabled(snapshot, 'email', 'security_alert'))
        self.assertTrue(is_channel_enabled(snapshot, 'push', 'security_alert'))

    def test_type_switched_off_on_one_channel(self):
        snapshot = PreferenceSnapshot.from_model(
            make_preferences(self.user_id, channels={'push': {'types': {'income_added': False}}})
        )
        self.assertFalse(is_channel_enabled(snapshot, 'push', 'income_added'))
        self.assertTrue(is_channel_enabled(snapshot, 'in_app', 'income_added'))

    def test_missing_type_counts_as_enabled(self):
        preference = make_preferences(self.user_id)
        preference.channels['in_app']['types'] = {}
        snapshot = PreferenceSnapshot.from_model(preference)
        self.assertTrue(is_channel_enabled(snapshot, 'in_app', 'bill_reminder'))

    def test_snapshot_is_isolated_from_later_edits(self):
        preference = make_preferences(self.user_id)
        snapshot = PreferenceSnapshot.from_model(preference)
        preference.channels['push']['enabled'] = False
        self.assertTrue(is_channel_enabled(snapshot, 'push', 'goal_reminder'))

    def test_active_device_tokens_skip_inactive(self):
        preference = make_preferences(
            self.user_id,
            tokens=['ExponentPushToken[a]'],
            inactive_tokens=['ExponentPushToken[b]'],
        )
        snapshot = PreferenceSnapshot.from_model(preference)
        self.assertEqual(snapshot.active_device_tokens(), ('ExponentPushToken[a]',))


class TestQuietHours(unittest.TestCase):

    def test_disabled_window_never_applies(self):
        quiet = QuietHours(enabled=False, start='00:00', end='23:59')
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 12, 0, tzinfo=UTC)))

    def test_window_crossing_midnight(self):
        quiet = QuietHours(enabled=True, start='22:00', end='06:00')
        self.assertTrue(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 23, 0, tzinfo=UTC)))
        self.assertTrue(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 22, 0, tzinfo=UTC)))
        self.assertTrue(is_in_quiet_hours(quiet, datetime(2026, 5, 2, 5, 59, tzinfo=UTC)))
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 2, 6, 0, tzinfo=UTC)))
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 21, 59, tzinfo=UTC)))

    def test_same_day_window(self):
        quiet = QuietHours(enabled=True, start='13:00', end='14:30')
        self.assertTrue(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 13, 45, tzinfo=UTC)))
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 14, 30, tzinfo=UTC)))

    def test_equal_start_and_end_is_empty(self):
        quiet = QuietHours(enabled=True, start='22:00', end='22:00')
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 22, 0, tzinfo=UTC)))
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 3, 0, tzinfo=UTC)))

    def test_evaluated_in_user_timezone(self):
        quiet = QuietHours(enabled=True, start='22:00', end='08:00', timezone='Asia/Tokyo')
        # 14:00 UTC is 23:00 in Tokyo
        self.assertTrue(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 14, 0, tzinfo=UTC)))
        # 02:00 UTC is 11:00 in Tokyo
        self.assertFalse(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 2, 0, tzinfo=UTC)))

    def test_unknown_timezone_falls_back_to_utc(self):
        quiet = QuietHours(enabled=True, start='22:00', end='08:00', timezone='Mars/Olympus')
        self.assertTrue(is_in_quiet_hours(quiet, datetime(2026, 5, 1, 23, 0, tzinfo=UTC)))

    def test_next_end_same_night(self):
        quiet = QuietHours(enabled=True, start='22:00', end='08:00')
        self.assertEqual(
            next_quiet_hours_end(quiet, datetime(2026, 5, 1, 23, 30, tzinfo=UTC)),
            datetime(2026, 5, 2, 8, 0, tzinfo=UTC),
        )
        self.assertEqual(
            next_quiet_hours_end(quiet, datetime(2026, 5, 2, 3, 0, tzinfo=UTC)),
            datetime(2026, 5, 2, 8, 0, tzinfo=UTC),
        )

    def test_next_end_across_spring_forward(self):
        quiet = QuietHours(enabled=True, start='22:00', end='08:00', timezone='America/New_York')
        # 23:30 EST on March 7; clocks jump to EDT overnight
        now = datetime(2026, 3, 8, 4, 30, tzinfo=UTC)
        self.assertTrue(is_in_quiet_hours(quiet, now))
        self.assertEqual(next_quiet_hours_end(quiet, now), datetime(2026, 3, 8, 12, 0, tzinfo=UTC))

    def test_next_end_across_fall_back(self):
        quiet = QuietHours(enabled=True, start='22:00', end='08:00', timezone='Europe/Berlin')
        # 23:30 CEST on October 24; clocks fall back to CET overnight
        now = datetime(2026, 10, 24, 21, 30, tzinfo=UTC)
        self.assertTrue(is_in_quiet_hours(quiet, now))
        self.assertEqual(next_quiet_hours_end(quiet, now), datetime(2026, 10, 25, 7, 0, tzinfo=UTC))


class TestPreferenceParsing(unittest.TestCase):

    def test_parse_hhmm(self):
        self.assertEqual(parse_hhmm('07:05').hour, 7)
        self.assertEqual(parse_hhmm('23:59').minute, 59)
        for bad in ('24:00', '7pm', '', '12:60'):
            with self.assertRaises(ValueError):
                parse_hhmm(bad)

    def test_is_valid_timezone(self):
        self.assertTrue(is_valid_timezone('Europe/Berlin'))
        self.assertFalse(is_valid_timezone('Nowhere/Special'))


class TestMergeChannelPreferences(unittest.TestCase):

    def test_partial_update_keeps_other_settings(self):
        current = default_channel_settings()
        merged = merge_channel_preferences(current, {'email': {'types': {'marketing': True}}})

        self.assertTrue(merged['email']['types']['marketing'])
        self.assertTrue(merged['email']['enabled'])
        self.assertTrue(merged['email']['types']['goal_reminder'])
        self.assertFalse(merged['push']['types']['marketing'])
        # Input left untouched
        self.assertFalse(current['email']['types']['marketing'])

    def test_frequency_and_enabled(self):
        merged = merge_channel_preferences(
            default_channel_settings(),
            {'push': {'enabled': False, 'frequency': 'daily'}},
        )
        self.assertFalse(merged['push']['enabled'])
        self.assertEqual(merged['push']['frequency'], 'daily')

    def test_unknown_channel_rejected(self):
        with self.assertRaises(ValueError):
            merge_channel_preferences(default_channel_settings(), {'sms': {'enabled': True}})

    def test_unknown_type_or_frequency_rejected(self):
        with self.assertRaises(ValueError):
            merge_channel_preferences(default_channel_settings(), {'email': {'types': {'lottery': True}}})
        with self.assertRaises(ValueError):
            merge_channel_preferences(default_channel_settings(), {'email': {'frequency': 'hourly'}})


if __name__ == '__main__':
    unittest.main()
