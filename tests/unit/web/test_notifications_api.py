#!/usr/bin/env python3
"""
Tests for the /api/notifications endpoints.

The application is built with create_app() and the notification service is
overridden with one backed by in-memory stores, so no database is needed.
"""

import unittest
import uuid
from datetime import timedelta

from fastapi.testclient import TestClient

from notification.dispatcher import NotificationDispatcher
from tests.mocks.notification_mocks import (
    InMemoryNotificationStore,
    InMemoryPreferenceStore,
    make_notification,
    make_preferences,
    recording_senders,
    utc,
)
from web.backend.app import create_app
from web.backend.dependencies import get_notification_service
from web.backend.routers.notifications import limiter
from web.backend.services.notification_service import NotificationAPIService


class NotificationsAPITestCase(unittest.TestCase):

    def setUp(self):
        limiter.enabled = False
        self.user_id = uuid.uuid4()
        self.records = InMemoryNotificationStore()
        self.preferences = InMemoryPreferenceStore()
        self.senders = recording_senders()
        self.dispatcher = NotificationDispatcher(self.records, self.preferences, self.senders)
        self.service = NotificationAPIService(self.records, self.preferences, self.dispatcher)

        self.app = create_app()
        self.app.dependency_overrides[get_notification_service] = lambda: self.service
        # Not entered as a context manager: the lifespan (database, scheduler) never runs
        self.client = TestClient(self.app, raise_server_exceptions=False)
        self.headers = {'X-User-Id': str(self.user_id)}

    def tearDown(self):
        limiter.enabled = False
        limiter.reset()

    def seed(self, count, **kwargs):
        base = utc(2026, 5, 1, 12, 0)
        return [
            self.records.add(make_notification(self.user_id, base + timedelta(minutes=i), title=f'n{i}', **kwargs))
            for i in range(count)
        ]


class TestAuthentication(NotificationsAPITestCase):

    def test_missing_user_header(self):
        response = self.client.get('/api/notifications/')

        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.json()['success'])

    def test_malformed_user_header(self):
        response = self.client.get('/api/notifications/', headers={'X-User-Id': 'not-a-uuid'})

        self.assertEqual(response.status_code, 400)

    def test_health_without_context(self):
        response = self.client.get('/health')

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['scheduler_running'])


class TestFeed(NotificationsAPITestCase):

    def test_list_paginates_newest_first(self):
        self.seed(5)
        self.records.add(make_notification(uuid.uuid4(), utc(2026, 5, 1)))

        response = self.client.get('/api/notifications/?page=1&limit=2', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual([n['title'] for n in body['notifications']], ['n4', 'n3'])
        self.assertEqual(body['pagination'], {'page': 1, 'limit': 2, 'total': 5, 'pages': 3})
        self.assertIn('in_app', body['notifications'][0]['channels'])

    def test_limit_is_bounded(self):
        response = self.client.get('/api/notifications/?limit=500', headers=self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['type'], 'ValidationError')

    def test_unread_count_and_mark_read(self):
        first, _, _ = self.seed(3)

        self.assertEqual(self.client.get('/api/notifications/unread-count', headers=self.headers).json()['unread_count'], 3)

        response = self.client.put(f'/api/notifications/{first.id}/read', headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['notification']['channels']['in_app']['read'])

        self.assertEqual(self.client.get('/api/notifications/unread-count', headers=self.headers).json()['unread_count'], 2)

    def test_mark_read_of_someone_elses_notification(self):
        other = self.records.add(make_notification(uuid.uuid4(), utc(2026, 5, 1)))

        response = self.client.put(f'/api/notifications/{other.id}/read', headers=self.headers)

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['type'], 'NotificationNotFoundException')

    def test_mark_all_read(self):
        self.seed(2)
        self.seed(1, in_app_read=True)

        response = self.client.put('/api/notifications/mark-all-read', headers=self.headers)

        self.assertEqual(response.json(), {'success': True, 'updated': 2})


class TestPreferences(NotificationsAPITestCase):

    def test_first_read_provisions_defaults(self):
        response = self.client.get('/api/notifications/preferences', headers=self.headers)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['channels']['email']['enabled'])
        self.assertFalse(body['channels']['email']['types']['marketing'])
        self.assertFalse(body['quiet_hours']['enabled'])
        self.assertIn(self.user_id, self.preferences.preferences)

    def test_partial_update(self):
        response = self.client.put('/api/notifications/preferences', headers=self.headers, json={
            'channels': {'push': {'types': {'income_added': False}}},
            'quiet_hours': {'enabled': True, 'start': '23:00', 'timezone': 'America/New_York'},
        })

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body['channels']['push']['types']['income_added'])
        self.assertTrue(body['channels']['push']['types']['goal_reminder'])
        self.assertTrue(body['channels']['push']['enabled'])
        self.assertEqual(body['quiet_hours'], {
            'enabled': True, 'start': '23:00', 'end': '08:00', 'timezone': 'America/New_York'
        })

    def test_invalid_updates_rejected(self):
        for payload in (
            {'channels': {'sms': {'enabled': True}}},
            {'channels': {'email': {'types': {'lottery': True}}}},
            {'quiet_hours': {'start': '25:00'}},
            {'quiet_hours': {'timezone': 'Mars/Base'}},
        ):
            response = self.client.put('/api/notifications/preferences', headers=self.headers, json=payload)
            self.assertEqual(response.status_code, 400, payload)
            self.assertEqual(response.json()['type'], 'ValidationError')

    def test_device_token_register_and_remove(self):
        token = 'ExponentPushToken[phone]'

        response = self.client.post('/api/notifications/device-token', headers=self.headers,
                                    json={'token': token, 'platform': 'ios'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['device_tokens'][0]['token'], token)

        response = self.client.request('DELETE', '/api/notifications/device-token', headers=self.headers,
                                       json={'token': token})
        self.assertEqual(response.status_code, 200)

        response = self.client.request('DELETE', '/api/notifications/device-token', headers=self.headers,
                                       json={'token': token})
        self.assertEqual(response.status_code, 404)

    def test_device_token_platform_validated(self):
        response = self.client.post('/api/notifications/device-token', headers=self.headers,
                                    json={'token': 'ExponentPushToken[x]', 'platform': 'symbian'})

        self.assertEqual(response.status_code, 400)


class TestDebugDispatch(NotificationsAPITestCase):

    def test_dispatches_to_requested_channels(self):
        self.preferences.put(make_preferences(self.user_id))

        response = self.client.post('/api/notifications/test', headers=self.headers, json={
            'title': 'Ping', 'message': 'Pong', 'channels': ['in_app', 'push'],
        })

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['delivered_channels'], ['in_app', 'push'])
        self.assertEqual(body['notification']['status'], 'sent')
        self.assertEqual(self.senders['email'].calls, [])
        self.assertEqual(len(self.records.records), 1)

    def test_failed_channel_is_reported(self):
        self.preferences.put(make_preferences(self.user_id))
        self.senders['email'].error = RuntimeError('smtp down')

        body = self.client.post('/api/notifications/test', headers=self.headers, json={}).json()

        self.assertEqual(body['delivered_channels'], ['push', 'in_app'])
        self.assertEqual(body['notification']['status'], 'pending')

    def test_user_without_preferences(self):
        response = self.client.post('/api/notifications/test', headers=self.headers, json={})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['type'], 'PreferencesNotProvisionedException')

    def test_empty_channel_list_rejected(self):
        response = self.client.post('/api/notifications/test', headers=self.headers, json={'channels': []})

        self.assertEqual(response.status_code, 400)

    def test_rate_limited(self):
        self.preferences.put(make_preferences(self.user_id))
        limiter.reset()
        limiter.enabled = True

        statuses = [
            self.client.post('/api/notifications/test', headers=self.headers, json={}).status_code
            for _ in range(6)
        ]

        self.assertEqual(statuses[:5], [200] * 5)
        self.assertEqual(statuses[5], 429)


if __name__ == '__main__':
    unittest.main()
