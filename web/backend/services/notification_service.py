#!/usr/bin/env python3
"""
Notification service for the web application.

Maps API calls onto the notification stores and the dispatcher, and turns
domain errors into ServiceExceptions the app's handlers understand.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from database.models import Notification, NotificationPreference
from notification.dispatcher import NotificationDispatcher
from notification.exceptions import ConfigurationError
from notification.interfaces import NotificationRecordStore, PreferenceStore
from notification.models import NotificationRequest
from notification.preferences import PreferenceSnapshot

from ..exceptions import (
    DeviceTokenNotFoundException,
    InvalidRequestException,
    NotificationNotFoundException,
    PreferencesNotProvisionedException,
)
from ..models.requests import PreferencesUpdate, DebugNotificationRequest

logger = logging.getLogger(__name__)


def serialize_notification(record: Notification) -> Dict[str, Any]:
    return {
        'id': str(record.id),
        'type': record.type,
        'title': record.title,
        'message': record.message,
        'payload': record.payload or {},
        'priority': record.priority,
        'status': record.status,
        'requested_channels': list(record.requested_channels or []),
        'channels': record.channel_state(),
        'scheduled_for': record.scheduled_for,
        'created_at': record.created_at,
        'source': record.source,
        'category': record.category,
    }


def serialize_preferences(preference: NotificationPreference) -> Dict[str, Any]:
    snapshot = PreferenceSnapshot.from_model(preference)
    return {
        'channels': {
            channel: {
                'enabled': settings.enabled,
                'frequency': settings.frequency,
                'types': dict(settings.types),
            }
            for channel, settings in snapshot.channels.items()
        },
        'quiet_hours': {
            'enabled': snapshot.quiet_hours.enabled,
            'start': snapshot.quiet_hours.start,
            'end': snapshot.quiet_hours.end,
            'timezone': snapshot.quiet_hours.timezone,
        },
        'device_tokens': [
            {
                'token': dt.token,
                'platform': dt.platform,
                'is_active': dt.is_active,
                'last_used': dt.last_used,
            }
            for dt in snapshot.device_tokens
        ],
    }


class NotificationAPIService:
    """Per-request facade over the notification stores and dispatcher."""

    def __init__(
        self,
        records: NotificationRecordStore,
        preferences: PreferenceStore,
        dispatcher: NotificationDispatcher
    ):
        self.records = records
        self.preferences = preferences
        self.dispatcher = dispatcher

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def list_notifications(self, user_id: uuid.UUID, page: int, limit: int) -> Dict[str, Any]:
        items, total = await self.records.list_for_user(user_id, (page - 1) * limit, limit)
        return {
            'notifications': [serialize_notification(item) for item in items],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if total else 0,
            },
        }

    async def unread_count(self, user_id: uuid.UUID) -> int:
        return await self.records.unread_count(user_id)

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Dict[str, Any]:
        record = await self.records.mark_read(notification_id, user_id, self._now())
        if record is None:
            raise NotificationNotFoundException(f"Notification {notification_id} not found")
        return serialize_notification(record)

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        updated = await self.records.mark_all_read(user_id, self._now())
        logger.info(f"Marked {updated} notifications read for user {user_id}")
        return updated

    async def get_preferences(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """Preferences are provisioned with defaults on first read."""
        preference = await self.preferences.create_default(user_id)
        return serialize_preferences(preference)

    async def update_preferences(self, user_id: uuid.UUID, update: PreferencesUpdate) -> Dict[str, Any]:
        await self.preferences.create_default(user_id)
        changes = update.model_dump(mode='json', exclude_none=True)
        try:
            preference = await self.preferences.update(user_id, changes)
        except ValueError as e:
            raise InvalidRequestException(str(e))
        return serialize_preferences(preference)

    async def register_device_token(self, user_id: uuid.UUID, token: str, platform: str) -> Dict[str, Any]:
        await self.preferences.create_default(user_id)
        preference = await self.preferences.add_device_token(user_id, token, platform)
        logger.info(f"Registered {platform} device token for user {user_id}")
        return serialize_preferences(preference)

    async def remove_device_token(self, user_id: uuid.UUID, token: str) -> None:
        if not await self.preferences.remove_device_token(user_id, token):
            raise DeviceTokenNotFoundException("Device token not registered")

    async def send_test(self, user_id: uuid.UUID, request: DebugNotificationRequest) -> Dict[str, Any]:
        try:
            record = await self.dispatcher.send(NotificationRequest(
                user_id=user_id,
                type=request.type,
                title=request.title,
                message=request.message,
                payload=request.payload,
                channels=list(request.channels),
                priority=request.priority,
                source='test',
                category='test',
            ))
        except ConfigurationError as e:
            raise PreferencesNotProvisionedException(str(e))

        delivered = [c for c in record.requested_channels if record.is_channel_sent(c)]
        return {'notification': serialize_notification(record), 'delivered_channels': delivered}
