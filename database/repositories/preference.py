import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from database.models import DeviceToken, NotificationPreference, utcnow
from database.repositories.base import BaseRepository
from notification.exceptions import ConfigurationError
from notification.interfaces import PreferenceStore
from notification.models import DevicePlatform
from notification.preferences import (
    default_channel_settings,
    is_valid_timezone,
    merge_channel_preferences,
    parse_hhmm,
)

logger = logging.getLogger(__name__)


class PreferenceRepository(BaseRepository, PreferenceStore):
    async def _load(self, session, user_id: uuid.UUID) -> Optional[NotificationPreference]:
        stmt = (
            select(NotificationPreference)
            .where(NotificationPreference.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get(self, user_id: uuid.UUID) -> Optional[NotificationPreference]:
        async with self.session() as session:
            return await self._load(session, user_id)

    async def create_default(self, user_id: uuid.UUID) -> NotificationPreference:
        existing = await self.get(user_id)
        if existing is not None:
            return existing

        now = utcnow()
        preference = NotificationPreference(
            id=uuid.uuid4(),
            user_id=user_id,
            channels=default_channel_settings(),
            quiet_hours_enabled=False,
            quiet_hours_start='22:00',
            quiet_hours_end='08:00',
            quiet_hours_timezone='UTC',
            created_at=now,
            updated_at=now,
            device_tokens=[],
        )
        try:
            await self.add(preference)
        except IntegrityError:
            # Provisioned concurrently
            logger.debug(f"Preferences for user {user_id} already created")
            return await self.get(user_id)
        logger.info(f"Created default notification preferences for user {user_id}")
        return preference

    async def update(self, user_id: uuid.UUID, changes: Dict[str, Any]) -> NotificationPreference:
        async with self.session() as session:
            preference = await self._load(session, user_id)
            if preference is None:
                raise ConfigurationError(f"No notification preferences provisioned for user {user_id}")

            if changes.get('channels'):
                preference.channels = merge_channel_preferences(preference.channels, changes['channels'])

            quiet_hours = changes.get('quiet_hours') or {}
            if quiet_hours.get('enabled') is not None:
                preference.quiet_hours_enabled = bool(quiet_hours['enabled'])
            if quiet_hours.get('start') is not None:
                parse_hhmm(quiet_hours['start'])
                preference.quiet_hours_start = quiet_hours['start']
            if quiet_hours.get('end') is not None:
                parse_hhmm(quiet_hours['end'])
                preference.quiet_hours_end = quiet_hours['end']
            if quiet_hours.get('timezone') is not None:
                if not is_valid_timezone(quiet_hours['timezone']):
                    raise ValueError(f"Unknown timezone '{quiet_hours['timezone']}'")
                preference.quiet_hours_timezone = quiet_hours['timezone']

            preference.updated_at = utcnow()

        return await self.get(user_id)

    async def add_device_token(self, user_id: uuid.UUID, token: str, platform: str) -> NotificationPreference:
        platform = DevicePlatform(getattr(platform, 'value', platform)).value
        now = utcnow()
        async with self.session() as session:
            if await self._load(session, user_id) is None:
                raise ConfigurationError(f"No notification preferences provisioned for user {user_id}")

            stmt = select(DeviceToken).where(DeviceToken.user_id == user_id, DeviceToken.token == token)
            device_token = (await session.execute(stmt)).scalar_one_or_none()
            if device_token is None:
                session.add(DeviceToken(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    token=token,
                    platform=platform,
                    is_active=True,
                    last_used=now,
                ))
            else:
                device_token.platform = platform
                device_token.is_active = True
                device_token.last_used = now

        return await self.get(user_id)

    async def remove_device_token(self, user_id: uuid.UUID, token: str) -> bool:
        stmt = delete(DeviceToken).where(DeviceToken.user_id == user_id, DeviceToken.token == token)
        async with self.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def deactivate_device_token(self, user_id: uuid.UUID, token: str, at: datetime) -> bool:
        stmt = (
            update(DeviceToken)
            .where(
                DeviceToken.user_id == user_id,
                DeviceToken.token == token,
                DeviceToken.is_active.is_(True),
            )
            .values(is_active=False, last_used=at)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0
