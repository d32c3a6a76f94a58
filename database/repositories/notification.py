import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update

from database.models import CHANNEL_STATE_COLUMNS, Notification, utcnow
from database.repositories.base import BaseRepository
from notification.interfaces import NotificationRecordStore

logger = logging.getLogger(__name__)


def _lease_free(now: datetime):
    return or_(Notification.processing_until.is_(None), Notification.processing_until <= now)


class NotificationRepository(BaseRepository, NotificationRecordStore):
    async def create(self, notification: Notification) -> Notification:
        return await self.add(notification)

    async def get(self, notification_id: uuid.UUID) -> Optional[Notification]:
        async with self.session() as session:
            return await session.get(Notification, notification_id)

    async def mark_channel_sent(self, notification_id: uuid.UUID, channel: str, sent_at: datetime) -> bool:
        sent_column, at_column = CHANNEL_STATE_COLUMNS[getattr(channel, 'value', channel)]
        stmt = (
            update(Notification)
            .where(
                Notification.id == notification_id,
                getattr(Notification, sent_column).is_(False),
            )
            .values({sent_column: True, at_column: sent_at, 'updated_at': sent_at})
        )
        async with self.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def claim(self, notification_id: uuid.UUID, now: datetime, lease_until: datetime) -> bool:
        stmt = (
            update(Notification)
            .where(
                Notification.id == notification_id,
                Notification.status == 'pending',
                _lease_free(now),
            )
            .values(processing_until=lease_until)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def release(self, notification_id: uuid.UUID) -> None:
        stmt = update(Notification).where(Notification.id == notification_id).values(processing_until=None)
        async with self.session() as session:
            await session.execute(stmt)

    async def set_status(self, notification_id: uuid.UUID, status: str, error: Optional[str] = None) -> None:
        values = {'status': getattr(status, 'value', status), 'updated_at': utcnow()}
        if error is not None:
            values['last_error'] = error[:2000]
        stmt = update(Notification).where(Notification.id == notification_id).values(values)
        async with self.session() as session:
            await session.execute(stmt)

    async def increment_attempts(self, notification_id: uuid.UUID) -> int:
        stmt = (
            update(Notification)
            .where(Notification.id == notification_id)
            .values(attempts=Notification.attempts + 1, updated_at=utcnow())
        )
        async with self.session() as session:
            await session.execute(stmt)
            attempts = await session.scalar(
                select(Notification.attempts).where(Notification.id == notification_id)
            )
        return attempts or 0

    async def find_due(self, now: datetime, limit: int) -> List[Notification]:
        stmt = (
            select(Notification)
            .where(
                Notification.status == 'pending',
                Notification.scheduled_for <= now,
                _lease_free(now),
            )
            .order_by(Notification.scheduled_for)
            .limit(limit)
        )
        async with self.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def list_for_user(self, user_id: uuid.UUID, offset: int, limit: int) -> Tuple[List[Notification], int]:
        conditions = (
            Notification.user_id == user_id,
            Notification.in_app_sent.is_(True),
        )
        stmt = (
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id)
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Notification).where(*conditions)
        async with self.session() as session:
            items = list((await session.execute(stmt)).scalars().all())
            total = await session.scalar(count_stmt)
        return items, total or 0

    async def unread_count(self, user_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(Notification).where(
            Notification.user_id == user_id,
            Notification.in_app_sent.is_(True),
            Notification.in_app_read.is_(False),
        )
        async with self.session() as session:
            return (await session.scalar(stmt)) or 0

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID, read_at: datetime) -> Optional[Notification]:
        # Guarded on in_app_read so read_at is only ever written once
        stmt = (
            update(Notification)
            .where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                Notification.in_app_read.is_(False),
            )
            .values(in_app_read=True, in_app_read_at=read_at, updated_at=read_at)
        )
        async with self.session() as session:
            await session.execute(stmt)
            return (await session.execute(
                select(Notification)
                .where(Notification.id == notification_id, Notification.user_id == user_id)
                .execution_options(populate_existing=True)
            )).scalar_one_or_none()

    async def mark_all_read(self, user_id: uuid.UUID, read_at: datetime) -> int:
        stmt = (
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.in_app_sent.is_(True),
                Notification.in_app_read.is_(False),
            )
            .values(in_app_read=True, in_app_read_at=read_at, updated_at=read_at)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
        return result.rowcount

    async def delete_expired(self, now: datetime) -> int:
        stmt = delete(Notification).where(Notification.expires_at <= now)
        async with self.session() as session:
            result = await session.execute(stmt)
        logger.debug(f"Purged {result.rowcount} notifications expired before {now.isoformat()}")
        return result.rowcount
