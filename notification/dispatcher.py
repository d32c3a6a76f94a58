#!/usr/bin/env python3
"""
Notification Dispatcher

Turns a NotificationRequest into a durable record and fans it out over the
requested channels:

1. Load the user's preferences (missing -> ConfigurationError, nothing stored)
2. Defer to the end of quiet hours unless the priority is urgent
3. Persist the record with every channel flag false
4. Skip channels the user disabled for this type
5. Leave future-scheduled records to the sweep
6. Take the record's delivery lease, run channel senders concurrently and
   let every one settle; each success flips that channel's flag with an
   atomic update
7. Mark the record sent once every requested and enabled channel is sent

Usage:
    from notification.dispatcher import NotificationDispatcher

    dispatcher = NotificationDispatcher(records, preferences, senders)
    record = await dispatcher.send(NotificationRequest(...))
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional

from database.models import Notification
from notification.channels import ChannelSender
from notification.exceptions import ConfigurationError
from notification.interfaces import NotificationRecordStore, PreferenceStore
from notification.models import NotificationPriority, NotificationRequest, NotificationStatus
from notification.preferences import (
    PreferenceSnapshot,
    is_channel_enabled,
    is_in_quiet_hours,
    next_quiet_hours_end,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_MESSAGE_LENGTH = 500


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 1] + '…'


@dataclass
class DeliveryReport:
    """What one delivery pass over a record did."""
    notification_id: uuid.UUID
    complete: bool = False
    deferred: bool = False
    skipped: bool = False  # not pending any more, or leased by another pass
    enabled_channels: List[str] = field(default_factory=list)
    attempted: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


class NotificationDispatcher:
    """
    Creates notification records and delivers them.

    Stores and senders are injected; the dispatcher keeps no scheduling state
    of its own. `scheduled_for` and `status` on the record are all the sweep
    needs to pick up deferred or incomplete deliveries.
    """

    def __init__(
        self,
        records: NotificationRecordStore,
        preferences: PreferenceStore,
        senders: Mapping[str, ChannelSender],
        clock: Optional[Callable[[], datetime]] = None,
        retention_days: int = 30,
        max_delivery_attempts: int = 20,
        lease_seconds: int = 300
    ):
        self.records = records
        self.preferences = preferences
        self.senders = dict(senders)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.retention_days = retention_days
        self.max_delivery_attempts = max_delivery_attempts
        self.lease_seconds = lease_seconds

    def now(self) -> datetime:
        return _as_utc(self._clock())

    async def load_snapshot(self, user_id: uuid.UUID) -> PreferenceSnapshot:
        preference = await self.preferences.get(user_id)
        if preference is None:
            raise ConfigurationError(f"No notification preferences provisioned for user {user_id}")
        return PreferenceSnapshot.from_model(preference)

    async def send(self, request: NotificationRequest) -> Notification:
        """Create a record for the request and attempt immediate delivery."""
        now = self.now()
        snapshot = await self.load_snapshot(request.user_id)

        scheduled_for = _as_utc(request.scheduled_for) if request.scheduled_for else now
        if request.priority != NotificationPriority.URGENT and is_in_quiet_hours(snapshot.quiet_hours, now):
            quiet_end = next_quiet_hours_end(snapshot.quiet_hours, now)
            if quiet_end > scheduled_for:
                scheduled_for = quiet_end
            logger.info(
                f"Quiet hours for user {request.user_id}: deferring {request.type.value} "
                f"until {scheduled_for.isoformat()}"
            )

        record = Notification(
            id=uuid.uuid4(),
            user_id=request.user_id,
            type=request.type.value,
            title=_clip(request.title, MAX_TITLE_LENGTH),
            message=_clip(request.message, MAX_MESSAGE_LENGTH),
            payload=dict(request.payload or {}),
            requested_channels=[channel.value for channel in request.channels],
            email_sent=False,
            push_sent=False,
            in_app_sent=False,
            in_app_read=False,
            priority=request.priority.value,
            scheduled_for=scheduled_for,
            expires_at=now + timedelta(days=self.retention_days),
            status=NotificationStatus.PENDING.value,
            attempts=0,
            processing_until=None,
            source=request.source,
            category=request.category,
            created_at=now,
            updated_at=now,
        )
        record = await self.records.create(record)
        logger.info(f"Created notification {record.id} ({record.type}) for user {record.user_id}")

        await self.deliver(record, snapshot, now)
        return record

    async def deliver(
        self,
        record: Notification,
        snapshot: PreferenceSnapshot,
        now: Optional[datetime] = None
    ) -> DeliveryReport:
        """
        One delivery pass over an existing record.

        The pass holds the record's delivery lease, so a concurrent send and
        sweep never fan the same record out twice. Channels already flagged
        sent are never invoked again, so calling this repeatedly on the same
        record is safe.
        """
        now = now or self.now()
        report = DeliveryReport(notification_id=record.id)

        if _as_utc(record.scheduled_for) > now:
            report.deferred = True
            logger.debug(f"Notification {record.id} scheduled for {record.scheduled_for}, not delivering yet")
            return report

        lease_until = now + timedelta(seconds=self.lease_seconds)
        if not await self.records.claim(record.id, now, lease_until):
            report.skipped = True
            logger.debug(f"Notification {record.id} is not pending or is leased elsewhere, skipping")
            return report

        try:
            stored = await self.records.get(record.id)
            if stored is None:
                report.skipped = True
                return report
            # Another holder may have completed channels since this copy was read
            record.copy_channel_state(stored)
            await self._fan_out(record, snapshot, report)
        finally:
            await self.records.release(record.id)
        return report

    async def _fan_out(self, record: Notification, snapshot: PreferenceSnapshot, report: DeliveryReport) -> None:
        for channel in record.requested_channels or []:
            if is_channel_enabled(snapshot, channel, record.type):
                report.enabled_channels.append(channel)
            else:
                logger.debug(f"Channel {channel} disabled for {record.type} (user {record.user_id}), skipping")

        report.attempted = [c for c in report.enabled_channels if not record.is_channel_sent(c)]
        results = await asyncio.gather(
            *(self._deliver_channel(record, channel, snapshot) for channel in report.attempted),
            return_exceptions=True,
        )

        for channel, result in zip(report.attempted, results):
            if isinstance(result, BaseException):
                report.errors[channel] = str(result)
                logger.error(
                    f"Channel delivery failed: user={record.user_id} type={record.type} "
                    f"channel={channel} notification={record.id}: {result}"
                )

        report.complete = all(record.is_channel_sent(c) for c in report.enabled_channels)
        if report.complete:
            await self.records.set_status(record.id, NotificationStatus.SENT.value)
            record.status = NotificationStatus.SENT.value
            logger.info(f"Notification {record.id} sent via {', '.join(report.enabled_channels) or 'no channels'}")

    async def _deliver_channel(self, record: Notification, channel: str, snapshot: PreferenceSnapshot):
        sender = self.senders.get(channel)
        if sender is None:
            raise ConfigurationError(f"No sender registered for channel '{channel}'")

        recipients = await sender.resolve_recipients(record, snapshot)
        outcome = await sender.deliver(record, recipients)
        if outcome.failed_recipients:
            logger.warning(
                f"Partial {channel} delivery for notification {record.id}: "
                f"{len(outcome.failed_recipients)}/{len(outcome.results)} recipient(s) failed"
            )

        sent_at = self.now()
        if not await self.records.mark_channel_sent(record.id, channel, sent_at):
            logger.debug(f"Channel {channel} of notification {record.id} was already marked sent")
        record.set_channel_sent(channel, sent_at)
        return outcome

    async def redeliver(self, record: Notification) -> DeliveryReport:
        """
        Sweep entry point for a pending record whose time has come.

        Preferences are loaded fresh. A pass that leaves the record incomplete
        counts as one attempt; reaching max_delivery_attempts marks it failed.
        """
        now = self.now()
        snapshot = await self.load_snapshot(record.user_id)
        report = await self.deliver(record, snapshot, now)
        if report.complete or report.deferred or report.skipped:
            return report

        attempts = await self.records.increment_attempts(record.id)
        record.attempts = attempts
        if attempts >= self.max_delivery_attempts:
            error = '; '.join(f"{c}: {e}" for c, e in report.errors.items()) or 'incomplete delivery'
            await self.records.set_status(
                record.id,
                NotificationStatus.FAILED.value,
                error=f"Gave up after {attempts} attempts ({error})",
            )
            record.status = NotificationStatus.FAILED.value
            logger.warning(f"Notification {record.id} failed after {attempts} delivery attempts")
        return report
