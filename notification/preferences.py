"""
Preference evaluation.

Pure functions over a PreferenceSnapshot: the frozen copy of a user's
preference record taken once per dispatch. Nothing here touches storage, so a
preference change during an in-flight fan-out cannot affect channel attempts
that already started.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notification.models import ALL_CHANNELS, Channel, DeliveryFrequency, NotificationType

logger = logging.getLogger(__name__)

HHMM_PATTERN = re.compile(r'^([01]?[0-9]|2[0-3]):[0-5][0-9]$')

# Types a new user has switched off
DEFAULT_DISABLED_TYPES = {NotificationType.MARKETING}


def default_type_settings() -> Dict[str, bool]:
    return {t.value: t not in DEFAULT_DISABLED_TYPES for t in NotificationType}


def default_channel_settings() -> Dict[str, Dict[str, Any]]:
    """Channel preferences for a freshly provisioned user."""
    return {
        channel.value: {
            'enabled': True,
            'frequency': DeliveryFrequency.IMMEDIATE.value,
            'types': default_type_settings(),
        }
        for channel in ALL_CHANNELS
    }


def parse_hhmm(value: str) -> time:
    if not value or not HHMM_PATTERN.match(value):
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM")
    hours, minutes = value.split(':')
    return time(int(hours), int(minutes))


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


@dataclass(frozen=True)
class ChannelPreference:
    enabled: bool = True
    frequency: str = DeliveryFrequency.IMMEDIATE.value
    types: Mapping[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class QuietHours:
    enabled: bool = False
    start: str = '22:00'
    end: str = '08:00'
    timezone: str = 'UTC'

    def zone(self):
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown quiet hours timezone '{self.timezone}', using UTC")
            return timezone.utc


@dataclass(frozen=True)
class DeviceTokenInfo:
    token: str
    platform: str
    is_active: bool = True
    last_used: Optional[datetime] = None


@dataclass(frozen=True)
class PreferenceSnapshot:
    """Read-only view of a user's preferences at dispatch time."""
    user_id: Any
    channels: Mapping[str, ChannelPreference]
    quiet_hours: QuietHours = QuietHours()
    device_tokens: Tuple[DeviceTokenInfo, ...] = ()

    @classmethod
    def from_model(cls, preference) -> "PreferenceSnapshot":
        """Build a snapshot from a NotificationPreference row."""
        raw_channels = copy.deepcopy(preference.channels or {})
        channels = {}
        for channel in ALL_CHANNELS:
            settings = raw_channels.get(channel.value, {})
            channels[channel.value] = ChannelPreference(
                enabled=bool(settings.get('enabled', True)),
                frequency=settings.get('frequency', DeliveryFrequency.IMMEDIATE.value),
                types=dict(settings.get('types') or {}),
            )
        return cls(
            user_id=preference.user_id,
            channels=channels,
            quiet_hours=QuietHours(
                enabled=bool(preference.quiet_hours_enabled),
                start=preference.quiet_hours_start or '22:00',
                end=preference.quiet_hours_end or '08:00',
                timezone=preference.quiet_hours_timezone or 'UTC',
            ),
            device_tokens=tuple(
                DeviceTokenInfo(
                    token=dt.token,
                    platform=dt.platform,
                    is_active=bool(dt.is_active),
                    last_used=dt.last_used,
                )
                for dt in (preference.device_tokens or [])
            ),
        )

    def active_device_tokens(self) -> Tuple[str, ...]:
        return tuple(dt.token for dt in self.device_tokens if dt.is_active)


def is_channel_enabled(snapshot: PreferenceSnapshot, channel, notification_type) -> bool:
    """
    A channel is usable when it is globally on and the type is not switched off.

    Types missing from the per-channel map count as enabled.
    """
    channel_key = getattr(channel, 'value', channel)
    type_key = getattr(notification_type, 'value', notification_type)
    settings = snapshot.channels.get(channel_key)
    if settings is None or not settings.enabled:
        return False
    return settings.types.get(type_key, True) is not False


def _local_time_of_day(quiet_hours: QuietHours, now: datetime) -> Tuple[datetime, time]:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(quiet_hours.zone())
    return local, local.time().replace(second=0, microsecond=0)


def is_in_quiet_hours(quiet_hours: QuietHours, now: datetime) -> bool:
    """
    Check `now` against the [start, end) window in the user's timezone.

    A window whose end is earlier than its start crosses midnight. A window
    with start == end is empty.
    """
    if not quiet_hours.enabled:
        return False

    start = parse_hhmm(quiet_hours.start)
    end = parse_hhmm(quiet_hours.end)
    _, current = _local_time_of_day(quiet_hours, now)

    if start == end:
        return False
    if end < start:
        return current >= start or current < end
    return start <= current < end


def next_quiet_hours_end(quiet_hours: QuietHours, now: datetime) -> datetime:
    """
    Next wall-clock occurrence of quiet_hours.end after `now`, as a UTC instant.

    Built from the local calendar date so a DST change between now and the end
    of the window shifts the UTC offset correctly.
    """
    zone = quiet_hours.zone()
    local_now, _ = _local_time_of_day(quiet_hours, now)
    end = parse_hhmm(quiet_hours.end)

    candidate = datetime.combine(local_now.date(), end, tzinfo=zone)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), end, tzinfo=zone)
    return candidate.astimezone(timezone.utc)


def merge_channel_preferences(
    current: Optional[Dict[str, Any]],
    update: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Partial update of the channels map; unknown channels are rejected."""
    merged = copy.deepcopy(current) if current else default_channel_settings()
    for channel_key, changes in (update or {}).items():
        channel_key = getattr(channel_key, 'value', channel_key)
        Channel(channel_key)  # ValueError on unknown channel
        if not changes:
            continue
        target = merged.setdefault(channel_key, default_channel_settings()[channel_key])
        if changes.get('enabled') is not None:
            target['enabled'] = bool(changes['enabled'])
        if changes.get('frequency') is not None:
            target['frequency'] = DeliveryFrequency(changes['frequency']).value
        if changes.get('types'):
            types = dict(target.get('types') or {})
            for type_key, enabled in changes['types'].items():
                types[NotificationType(type_key).value] = bool(enabled)
            target['types'] = types
    return merged
