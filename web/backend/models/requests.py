#!/usr/bin/env python3
"""
Request models for API endpoints.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional

from notification.models import (
    ALL_CHANNELS,
    Channel,
    DeliveryFrequency,
    DevicePlatform,
    NotificationPriority,
    NotificationType,
)
from notification.preferences import is_valid_timezone

HHMM = r'^([01]?[0-9]|2[0-3]):[0-5][0-9]$'


class ChannelPreferenceUpdate(BaseModel):
    """Partial update of one channel's settings."""
    enabled: Optional[bool] = None
    frequency: Optional[DeliveryFrequency] = None
    types: Optional[Dict[NotificationType, bool]] = None


class QuietHoursUpdate(BaseModel):
    enabled: Optional[bool] = None
    start: Optional[str] = Field(None, pattern=HHMM, description="HH:MM, local to timezone")
    end: Optional[str] = Field(None, pattern=HHMM, description="HH:MM, local to timezone")
    timezone: Optional[str] = Field(None, description="IANA timezone, e.g. Europe/Berlin")

    @field_validator('timezone')
    @classmethod
    def _known_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone '{value}'")
        return value


class PreferencesUpdate(BaseModel):
    """Request to update notification preferences. Omitted fields are left unchanged."""
    channels: Optional[Dict[Channel, ChannelPreferenceUpdate]] = None
    quiet_hours: Optional[QuietHoursUpdate] = None


class DeviceTokenRegister(BaseModel):
    token: str = Field(..., min_length=1, max_length=255, description="Expo push token")
    platform: DevicePlatform


class DeviceTokenRemove(BaseModel):
    token: str = Field(..., min_length=1, max_length=255)


class DebugNotificationRequest(BaseModel):
    """Request to dispatch a notification to the calling user."""
    type: NotificationType = NotificationType.SYSTEM
    title: str = Field("Test Notification", min_length=1, max_length=100)
    message: str = Field("This is a test notification.", min_length=1, max_length=500)
    channels: List[Channel] = Field(default_factory=lambda: list(ALL_CHANNELS), min_length=1)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    payload: Dict[str, Any] = Field(default_factory=dict)
