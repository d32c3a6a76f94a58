#!/usr/bin/env python3
"""
Response models for API endpoints.
"""

from datetime import datetime
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, List, Optional


class ChannelState(BaseModel):
    sent: bool
    sent_at: Optional[datetime] = None


class InAppChannelState(ChannelState):
    read: bool = False
    read_at: Optional[datetime] = None


class NotificationChannels(BaseModel):
    email: ChannelState
    push: ChannelState
    in_app: InAppChannelState


class NotificationItem(BaseModel):
    """One notification as shown in the in-app feed."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "type": "goal_achieved",
                "title": "Goal Achieved!",
                "message": "Congratulations! You've achieved your goal: Emergency fund",
                "payload": {"goalId": "6ba7b810-9dad-11d1-80b4-00c04fd430c8"},
                "priority": "high",
                "status": "sent",
                "requested_channels": ["in_app", "push", "email"],
                "channels": {
                    "email": {"sent": True, "sent_at": "2026-02-01T12:00:00Z"},
                    "push": {"sent": True, "sent_at": "2026-02-01T12:00:00Z"},
                    "in_app": {"sent": True, "sent_at": "2026-02-01T12:00:00Z", "read": False, "read_at": None}
                },
                "scheduled_for": "2026-02-01T12:00:00Z",
                "created_at": "2026-02-01T12:00:00Z"
            }
        }
    )

    id: str
    type: str
    title: str
    message: str
    payload: Dict[str, Any] = {}
    priority: str
    status: str
    requested_channels: List[str]
    channels: NotificationChannels
    scheduled_for: datetime
    created_at: datetime
    source: Optional[str] = None
    category: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationListResponse(BaseModel):
    success: bool
    notifications: List[NotificationItem]
    pagination: Pagination


class NotificationResponse(BaseModel):
    success: bool
    notification: NotificationItem


class UnreadCountResponse(BaseModel):
    success: bool
    unread_count: int


class MarkAllReadResponse(BaseModel):
    success: bool
    updated: int


class ChannelPreferenceResponse(BaseModel):
    enabled: bool
    frequency: str
    types: Dict[str, bool]


class QuietHoursResponse(BaseModel):
    enabled: bool
    start: str
    end: str
    timezone: str


class DeviceTokenResponse(BaseModel):
    token: str
    platform: str
    is_active: bool
    last_used: Optional[datetime] = None


class PreferencesResponse(BaseModel):
    success: bool
    channels: Dict[str, ChannelPreferenceResponse]
    quiet_hours: QuietHoursResponse
    device_tokens: List[DeviceTokenResponse]


class DeviceTokenRemovedResponse(BaseModel):
    success: bool
    message: str


class DebugNotificationResponse(BaseModel):
    success: bool
    notification: NotificationItem
    delivered_channels: List[str]
