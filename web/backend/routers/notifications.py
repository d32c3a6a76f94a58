#!/usr/bin/env python3
"""
Notification endpoints - in-app feed, read state, preferences and device tokens.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from core.config_loader import get_config
from ..dependencies import get_current_user_id, get_notification_service
from ..services.notification_service import NotificationAPIService
from ..models.requests import (
    DeviceTokenRegister,
    DeviceTokenRemove,
    PreferencesUpdate,
    DebugNotificationRequest,
)
from ..models.responses import (
    DeviceTokenRemovedResponse,
    MarkAllReadResponse,
    NotificationListResponse,
    NotificationResponse,
    PreferencesResponse,
    DebugNotificationResponse,
    UnreadCountResponse,
)

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def add_rate_limit_handlers(app):
    """Add rate limit exception handlers to the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": str(exc), "type": "RateLimitExceeded"}
    )


def _test_rate_limit() -> str:
    return get_config().web.test_rate_limit


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    """
    In-app notifications for the current user, newest first.
    """
    result = await service.list_notifications(user_id, page, limit)
    return NotificationListResponse(success=True, **result)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    return UnreadCountResponse(success=True, unread_count=await service.unread_count(user_id))


@router.put("/mark-all-read", response_model=MarkAllReadResponse)
async def mark_all_read(
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    return MarkAllReadResponse(success=True, updated=await service.mark_all_read(user_id))


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    """
    Mark one notification read. Repeated calls keep the first read_at.
    """
    return NotificationResponse(success=True, notification=await service.mark_read(notification_id, user_id))


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    """
    Current preferences; defaults are created on first access.
    """
    return PreferencesResponse(success=True, **await service.get_preferences(user_id))


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    update: PreferencesUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    """
    Partial update: only the channels, fields and types present are changed.
    """
    return PreferencesResponse(success=True, **await service.update_preferences(user_id, update))


@router.post("/device-token", response_model=PreferencesResponse)
async def register_device_token(
    body: DeviceTokenRegister,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    result = await service.register_device_token(user_id, body.token, body.platform.value)
    return PreferencesResponse(success=True, **result)


@router.delete("/device-token", response_model=DeviceTokenRemovedResponse)
async def remove_device_token(
    body: DeviceTokenRemove,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    await service.remove_device_token(user_id, body.token)
    return DeviceTokenRemovedResponse(success=True, message="Device token removed")


@router.post("/test", response_model=DebugNotificationResponse)
@limiter.limit(_test_rate_limit)
async def send_test_notification(
    request: Request,
    body: DebugNotificationRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: NotificationAPIService = Depends(get_notification_service)
):
    """
    Dispatch a notification to the current user synchronously and report
    which channels delivered.
    """
    result = await service.send_test(user_id, body)
    return DebugNotificationResponse(success=True, **result)
