#!/usr/bin/env python3
"""
FastAPI dependencies for dependency injection.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from core.app_context import AppContext
from .services.notification_service import NotificationAPIService


def get_app_context(request: Request) -> AppContext:
    """The AppContext built by the application lifespan."""
    ctx = getattr(request.app.state, 'ctx', None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Service not initialised")
    return ctx


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> uuid.UUID:
    """
    Authenticated user id, set by the gateway in the X-User-Id header.

    Token verification happens upstream; this service trusts the header.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-User-Id must be a UUID")


def get_notification_service(ctx: AppContext = Depends(get_app_context)) -> NotificationAPIService:
    return NotificationAPIService(
        records=ctx.records,
        preferences=ctx.preferences,
        dispatcher=ctx.dispatcher,
    )
