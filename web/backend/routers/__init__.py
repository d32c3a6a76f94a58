"""API route handlers."""

from .notifications import router as notifications_router
