"""Business logic services."""

from .notification_service import NotificationAPIService
