"""
Abstractions the notification core depends on.

The dispatcher and scheduler only see these interfaces; SQLAlchemy
implementations live in database.repositories and tests substitute in-memory
fakes. Transports are the seam to external mail and push providers.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from database.models import Notification, NotificationPreference, User, Goal


class NotificationRecordStore(ABC):
    """Durable notification records."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Persist a new record and return it."""

    @abstractmethod
    async def get(self, notification_id: uuid.UUID) -> Optional[Notification]:
        pass

    @abstractmethod
    async def mark_channel_sent(self, notification_id: uuid.UUID, channel: str, sent_at: datetime) -> bool:
        """
        Atomically flag one channel as sent.

        Returns False when the flag was already set (nothing changed).
        """

    @abstractmethod
    async def claim(self, notification_id: uuid.UUID, now: datetime, lease_until: datetime) -> bool:
        """
        Take the delivery lease on a pending record.

        Succeeds only when no unexpired lease is held; returns False otherwise.
        """

    @abstractmethod
    async def release(self, notification_id: uuid.UUID) -> None:
        pass

    @abstractmethod
    async def set_status(self, notification_id: uuid.UUID, status: str, error: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def increment_attempts(self, notification_id: uuid.UUID) -> int:
        """Bump the sweep attempt counter and return the new value."""

    @abstractmethod
    async def find_due(self, now: datetime, limit: int) -> List[Notification]:
        """Pending, unleased records with scheduled_for <= now, oldest first."""

    @abstractmethod
    async def list_for_user(
        self,
        user_id: uuid.UUID,
        offset: int,
        limit: int
    ) -> Tuple[List[Notification], int]:
        """In-app delivered records, newest first, plus the total count."""

    @abstractmethod
    async def unread_count(self, user_id: uuid.UUID) -> int:
        pass

    @abstractmethod
    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID, read_at: datetime) -> Optional[Notification]:
        """Flip in_app_read false->true once. None when the record does not exist."""

    @abstractmethod
    async def mark_all_read(self, user_id: uuid.UUID, read_at: datetime) -> int:
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        pass


class PreferenceStore(ABC):
    """Per-user notification preferences and device tokens."""

    @abstractmethod
    async def get(self, user_id: uuid.UUID) -> Optional[NotificationPreference]:
        pass

    @abstractmethod
    async def create_default(self, user_id: uuid.UUID) -> NotificationPreference:
        """Provision the default preference record (idempotent)."""

    @abstractmethod
    async def update(self, user_id: uuid.UUID, changes: Dict[str, Any]) -> NotificationPreference:
        """
        Apply a partial update.

        `changes` may hold "channels" ({channel: {enabled, frequency, types}})
        and "quiet_hours" ({enabled, start, end, timezone}).
        """

    @abstractmethod
    async def add_device_token(self, user_id: uuid.UUID, token: str, platform: str) -> NotificationPreference:
        pass

    @abstractmethod
    async def remove_device_token(self, user_id: uuid.UUID, token: str) -> bool:
        pass

    @abstractmethod
    async def deactivate_device_token(self, user_id: uuid.UUID, token: str, at: datetime) -> bool:
        """Field-level is_active=false for one token; safe under concurrent sends."""


class UserStore(ABC):

    @abstractmethod
    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def list_all(self) -> List[User]:
        """Active users, for batch cadence jobs."""


class GoalStore(ABC):

    @abstractmethod
    async def find_active_nearing_deadline(self, threshold_days: int, now: datetime) -> List[Goal]:
        """Active, not yet funded goals whose target date is within threshold_days."""


class SavingsStore(ABC):

    @abstractmethod
    async def total_for_user(self, user_id: uuid.UUID) -> Any:
        """Cumulative savings for the user (Decimal from SQL stores)."""


class MailTransport(ABC):
    """Hands a rendered email to a provider."""

    name = "mail"

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        """Deliver one message. Raises on transport failure."""

    async def aclose(self) -> None:
        return None


class PushTransport(ABC):
    """Talks to a push provider."""

    name = "push"

    @abstractmethod
    async def send(self, messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Send one batch; returns one ticket per message, in order."""

    @abstractmethod
    async def get_receipts(self, receipt_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        """Look up delivery receipts by ticket id."""

    async def aclose(self) -> None:
        return None
