"""
Notification error taxonomy.

Every error is isolated to the smallest unit it concerns (one channel, one
record, one user) and carries enough context to triage from the logs.
"""

from typing import Any, Optional


class NotificationError(Exception):
    """Base class for notification core errors."""
    pass


class ConfigurationError(NotificationError):
    """
    Raised when a precondition of the notification core is missing.

    Covers a user without a provisioned preference record and a channel
    transport without credentials. Surfaced to the caller immediately.
    """
    pass


class ChannelDeliveryError(NotificationError):
    """A single channel's transport call failed."""

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        notification_id: Optional[Any] = None,
        user_id: Optional[Any] = None,
    ):
        super().__init__(message)
        self.channel = channel
        self.notification_id = notification_id
        self.user_id = user_id

    def __str__(self) -> str:
        context = []
        if self.channel:
            context.append(f"channel={self.channel}")
        if self.notification_id:
            context.append(f"notification={self.notification_id}")
        if self.user_id:
            context.append(f"user={self.user_id}")
        base = super().__str__()
        return f"{base} ({', '.join(context)})" if context else base


class SweepRecordError(NotificationError):
    """Unhandled failure while re-driving one record during a sweep pass."""

    def __init__(self, notification_id: Any, cause: BaseException):
        super().__init__(f"Sweep failed for notification {notification_id}: {cause}")
        self.notification_id = notification_id
        self.cause = cause


class CadenceJobUserError(NotificationError):
    """Failure processing one user inside a batch cadence job."""

    def __init__(self, job_name: str, user_id: Any, cause: BaseException):
        super().__init__(f"Cadence job '{job_name}' failed for user {user_id}: {cause}")
        self.job_name = job_name
        self.user_id = user_id
        self.cause = cause
