"""
Notification domain types.

Enums shared by the dispatcher, the scheduler, the stores and the API, plus the
transient NotificationRequest that seeds a persisted notification record and the
DeliveryOutcome every channel sender reports.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Channel(str, Enum):
    """Delivery channels."""
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


ALL_CHANNELS = (Channel.EMAIL, Channel.PUSH, Channel.IN_APP)


class NotificationType(str, Enum):
    """Kinds of notification the finance tracker emits."""
    GOAL_REMINDER = "goal_reminder"
    GOAL_ACHIEVED = "goal_achieved"
    GOAL_MILESTONE = "goal_milestone"
    INCOME_ADDED = "income_added"
    EXPENSE_ALERT = "expense_alert"
    SAVINGS_MILESTONE = "savings_milestone"
    BILL_REMINDER = "bill_reminder"
    SECURITY_ALERT = "security_alert"
    ACCOUNT_UPDATE = "account_update"
    MARKETING = "marketing"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    """Priority levels for notifications."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(str, Enum):
    """Lifecycle states of a notification record."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeliveryFrequency(str, Enum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"


class DevicePlatform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


@dataclass
class NotificationRequest:
    """
    A request to notify one user.

    Constructed by callers (domain event triggers, cadence jobs, the API) and
    handed to NotificationDispatcher.send(). Never persisted itself.
    """
    user_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)
    channels: List[Channel] = field(default_factory=lambda: list(ALL_CHANNELS))
    priority: NotificationPriority = NotificationPriority.MEDIUM
    scheduled_for: Optional[datetime] = None  # None means "now"
    source: Optional[str] = None  # system, user_action, scheduled, test
    category: Optional[str] = None

    def __post_init__(self):
        self.type = NotificationType(self.type)
        self.priority = NotificationPriority(self.priority)
        # Keep caller order, drop duplicates
        seen = []
        for channel in self.channels:
            channel = Channel(channel)
            if channel not in seen:
                seen.append(channel)
        self.channels = seen
        if not self.channels:
            raise ValueError("A notification request needs at least one channel")


@dataclass
class DeliveryOutcome:
    """Per-recipient result of one channel delivery attempt."""
    channel: Channel
    results: Dict[str, bool] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    def record(self, recipient: str, success: bool, error: Optional[str] = None) -> None:
        self.results[recipient] = success
        if error:
            self.errors[recipient] = error
        else:
            self.errors.pop(recipient, None)

    @property
    def delivered(self) -> bool:
        """True when at least one recipient got it, or there was nobody to reach."""
        if not self.results:
            return True
        return any(self.results.values())

    @property
    def failed_recipients(self) -> List[str]:
        return [recipient for recipient, ok in self.results.items() if not ok]
