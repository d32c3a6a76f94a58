"""
Notification Module

Durable multi-channel notifications for the finance tracker: records are
created from requests, checked against per-user channel preferences and quiet
hours, fanned out over email, push and in-app, and re-driven by a
single-process scheduler.

Usage:
    from notification import NotificationDispatcher, NotificationRequest, NotificationType

    record = await dispatcher.send(NotificationRequest(
        user_id=user.id,
        type=NotificationType.GOAL_ACHIEVED,
        title='Goal Achieved!',
        message='You reached your emergency fund goal.',
    ))
"""

from notification.models import (
    ALL_CHANNELS,
    Channel,
    DeliveryFrequency,
    DeliveryOutcome,
    DevicePlatform,
    NotificationPriority,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
)

from notification.exceptions import (
    NotificationError,
    ConfigurationError,
    ChannelDeliveryError,
    SweepRecordError,
    CadenceJobUserError,
)

from notification.channels import (
    ChannelSender,
    EmailSender,
    PushSender,
    InAppSender,
    build_channel_senders,
)

from notification.dispatcher import NotificationDispatcher, DeliveryReport
from notification.scheduler import NotificationScheduler, CadenceJob, JobSummary
from notification.events import NotificationEvents

__all__ = [
    # Models
    'ALL_CHANNELS',
    'Channel',
    'DeliveryFrequency',
    'DeliveryOutcome',
    'DevicePlatform',
    'NotificationPriority',
    'NotificationRequest',
    'NotificationStatus',
    'NotificationType',
    # Errors
    'NotificationError',
    'ConfigurationError',
    'ChannelDeliveryError',
    'SweepRecordError',
    'CadenceJobUserError',
    # Channels
    'ChannelSender',
    'EmailSender',
    'PushSender',
    'InAppSender',
    'build_channel_senders',
    # Dispatch and scheduling
    'NotificationDispatcher',
    'DeliveryReport',
    'NotificationScheduler',
    'CadenceJob',
    'JobSummary',
    'NotificationEvents',
]
