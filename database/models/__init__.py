from .base import Base, JSONType, UTCDateTime, utcnow
from .notification import Notification, CHANNEL_STATE_COLUMNS
from .preference import NotificationPreference, DeviceToken
from .user import User
from .finance import Goal, SavingsEntry

__all__ = [
    'Base',
    'JSONType',
    'UTCDateTime',
    'utcnow',
    'Notification',
    'CHANNEL_STATE_COLUMNS',
    'NotificationPreference',
    'DeviceToken',
    'User',
    'Goal',
    'SavingsEntry',
]
