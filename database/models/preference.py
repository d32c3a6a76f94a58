import uuid

from sqlalchemy import Column, String, Boolean, ForeignKey, UniqueConstraint, Index, Uuid
from sqlalchemy.orm import relationship

from .base import Base, JSONType, UTCDateTime, utcnow


class NotificationPreference(Base):
    """
    Per-user notification settings (one row per user).

    `channels` holds {"email"|"push"|"in_app": {"enabled", "frequency", "types"}}.
    Device tokens live in their own table so they can be toggled atomically.
    """
    __tablename__ = 'notification_preferences'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, unique=True)

    channels = Column(JSONType, nullable=False, default=dict)

    # Quiet hours
    quiet_hours_enabled = Column(Boolean, nullable=False, default=False)
    quiet_hours_start = Column(String(5), nullable=False, default='22:00')  # HH:MM
    quiet_hours_end = Column(String(5), nullable=False, default='08:00')
    quiet_hours_timezone = Column(String(64), nullable=False, default='UTC')

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # selectin so tokens are loaded eagerly under AsyncSession
    device_tokens = relationship(
        "DeviceToken",
        back_populates="preference",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DeviceToken.last_used",
    )

    __table_args__ = (
        Index('idx_notification_preferences_user', 'user_id'),
    )


class DeviceToken(Base):
    """Push token registered by one of the user's devices."""
    __tablename__ = 'device_tokens'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid,
        ForeignKey('notification_preferences.user_id', ondelete='CASCADE'),
        nullable=False,
    )
    token = Column(String(255), nullable=False)
    platform = Column(String(16), nullable=False)  # ios, android, web
    is_active = Column(Boolean, nullable=False, default=True)
    last_used = Column(UTCDateTime, nullable=False, default=utcnow)

    preference = relationship("NotificationPreference", back_populates="device_tokens")

    __table_args__ = (
        UniqueConstraint('user_id', 'token', name='uq_device_token_user_token'),
        Index('idx_device_tokens_token', 'token'),
    )
