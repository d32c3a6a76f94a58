import uuid

from sqlalchemy import Column, Text, String, Boolean, Integer, Index, Uuid

from .base import Base, JSONType, UTCDateTime, utcnow

# channel value -> (sent flag column, sent timestamp column)
CHANNEL_STATE_COLUMNS = {
    'email': ('email_sent', 'email_sent_at'),
    'push': ('push_sent', 'push_sent_at'),
    'in_app': ('in_app_sent', 'in_app_sent_at'),
}


class Notification(Base):
    """
    Durable record of one notification and its per-channel delivery state.

    Channel state lives in flat columns so each channel completion is a single
    field-level UPDATE. The record doubles as the in-app notification itself.
    """
    __tablename__ = 'notifications'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)

    # Content
    type = Column(String(32), nullable=False)  # goal_reminder, savings_milestone, ...
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)

    # Channels the caller asked for, e.g. ["in_app", "push"]
    requested_channels = Column(JSONType, nullable=False, default=list)

    # Per-channel state
    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(UTCDateTime)
    push_sent = Column(Boolean, nullable=False, default=False)
    push_sent_at = Column(UTCDateTime)
    in_app_sent = Column(Boolean, nullable=False, default=False)
    in_app_sent_at = Column(UTCDateTime)
    in_app_read = Column(Boolean, nullable=False, default=False)
    in_app_read_at = Column(UTCDateTime)

    # Scheduling
    priority = Column(String(16), nullable=False, default='medium')
    scheduled_for = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False)
    status = Column(String(16), nullable=False, default='pending')  # pending, sent, failed, cancelled
    attempts = Column(Integer, nullable=False, default=0)  # sweep passes that left it incomplete
    # Delivery lease; a record is fanned out only by the holder until it expires
    processing_until = Column(UTCDateTime)
    last_error = Column(Text)

    # Metadata
    source = Column(String(32))  # system, user_action, scheduled, test
    category = Column(String(64))

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # In-app feed pagination
        Index('idx_notifications_user_created', 'user_id', 'created_at'),
        # Sweep query
        Index('idx_notifications_status_scheduled', 'status', 'scheduled_for'),
        Index('idx_notifications_scheduled_for', 'scheduled_for'),
        # Retention cleanup
        Index('idx_notifications_expires_at', 'expires_at'),
    )

    def is_channel_sent(self, channel: str) -> bool:
        sent_column, _ = CHANNEL_STATE_COLUMNS[str(getattr(channel, 'value', channel))]
        return bool(getattr(self, sent_column))

    def set_channel_sent(self, channel: str, sent_at) -> None:
        """Mirror a stored channel completion on this in-memory instance."""
        sent_column, at_column = CHANNEL_STATE_COLUMNS[str(getattr(channel, 'value', channel))]
        setattr(self, sent_column, True)
        setattr(self, at_column, sent_at)

    def copy_channel_state(self, other: "Notification") -> None:
        """Take over channel completions stored on another copy of this record."""
        for channel, (sent_column, at_column) in CHANNEL_STATE_COLUMNS.items():
            if getattr(other, sent_column) and not getattr(self, sent_column):
                self.set_channel_sent(channel, getattr(other, at_column))

    def channel_state(self) -> dict:
        return {
            'email': {'sent': bool(self.email_sent), 'sent_at': self.email_sent_at},
            'push': {'sent': bool(self.push_sent), 'sent_at': self.push_sent_at},
            'in_app': {
                'sent': bool(self.in_app_sent),
                'sent_at': self.in_app_sent_at,
                'read': bool(self.in_app_read),
                'read_at': self.in_app_read_at,
            },
        }

    def __repr__(self) -> str:
        return f"<Notification {self.id} {self.type} user={self.user_id} status={self.status}>"
