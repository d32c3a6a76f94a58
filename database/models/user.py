import uuid

from sqlalchemy import Column, Text, Boolean, Index, Uuid

from .base import Base, UTCDateTime, utcnow


class User(Base):
    """
    Finance tracker account.

    Only the fields the notification core reads: address, display name and
    whether the account still receives cadence notifications.
    """
    __tablename__ = 'users'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    name = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_users_email', 'email'),
    )
