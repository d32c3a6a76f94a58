import uuid

from sqlalchemy import Column, Text, String, Numeric, ForeignKey, Index, Uuid

from .base import Base, UTCDateTime, utcnow


class Goal(Base):
    """Savings goal with a target amount and date."""
    __tablename__ = 'goals'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    title = Column(Text, nullable=False)
    target_amount = Column(Numeric(14, 2), nullable=False)
    current_amount = Column(Numeric(14, 2), nullable=False, default=0)
    target_date = Column(UTCDateTime, nullable=False)
    status = Column(String(16), nullable=False, default='active')  # active, completed, paused, cancelled
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_goals_status_target_date', 'status', 'target_date'),
        Index('idx_goals_user', 'user_id'),
    )


class SavingsEntry(Base):
    """One savings contribution."""
    __tablename__ = 'savings'

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_savings_user', 'user_id'),
    )
