import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from core.config_loader import AppConfig
from database.database import create_engine_for, create_session_factory
from database.repositories import (
    GoalRepository,
    NotificationRepository,
    PreferenceRepository,
    SavingsRepository,
    UserRepository,
)
from notification.channels import ChannelSender, build_channel_senders
from notification.dispatcher import NotificationDispatcher
from notification.events import NotificationEvents
from notification.scheduler import NotificationScheduler

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    Built once per process (API server or scheduler daemon). Stores open
    their own short sessions from `session_factory`.
    """
    config: AppConfig
    engine: AsyncEngine
    session_factory: async_sessionmaker
    records: NotificationRepository
    preferences: PreferenceRepository
    users: UserRepository
    goals: GoalRepository
    savings: SavingsRepository
    senders: Dict[str, ChannelSender]
    dispatcher: NotificationDispatcher
    scheduler: NotificationScheduler
    events: NotificationEvents

    @classmethod
    def build(cls, config: AppConfig, engine: Optional[AsyncEngine] = None) -> "AppContext":
        """Build an AppContext from config.

        Raises ConfigurationError when a channel transport has no credentials.
        """
        engine = engine or create_engine_for(config.database.url, echo=config.database.echo)
        session_factory = create_session_factory(engine)

        records = NotificationRepository(session_factory)
        preferences = PreferenceRepository(session_factory)
        users = UserRepository(session_factory)
        goals = GoalRepository(session_factory)
        savings = SavingsRepository(session_factory)

        notifications = config.notifications
        senders = build_channel_senders(notifications, users, preferences)

        dispatcher = NotificationDispatcher(
            records,
            preferences,
            senders,
            retention_days=notifications.retention_days,
            max_delivery_attempts=notifications.max_delivery_attempts,
            lease_seconds=notifications.delivery_lease_seconds,
        )

        scheduler_config = notifications.scheduler
        scheduler = NotificationScheduler(
            dispatcher,
            records,
            users,
            goals,
            schedules=scheduler_config.schedules,
            sweep_batch_size=scheduler_config.sweep_batch_size,
            concurrency=scheduler_config.concurrency,
            goal_reminder_days=scheduler_config.goal_reminder_days,
            timezone_name=scheduler_config.timezone,
        )

        events = NotificationEvents(dispatcher, savings, milestone_step=notifications.milestone_step)

        return cls(
            config=config,
            engine=engine,
            session_factory=session_factory,
            records=records,
            preferences=preferences,
            users=users,
            goals=goals,
            savings=savings,
            senders=senders,
            dispatcher=dispatcher,
            scheduler=scheduler,
            events=events,
        )

    async def aclose(self) -> None:
        self.scheduler.shutdown()
        for channel, sender in self.senders.items():
            try:
                await sender.aclose()
            except Exception as e:
                logger.warning(f"Error closing {channel} sender: {e}")
        await self.engine.dispose()
