from database.repositories.base import BaseRepository
from database.repositories.notification import NotificationRepository
from database.repositories.preference import PreferenceRepository
from database.repositories.user import UserRepository
from database.repositories.goal import GoalRepository
from database.repositories.savings import SavingsRepository

__all__ = [
    'BaseRepository',
    'NotificationRepository',
    'PreferenceRepository',
    'UserRepository',
    'GoalRepository',
    'SavingsRepository',
]
