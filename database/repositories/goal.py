from datetime import datetime, timedelta
from typing import List

from sqlalchemy import select

from database.models import Goal
from database.repositories.base import BaseRepository
from notification.interfaces import GoalStore


class GoalRepository(BaseRepository, GoalStore):
    async def find_active_nearing_deadline(self, threshold_days: int, now: datetime) -> List[Goal]:
        stmt = (
            select(Goal)
            .where(
                Goal.status == 'active',
                Goal.target_date > now,
                Goal.target_date <= now + timedelta(days=threshold_days),
                Goal.current_amount < Goal.target_amount,
            )
            .order_by(Goal.user_id, Goal.target_date)
        )
        async with self.session() as session:
            return list((await session.execute(stmt)).scalars().all())
