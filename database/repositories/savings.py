import uuid
from decimal import Decimal

from sqlalchemy import func, select

from database.models import SavingsEntry
from database.repositories.base import BaseRepository
from notification.interfaces import SavingsStore


class SavingsRepository(BaseRepository, SavingsStore):
    async def total_for_user(self, user_id: uuid.UUID) -> Decimal:
        stmt = select(func.coalesce(func.sum(SavingsEntry.amount), 0)).where(SavingsEntry.user_id == user_id)
        async with self.session() as session:
            total = (await session.execute(stmt)).scalar_one()
        return Decimal(str(total))
