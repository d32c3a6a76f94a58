import logging
import uuid
from typing import List, Optional

from sqlalchemy import select

from database.models import User
from database.repositories.base import BaseRepository
from notification.interfaces import UserStore

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository, UserStore):
    async def get(self, user_id: uuid.UUID) -> Optional[User]:
        async with self.session() as session:
            return await session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        async with self.session() as session:
            stmt = select(User).where(User.email == email)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_all(self) -> List[User]:
        async with self.session() as session:
            stmt = select(User).where(User.is_active.is_(True)).order_by(User.created_at)
            return list((await session.execute(stmt)).scalars().all())

    async def create(self, email: str, name: Optional[str] = None) -> User:
        user = User(id=uuid.uuid4(), email=email, name=name, is_active=True)
        await self.add(user)
        logger.info(f"Created user {user.id}")
        return user
