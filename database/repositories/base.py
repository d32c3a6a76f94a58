from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.database import session_scope


class BaseRepository:
    """
    Repositories hold a session factory, not a session.

    Each operation runs in its own short transaction so concurrent callers
    (parallel channel completions, sweep workers) never share a session.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def session(self) -> AbstractAsyncContextManager[AsyncSession]:
        return session_scope(self.session_factory)

    async def add(self, instance):
        async with self.session() as session:
            session.add(instance)
        return instance
