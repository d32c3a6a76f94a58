#!/usr/bin/env python3
"""
User, goal and savings repositories (read side used by the cadence jobs and
event triggers).
"""

import unittest
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from database.models import Goal, SavingsEntry
from database.repositories import GoalRepository, SavingsRepository, UserRepository
from tests import SKIP_DB_TESTS, RepositoryTestCase
from tests.mocks.notification_mocks import utc


@pytest.mark.db
@unittest.skipIf(SKIP_DB_TESTS, "SKIP_DB_TESTS is set")
class TestFinanceRepositories(RepositoryTestCase):

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.users = UserRepository(self.session_factory)
        self.goals = GoalRepository(self.session_factory)
        self.savings = SavingsRepository(self.session_factory)

    async def test_users(self):
        alice = await self.users.create('alice@example.com', 'Alice')
        bob = await self.users.create('bob@example.com')

        self.assertEqual((await self.users.get(alice.id)).name, 'Alice')
        self.assertEqual((await self.users.get_by_email('bob@example.com')).id, bob.id)
        self.assertEqual({u.id for u in await self.users.list_all()}, {alice.id, bob.id})

    async def test_inactive_users_are_not_listed(self):
        alice = await self.users.create('alice@example.com', 'Alice')
        alice.is_active = False
        async with self.users.session() as session:
            await session.merge(alice)

        self.assertEqual(await self.users.list_all(), [])

    async def test_goals_nearing_deadline(self):
        user = await self.users.create('alice@example.com', 'Alice')
        now = utc(2026, 5, 1)

        def goal(title, days, current=Decimal('100'), status='active'):
            return Goal(
                id=uuid.uuid4(), user_id=user.id, title=title,
                target_amount=Decimal('1000'), current_amount=current,
                target_date=now + timedelta(days=days), status=status, created_at=utc(2026, 1, 1),
            )

        soon = await self.goals.add(goal('soon', 10))
        await self.goals.add(goal('far', 60))
        await self.goals.add(goal('overdue', -1))
        await self.goals.add(goal('funded', 5, current=Decimal('1000')))
        await self.goals.add(goal('paused', 5, status='paused'))

        found = await self.goals.find_active_nearing_deadline(30, now)

        self.assertEqual([g.id for g in found], [soon.id])

    async def test_savings_total(self):
        user_id = (await self.users.create('alice@example.com')).id
        other_id = (await self.users.create('bob@example.com')).id
        self.assertEqual(await self.savings.total_for_user(user_id), Decimal('0'))

        for owner, amount in ((user_id, '999.50'), (user_id, '1.5'), (other_id, '5000')):
            await self.savings.add(SavingsEntry(id=uuid.uuid4(), user_id=owner, amount=Decimal(amount)))

        self.assertEqual(await self.savings.total_for_user(user_id), Decimal('1001'))


if __name__ == '__main__':
    unittest.main()
