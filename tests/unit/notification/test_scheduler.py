#!/usr/bin/env python3
"""
Tests for NotificationScheduler.

Tests cover:
1. The cadence table, overrides and cron semantics
2. Sweep: failure isolation, fresh preference filtering, the retry cap
   and no second delivery while another pass holds the record
3. Batch cadence jobs continuing past a failing user
4. Goal pacing and retention purge

Usage:
    python -m pytest tests/unit/notification/test_scheduler.py -v
"""

import asyncio
import unittest
import uuid
from datetime import timedelta
from decimal import Decimal

from apscheduler.triggers.cron import CronTrigger

from database.models import Goal
from notification.dispatcher import NotificationDispatcher
from notification.exceptions import ChannelDeliveryError
from notification.models import Channel, NotificationRequest, NotificationType
from notification.scheduler import DEFAULT_SCHEDULES, NotificationScheduler, goal_needs_attention
from tests.mocks.notification_mocks import (
    InMemoryGoalStore,
    InMemoryNotificationStore,
    InMemoryPreferenceStore,
    InMemoryUserStore,
    MutableClock,
    RecordingSender,
    make_notification,
    make_preferences,
    make_user,
    recording_senders,
    utc,
)


def make_goal(user_id, title, current, target=1000, created_at=None, target_date=None, status='active') -> Goal:
    return Goal(
        id=uuid.uuid4(),
        user_id=user_id,
        title=title,
        target_amount=Decimal(target),
        current_amount=Decimal(current),
        target_date=target_date or utc(2026, 5, 20),
        status=status,
        created_at=created_at or utc(2026, 1, 1),
    )


class BlockingSender(RecordingSender):
    """Records the call, then waits until the test releases it."""

    def __init__(self, channel: str):
        super().__init__(channel)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def deliver(self, notification, recipients):
        self.entered.set()
        await self.release.wait()
        return await super().deliver(notification, recipients)


class TestCadenceTable(unittest.TestCase):

    def make_scheduler(self, **kwargs) -> NotificationScheduler:
        return NotificationScheduler(None, InMemoryNotificationStore(), InMemoryUserStore(), InMemoryGoalStore(), **kwargs)

    def test_default_jobs(self):
        jobs = self.make_scheduler().jobs()

        self.assertEqual([job.name for job in jobs], list(DEFAULT_SCHEDULES))
        self.assertEqual(jobs[0].schedule, '* * * * *')
        self.assertTrue(all(job.description for job in jobs))

    def test_schedule_override(self):
        scheduler = self.make_scheduler(schedules={'process-scheduled': '*/5 * * * *'})

        self.assertEqual(scheduler.jobs()[0].schedule, '*/5 * * * *')
        self.assertEqual(scheduler.jobs()[1].schedule, '0 9 * * *')

    def test_unknown_override_rejected(self):
        with self.assertRaises(ValueError):
            self.make_scheduler(schedules={'daily-digest': '0 7 * * *'})

    def test_weekly_summary_fires_on_sunday(self):
        trigger = CronTrigger.from_crontab(DEFAULT_SCHEDULES['weekly-summary'], timezone='UTC')

        fire = trigger.get_next_fire_time(None, utc(2026, 10, 14, 12, 0))

        self.assertEqual(fire, utc(2026, 10, 18, 10, 0))
        self.assertEqual(fire.weekday(), 6)

    def test_monthly_report_fires_on_the_first(self):
        trigger = CronTrigger.from_crontab(DEFAULT_SCHEDULES['monthly-report'], timezone='UTC')

        self.assertEqual(trigger.get_next_fire_time(None, utc(2026, 10, 14, 12, 0)), utc(2026, 11, 1, 8, 0))


class TestSchedulerLifecycle(unittest.IsolatedAsyncioTestCase):

    async def test_start_registers_every_job_once(self):
        scheduler = NotificationScheduler(None, InMemoryNotificationStore(), InMemoryUserStore(), InMemoryGoalStore())

        scheduler.start()
        try:
            self.assertTrue(scheduler.running)
            registered = scheduler._scheduler.get_jobs()
            self.assertEqual(sorted(job.id for job in registered), sorted(DEFAULT_SCHEDULES))
            self.assertTrue(all(job.max_instances == 1 for job in registered))
        finally:
            scheduler.shutdown()
        self.assertFalse(scheduler.running)

    async def test_run_unknown_job(self):
        scheduler = NotificationScheduler(None, InMemoryNotificationStore(), InMemoryUserStore(), InMemoryGoalStore())

        with self.assertRaises(KeyError):
            await scheduler.run_job('nope')


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.clock = MutableClock(utc(2026, 5, 1, 12, 0))
        self.alice = make_user('alice@example.com', 'Alice')
        self.bob = make_user('bob@example.com', 'Bob')
        self.records = InMemoryNotificationStore()
        self.preferences = InMemoryPreferenceStore(make_preferences(self.alice.id))
        self.users = InMemoryUserStore(self.alice, self.bob)
        self.goals = InMemoryGoalStore()
        self.senders = recording_senders()

    def make_scheduler(self, max_delivery_attempts=20) -> NotificationScheduler:
        dispatcher = NotificationDispatcher(
            self.records, self.preferences, self.senders,
            clock=self.clock, max_delivery_attempts=max_delivery_attempts,
        )
        return NotificationScheduler(dispatcher, self.records, self.users, self.goals, clock=self.clock)

    def pending(self, user_id, channels=('email', 'in_app'), scheduled_for=None):
        record = make_notification(
            user_id,
            created_at=utc(2026, 5, 1, 11, 0),
            in_app_sent=False,
            status='pending',
            requested_channels=channels,
            scheduled_for=scheduled_for,
        )
        return self.records.add(record)


class TestSweep(SchedulerTestCase):

    async def test_one_bad_record_does_not_stop_the_others(self):
        good = self.pending(self.alice.id)
        # Bob never got preferences provisioned
        bad = self.pending(self.bob.id)

        summary = await self.make_scheduler().sweep()

        self.assertEqual((summary.processed, summary.sent, summary.failed), (2, 1, 1))
        self.assertEqual(good.status, 'sent')
        self.assertEqual(bad.status, 'failed')
        self.assertIn('preferences', bad.last_error)

    async def test_future_records_are_left_alone(self):
        later = self.pending(self.alice.id, scheduled_for=self.clock.now + timedelta(hours=1))

        summary = await self.make_scheduler().sweep()

        self.assertEqual(summary.processed, 0)
        self.assertEqual(later.status, 'pending')
        self.assertEqual(self.senders['in_app'].calls, [])

    async def test_channel_disabled_since_creation_is_skipped(self):
        record = self.pending(self.alice.id)
        self.preferences.put(make_preferences(self.alice.id, channels={'email': {'enabled': False}}))

        await self.make_scheduler().sweep()

        self.assertEqual(self.senders['email'].calls, [])
        self.assertTrue(record.in_app_sent)
        self.assertEqual(record.status, 'sent')

    async def test_retry_cap_marks_record_failed(self):
        self.senders = recording_senders(email=ChannelDeliveryError('smtp down', channel='email'))
        record = self.pending(self.alice.id)
        scheduler = self.make_scheduler(max_delivery_attempts=2)

        first = await scheduler.sweep()
        self.assertEqual(first.skipped, 1)
        self.assertEqual(record.status, 'pending')
        self.assertTrue(record.in_app_sent)

        second = await scheduler.sweep()
        self.assertEqual(second.failed, 1)
        self.assertEqual(record.status, 'failed')
        self.assertEqual(len(self.senders['in_app'].calls), 1)

        third = await scheduler.sweep()
        self.assertEqual(third.processed, 0)

    async def test_sweep_during_a_slow_send_does_not_resend(self):
        self.senders['email'] = BlockingSender('email')
        scheduler = self.make_scheduler()
        request = NotificationRequest(
            user_id=self.alice.id,
            type=NotificationType.BILL_REMINDER,
            title='Bills due',
            message='Rent is due tomorrow.',
            channels=[Channel.EMAIL],
        )

        sending = asyncio.create_task(scheduler.dispatcher.send(request))
        await self.senders['email'].entered.wait()

        summary = await scheduler.sweep()
        self.senders['email'].release.set()
        record = await sending

        self.assertEqual(summary.processed, 0)
        self.assertEqual(len(self.senders['email'].calls), 1)
        self.assertEqual(record.status, 'sent')
        self.assertIsNone(record.processing_until)

    async def test_sweep_picks_up_a_record_once_its_lease_expires(self):
        record = self.pending(self.alice.id)
        record.processing_until = self.clock.now + timedelta(minutes=5)
        scheduler = self.make_scheduler()

        self.assertEqual((await scheduler.sweep()).processed, 0)

        self.clock.advance(minutes=5)
        summary = await scheduler.sweep()

        self.assertEqual(summary.sent, 1)
        self.assertEqual(len(self.senders['email'].calls), 1)

    async def test_sweep_through_run_job(self):
        self.pending(self.alice.id)

        summary = await self.make_scheduler().run_job('process-scheduled')

        self.assertEqual(summary.job, 'process-scheduled')
        self.assertEqual(summary.sent, 1)


class TestCadenceJobs(SchedulerTestCase):

    async def test_weekly_summary_continues_past_failing_user(self):
        summary = await self.make_scheduler().send_weekly_summary()

        self.assertEqual((summary.processed, summary.sent, summary.failed), (2, 1, 1))
        records = list(self.records.records.values())
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].user_id, self.alice.id)
        self.assertEqual(records[0].requested_channels, ['in_app', 'email'])
        self.assertEqual(records[0].category, 'weekly_summary')
        self.assertEqual(records[0].priority, 'low')

    async def test_inactive_users_are_not_notified(self):
        self.bob.is_active = False

        summary = await self.make_scheduler().send_monthly_report()

        self.assertEqual(summary.processed, 1)
        self.assertEqual(summary.sent, 1)

    async def test_bill_reminders(self):
        self.preferences.put(make_preferences(self.bob.id))

        summary = await self.make_scheduler().send_bill_reminders()

        self.assertEqual(summary.sent, 2)
        types = {record.type for record in self.records.records.values()}
        self.assertEqual(types, {'bill_reminder'})

    async def test_goal_reminders_grouped_per_user(self):
        behind_1 = make_goal(self.alice.id, 'Emergency fund', current=100)
        behind_2 = make_goal(self.alice.id, 'Vacation', current=200)
        on_track = make_goal(self.alice.id, 'Laptop', current=950)
        far_away = make_goal(self.alice.id, 'House', current=0, target_date=utc(2027, 1, 1))
        self.goals = InMemoryGoalStore(behind_1, behind_2, on_track, far_away)

        summary = await self.make_scheduler().send_goal_reminders()

        self.assertEqual(summary.sent, 1)
        record = next(iter(self.records.records.values()))
        self.assertEqual(record.type, 'goal_reminder')
        self.assertEqual(record.requested_channels, ['in_app', 'push'])
        self.assertEqual(record.payload['goalIds'], [str(behind_1.id), str(behind_2.id)])
        self.assertIn('Emergency fund, Vacation', record.message)

    async def test_purge_expired(self):
        old = make_notification(self.alice.id, utc(2026, 3, 1))
        fresh = make_notification(self.alice.id, utc(2026, 4, 25))
        self.records.add(old)
        self.records.add(fresh)

        summary = await self.make_scheduler().purge_expired()

        self.assertEqual(summary.processed, 1)
        self.assertNotIn(old.id, self.records.records)
        self.assertIn(fresh.id, self.records.records)


class TestGoalPacing(unittest.TestCase):

    def setUp(self):
        self.user_id = uuid.uuid4()
        self.now = utc(2026, 5, 1)

    def test_behind_pace(self):
        self.assertTrue(goal_needs_attention(make_goal(self.user_id, 'g', current=100), self.now))

    def test_ahead_of_pace(self):
        self.assertFalse(goal_needs_attention(make_goal(self.user_id, 'g', current=950), self.now))

    def test_fully_funded(self):
        self.assertFalse(goal_needs_attention(make_goal(self.user_id, 'g', current=1000), self.now))

    def test_zero_target(self):
        self.assertFalse(goal_needs_attention(make_goal(self.user_id, 'g', current=0, target=0), self.now))

    def test_degenerate_lifetime(self):
        goal = make_goal(self.user_id, 'g', current=10, created_at=utc(2026, 5, 20), target_date=utc(2026, 5, 20))
        self.assertTrue(goal_needs_attention(goal, self.now))


if __name__ == '__main__':
    unittest.main()
