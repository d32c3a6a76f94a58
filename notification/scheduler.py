#!/usr/bin/env python3
"""
Notification Scheduler

A declarative table of cadence jobs run on an APScheduler AsyncIOScheduler:

    process-scheduled   * * * * *      re-drive due pending records
    goal-reminders      0 9 * * *      goals nearing deadline and behind pace
    weekly-summary      0 10 * * sun   every user, in-app + email
    monthly-report      0 8 1 * *      every user, in-app + email
    bill-reminders      0 8 * * *      every user, in-app + push
    purge-expired       30 3 * * *     delete records past expires_at

Every handler can also be invoked directly (tests, `worker.py --run-once`).
Each job runs with max_instances=1 so a slow sweep never overlaps itself.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from notification.dispatcher import NotificationDispatcher
from notification.exceptions import CadenceJobUserError, SweepRecordError
from notification.interfaces import GoalStore, NotificationRecordStore, UserStore
from notification.models import (
    Channel,
    NotificationPriority,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULES = OrderedDict([
    ('process-scheduled', '* * * * *'),
    ('goal-reminders', '0 9 * * *'),
    # Day names: APScheduler numbers weekdays from Monday
    ('weekly-summary', '0 10 * * sun'),
    ('monthly-report', '0 8 1 * *'),
    ('bill-reminders', '0 8 * * *'),
    ('purge-expired', '30 3 * * *'),
])


@dataclass(frozen=True)
class CadenceJob:
    name: str
    schedule: str
    handler: Callable[[], Awaitable["JobSummary"]]
    description: str = ''


@dataclass
class JobSummary:
    """Counts reported by one job run. For batch jobs `sent` counts records created."""
    job: str
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def __str__(self) -> str:
        return (
            f"{self.job}: processed={self.processed} sent={self.sent} "
            f"failed={self.failed} skipped={self.skipped}"
        )


def goal_needs_attention(goal, now: datetime) -> bool:
    """
    A goal is behind pace when its funded fraction trails the elapsed
    fraction of its lifetime (created_at -> target_date).
    """
    target = float(goal.target_amount or 0)
    if target <= 0:
        return False
    funded = float(goal.current_amount or 0) / target
    if funded >= 1:
        return False

    lifetime = (goal.target_date - goal.created_at).total_seconds()
    if lifetime <= 0:
        return True
    elapsed = (now - goal.created_at).total_seconds() / lifetime
    return funded < min(max(elapsed, 0.0), 1.0)


class NotificationScheduler:
    """Runs the sweep and the batch cadence jobs."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        records: NotificationRecordStore,
        users: UserStore,
        goals: GoalStore,
        schedules: Optional[Dict[str, str]] = None,
        sweep_batch_size: int = 100,
        concurrency: int = 10,
        goal_reminder_days: int = 30,
        timezone_name: str = 'UTC',
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.dispatcher = dispatcher
        self.records = records
        self.users = users
        self.goals = goals
        self.sweep_batch_size = sweep_batch_size
        self.concurrency = max(1, concurrency)
        self.goal_reminder_days = goal_reminder_days
        self.timezone_name = timezone_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._scheduler: Optional[AsyncIOScheduler] = None

        self.schedules = OrderedDict(DEFAULT_SCHEDULES)
        for name, schedule in (schedules or {}).items():
            if name not in self.schedules:
                raise ValueError(f"Unknown cadence job '{name}'")
            self.schedules[name] = schedule

        handlers = {
            'process-scheduled': (self.sweep, 'Re-drive pending notifications that are due'),
            'goal-reminders': (self.send_goal_reminders, 'Remind users of goals that are behind pace'),
            'weekly-summary': (self.send_weekly_summary, 'Weekly financial summary'),
            'monthly-report': (self.send_monthly_report, 'Monthly progress report'),
            'bill-reminders': (self.send_bill_reminders, 'Upcoming bill reminder'),
            'purge-expired': (self.purge_expired, 'Delete notifications past their expiry'),
        }
        self._jobs = OrderedDict(
            (name, CadenceJob(name=name, schedule=schedule, handler=handlers[name][0], description=handlers[name][1]))
            for name, schedule in self.schedules.items()
        )

    def now(self) -> datetime:
        return self._clock()

    def jobs(self) -> List[CadenceJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register every cadence job and start the scheduler. Needs a running event loop."""
        if self.running:
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone_name)
        for job in self.jobs():
            self._scheduler.add_job(
                self.run_job,
                trigger=CronTrigger.from_crontab(job.schedule, timezone=self.timezone_name),
                args=[job.name],
                id=job.name,
                name=job.description or job.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )
            logger.info(f"Scheduled job: {job.name} ({job.schedule})")

        self._scheduler.start()
        logger.info("Notification scheduler started")

    def shutdown(self) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Notification scheduler stopped")

    async def run_job(self, name: str) -> JobSummary:
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown cadence job '{name}'")

        logger.info(f"Running job {name}...")
        try:
            summary = await job.handler()
        except Exception as e:
            logger.error(f"Job {name} aborted: {e}")
            raise
        logger.info(f"Job finished - {summary}")
        return summary

    # =========================================================================
    # SWEEP
    # =========================================================================

    async def sweep(self) -> JobSummary:
        """
        Re-drive pending records whose scheduled_for has passed.

        A failure on one record marks only that record failed.
        """
        summary = JobSummary(job='process-scheduled')
        due = await self.records.find_due(self.now(), self.sweep_batch_size)
        if not due:
            return summary

        logger.info(f"Processing {len(due)} scheduled notifications")
        semaphore = asyncio.Semaphore(self.concurrency)

        async def process(record) -> str:
            async with semaphore:
                try:
                    report = await self.dispatcher.redeliver(record)
                except Exception as e:
                    error = SweepRecordError(record.id, e)
                    logger.error(str(error))
                    await self._mark_failed(record, str(e))
                    return NotificationStatus.FAILED.value
                if report.complete:
                    return NotificationStatus.SENT.value
                return record.status

        for status in await asyncio.gather(*(process(record) for record in due)):
            summary.processed += 1
            if status == NotificationStatus.SENT.value:
                summary.sent += 1
            elif status == NotificationStatus.FAILED.value:
                summary.failed += 1
            else:
                summary.skipped += 1
        return summary

    async def _mark_failed(self, record, error: str) -> None:
        try:
            await self.records.set_status(record.id, NotificationStatus.FAILED.value, error=error)
            record.status = NotificationStatus.FAILED.value
        except Exception as e:
            logger.error(f"Could not mark notification {record.id} failed: {e}")

    # =========================================================================
    # BATCH CADENCE JOBS
    # =========================================================================

    async def _for_each_user(
        self,
        job_name: str,
        users: Iterable[Any],
        build_request: Callable[[Any], Optional[NotificationRequest]]
    ) -> JobSummary:
        """Dispatch one request per user; a failing user never stops the batch."""
        summary = JobSummary(job=job_name)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def process(user) -> str:
            async with semaphore:
                try:
                    request = build_request(user)
                    if request is None:
                        return 'skipped'
                    await self.dispatcher.send(request)
                    return 'sent'
                except Exception as e:
                    logger.error(str(CadenceJobUserError(job_name, getattr(user, 'id', user), e)))
                    return 'failed'

        for result in await asyncio.gather(*(process(user) for user in users)):
            summary.processed += 1
            if result == 'sent':
                summary.sent += 1
            elif result == 'failed':
                summary.failed += 1
            else:
                summary.skipped += 1
        return summary

    async def send_goal_reminders(self) -> JobSummary:
        now = self.now()
        goals = await self.goals.find_active_nearing_deadline(self.goal_reminder_days, now)

        by_user: Dict[Any, List[Any]] = OrderedDict()
        for goal in goals:
            if goal_needs_attention(goal, now):
                by_user.setdefault(goal.user_id, []).append(goal)

        def build(user_id) -> NotificationRequest:
            user_goals = by_user[user_id]
            titles = ', '.join(goal.title for goal in user_goals)
            return NotificationRequest(
                user_id=user_id,
                type=NotificationType.GOAL_REMINDER,
                title='🎯 Daily Goal Reminder',
                message=f"Don't forget about your goals: {titles}. Keep up the great work!",
                payload={
                    'goalIds': [str(goal.id) for goal in user_goals],
                    'screen': 'goals',
                },
                channels=[Channel.IN_APP, Channel.PUSH],
                priority=NotificationPriority.MEDIUM,
                source='scheduled',
                category='goal_reminder',
            )

        return await self._for_each_user('goal-reminders', list(by_user), build)

    async def send_weekly_summary(self) -> JobSummary:
        users = await self.users.list_all()
        return await self._for_each_user('weekly-summary', users, lambda user: NotificationRequest(
            user_id=user.id,
            type=NotificationType.SYSTEM,
            title='📊 Weekly Financial Summary',
            message="Check your weekly financial progress and see how you're doing with your goals.",
            channels=[Channel.IN_APP, Channel.EMAIL],
            priority=NotificationPriority.LOW,
            source='scheduled',
            category='weekly_summary',
        ))

    async def send_monthly_report(self) -> JobSummary:
        users = await self.users.list_all()
        return await self._for_each_user('monthly-report', users, lambda user: NotificationRequest(
            user_id=user.id,
            type=NotificationType.SYSTEM,
            title='📈 Monthly Progress Report',
            message="Your monthly financial progress report is ready. See how you've improved this month!",
            channels=[Channel.IN_APP, Channel.EMAIL],
            priority=NotificationPriority.MEDIUM,
            source='scheduled',
            category='monthly_report',
        ))

    async def send_bill_reminders(self) -> JobSummary:
        users = await self.users.list_all()
        return await self._for_each_user('bill-reminders', users, lambda user: NotificationRequest(
            user_id=user.id,
            type=NotificationType.BILL_REMINDER,
            title='📅 Bill Reminder',
            message="Don't forget to pay your upcoming bills. Check your bill calendar for due dates.",
            channels=[Channel.IN_APP, Channel.PUSH],
            priority=NotificationPriority.MEDIUM,
            source='scheduled',
            category='bill_reminder',
        ))

    async def purge_expired(self) -> JobSummary:
        deleted = await self.records.delete_expired(self.now())
        if deleted:
            logger.info(f"Deleted {deleted} expired notifications")
        return JobSummary(job='purge-expired', processed=deleted)
