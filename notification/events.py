"""
Domain event triggers.

Called by the finance write paths after a savings entry, goal contribution,
expense, income or security event is committed. A notification problem is
logged and swallowed here so it never fails the originating write.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from notification.dispatcher import NotificationDispatcher
from notification.interfaces import SavingsStore
from notification.models import Channel, NotificationPriority, NotificationRequest, NotificationType

logger = logging.getLogger(__name__)

GOAL_MILESTONE_PERCENTAGES = (25, 50, 75)


def _decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


def _money(value: Decimal) -> str:
    return f"${value:,.0f}"


def crossed_milestone(previous_total: Any, new_total: Any, step: Any) -> Optional[Decimal]:
    """
    Highest positive multiple of `step` in (previous_total, new_total], or None.

    999 -> 1001 crosses 1000; 1001 -> 1050 crosses nothing; 500 -> 3200
    reports only 3000.
    """
    previous_total, new_total, step = _decimal(previous_total), _decimal(new_total), _decimal(step)
    if step <= 0 or new_total <= previous_total:
        return None
    milestone = (new_total // step) * step
    if milestone > 0 and milestone > previous_total:
        return milestone
    return None


def crossed_goal_percentage(previous_amount: Any, current_amount: Any, target_amount: Any) -> Optional[int]:
    target = _decimal(target_amount)
    if target <= 0:
        return None
    before = _decimal(previous_amount) / target * 100
    after = _decimal(current_amount) / target * 100
    crossed = [p for p in GOAL_MILESTONE_PERCENTAGES if before < p <= after]
    return crossed[-1] if crossed else None


class NotificationEvents:
    """Entry points the finance services call after their own writes."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        savings: SavingsStore,
        milestone_step: Any = 1000
    ):
        self.dispatcher = dispatcher
        self.savings = savings
        self.milestone_step = _decimal(milestone_step)

    async def _send(self, request: NotificationRequest):
        try:
            return await self.dispatcher.send(request)
        except Exception as e:
            logger.error(
                f"Failed to dispatch {request.type.value} notification for user {request.user_id}: {e}"
            )
            return None

    async def on_savings_recorded(self, user_id: uuid.UUID, amount: Any):
        """Fire one savings_milestone when this entry pushes the total over a step boundary."""
        try:
            new_total = _decimal(await self.savings.total_for_user(user_id))
        except Exception as e:
            logger.error(f"Could not load savings total for user {user_id}: {e}")
            return None

        milestone = crossed_milestone(new_total - _decimal(amount), new_total, self.milestone_step)
        if milestone is None:
            return None

        logger.info(f"User {user_id} crossed savings milestone {milestone}")
        return await self._send(NotificationRequest(
            user_id=user_id,
            type=NotificationType.SAVINGS_MILESTONE,
            title='💎 Savings Milestone Achieved!',
            message=f"Congratulations! You've reached a savings milestone of {_money(milestone)}.",
            payload={'milestone': _money(milestone), 'totalSavings': str(new_total), 'screen': 'savings'},
            channels=[Channel.IN_APP, Channel.PUSH, Channel.EMAIL],
            priority=NotificationPriority.HIGH,
            source='user_action',
            category='savings_milestone',
        ))

    async def on_goal_contribution(self, goal, previous_amount: Any):
        """goal_achieved when the target is reached, otherwise goal_milestone at 25/50/75%."""
        current = _decimal(goal.current_amount)
        target = _decimal(goal.target_amount)
        previous = _decimal(previous_amount)
        payload = {'goalId': str(goal.id), 'goalTitle': goal.title, 'screen': 'goals'}

        if target > 0 and previous < target <= current:
            payload['targetAmount'] = _money(target)
            return await self._send(NotificationRequest(
                user_id=goal.user_id,
                type=NotificationType.GOAL_ACHIEVED,
                title='🎉 Goal Achieved!',
                message=f"Congratulations! You've achieved your goal: {goal.title}",
                payload=payload,
                channels=[Channel.IN_APP, Channel.PUSH, Channel.EMAIL],
                priority=NotificationPriority.HIGH,
                source='user_action',
                category='goal_achieved',
            ))

        percentage = crossed_goal_percentage(previous, current, target)
        if percentage is None:
            return None

        payload['percentage'] = percentage
        return await self._send(NotificationRequest(
            user_id=goal.user_id,
            type=NotificationType.GOAL_MILESTONE,
            title=f'🏁 {percentage}% of your goal',
            message=f"You're {percentage}% of the way to {goal.title}. Keep going!",
            payload=payload,
            channels=[Channel.IN_APP, Channel.PUSH],
            priority=NotificationPriority.MEDIUM,
            source='user_action',
            category='goal_milestone',
        ))

    async def on_expense_recorded(
        self,
        user_id: uuid.UUID,
        amount: Any,
        category: str,
        expense_id: Optional[Any] = None
    ):
        payload = {'amount': str(amount), 'category': category, 'screen': 'expenses'}
        if expense_id is not None:
            payload['expenseId'] = str(expense_id)
        return await self._send(NotificationRequest(
            user_id=user_id,
            type=NotificationType.EXPENSE_ALERT,
            title='💰 Expense Alert',
            message=f"You've spent {_money(_decimal(amount))} on {category}. Keep track of your spending!",
            payload=payload,
            channels=[Channel.IN_APP, Channel.PUSH],
            priority=NotificationPriority.MEDIUM,
            source='user_action',
            category='expense_alert',
        ))

    async def on_income_added(self, user_id: uuid.UUID, amount: Any, source_name: Optional[str] = None):
        label = f" from {source_name}" if source_name else ''
        return await self._send(NotificationRequest(
            user_id=user_id,
            type=NotificationType.INCOME_ADDED,
            title='💵 Income Added',
            message=f"{_money(_decimal(amount))}{label} was added to your income.",
            payload={'amount': str(amount), 'source': source_name, 'screen': 'income'},
            channels=[Channel.IN_APP],
            priority=NotificationPriority.LOW,
            source='user_action',
            category='income_added',
        ))

    async def on_security_event(self, user_id: uuid.UUID, alert_type: str, details: Optional[str] = None):
        """Urgent: bypasses quiet hours and goes out on every channel."""
        return await self._send(NotificationRequest(
            user_id=user_id,
            type=NotificationType.SECURITY_ALERT,
            title='🔒 Security Alert',
            message='Unusual activity detected on your account. Please review your recent activity.',
            payload={'alertType': alert_type, 'details': details or '', 'screen': 'security'},
            channels=[Channel.IN_APP, Channel.PUSH, Channel.EMAIL],
            priority=NotificationPriority.URGENT,
            source='system',
            category='security_alert',
        ))
