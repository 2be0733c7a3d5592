"""Background trigger that turns due reminders into delivered notifications."""

import asyncio
import logging
from typing import List

from care_reminders.core.models import Notification
from care_reminders.core.notification_service import DELIVERABLE, NotificationService
from care_reminders.core.reminder_manager import ReminderManager

logger = logging.getLogger(__name__)


class ReminderTrigger:
    """Polls for due reminders, creates their notifications and dispatches them."""

    def __init__(
        self,
        reminder_manager: ReminderManager,
        notification_service: NotificationService,
        batch_size: int = 50
    ):
        """
        Initialize reminder trigger.

        Args:
            reminder_manager: Source of due reminders
            notification_service: Creates and delivers notifications
            batch_size: Maximum reminders fired per run
        """
        self.reminder_manager = reminder_manager
        self.notification_service = notification_service
        self.batch_size = batch_size

    async def run_once(self) -> List[Notification]:
        """
        Fire every due reminder in one batch.

        A failure on one reminder is logged and does not stop the batch.

        Returns:
            Notifications as they stand after dispatch
        """
        due = await self.reminder_manager.list_due(self.batch_size)
        if not due:
            return []

        logger.info(f"Firing {len(due)} due reminders")
        results: List[Notification] = []
        for reminder in due:
            try:
                notification = await self.notification_service.create_for_reminder(reminder)
                await self.reminder_manager.mark_notified(reminder.id, reminder.scheduled_time)
                if notification.status in DELIVERABLE:
                    notification = await self.notification_service.dispatch(notification.id)
                results.append(notification)
            except Exception as e:
                logger.error(f"Failed to fire reminder {reminder.id}: {e}")
        return results

    async def run_forever(self, poll_seconds: float = 30.0):
        """Run batches until cancelled."""
        logger.info(f"Reminder trigger started (poll every {poll_seconds:g}s)")
        try:
            while True:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error(f"Reminder trigger run failed: {e}")
                await asyncio.sleep(poll_seconds)
        except asyncio.CancelledError:
            logger.info("Reminder trigger stopped")
            raise
