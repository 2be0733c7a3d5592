"""Service wiring shared by the API routes and the application lifespan."""

import asyncio
import logging
from typing import Optional

from care_reminders.core.channels import ChannelRouter, InAppChannel, WebhookChannel
from care_reminders.core.clock import SystemClock
from care_reminders.core.models import DeliveryChannel
from care_reminders.core.notification_service import NotificationService
from care_reminders.core.reminder_manager import ReminderManager
from care_reminders.db.pool import DatabasePool, check_connection
from care_reminders.db.postgres import (
    PostgresNotificationRepository,
    PostgresReminderRepository,
)
from care_reminders.db.repositories import (
    InMemoryNotificationRepository,
    InMemoryReminderRepository,
)
from care_reminders.settings import Settings, load_settings
from care_reminders.worker.trigger import ReminderTrigger

logger = logging.getLogger(__name__)


class Services:
    """Builds the engine from settings and owns its runtime resources."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.clock = SystemClock(settings.timezone)

        self.db_pool: Optional[DatabasePool] = None
        if settings.database_url:
            self.db_pool = DatabasePool(settings.database_url)
            reminder_repository = PostgresReminderRepository(self.db_pool)
            notification_repository = PostgresNotificationRepository(self.db_pool)
        else:
            logger.warning("DATABASE_URL not set, reminders and notifications are kept in memory")
            reminder_repository = InMemoryReminderRepository()
            notification_repository = InMemoryNotificationRepository()

        self.webhook: Optional[WebhookChannel] = None
        routes = {}
        if settings.delivery_webhook_url:
            self.webhook = WebhookChannel(settings.delivery_webhook_url)
            routes = {
                DeliveryChannel.MOBILE_PUSH: self.webhook,
                DeliveryChannel.EMAIL: self.webhook,
                DeliveryChannel.SMS: self.webhook,
            }
        self.channel = ChannelRouter(default=InAppChannel(), routes=routes)

        self.reminder_manager = ReminderManager(
            repository=reminder_repository,
            clock=self.clock,
            horizon_days=settings.reminder_horizon_days,
            max_snooze_minutes=settings.max_snooze_minutes
        )
        self.notification_service = NotificationService(
            repository=notification_repository,
            channel=self.channel,
            clock=self.clock,
            delivery_timeout_seconds=settings.delivery_timeout_seconds,
            retry_warning_threshold=settings.retry_warning_threshold,
            default_channel=settings.default_delivery_channel,
            default_recipient=settings.default_recipient_type
        )
        self.trigger = ReminderTrigger(
            self.reminder_manager,
            self.notification_service,
            batch_size=settings.trigger_batch_size
        )
        self._trigger_task: Optional[asyncio.Task] = None

    async def startup(self):
        """Open the database, apply migrations and start the trigger loop if enabled."""
        if self.db_pool:
            await self.db_pool.initialize()
            await self.db_pool.apply_migrations()
            if not await check_connection(self.db_pool):
                raise RuntimeError("Database connection check failed")

        if self.settings.trigger_enabled:
            self._trigger_task = asyncio.create_task(
                self.trigger.run_forever(self.settings.trigger_poll_seconds)
            )

    async def shutdown(self):
        """Stop the trigger loop and release connections."""
        if self._trigger_task:
            self._trigger_task.cancel()
            try:
                await self._trigger_task
            except asyncio.CancelledError:
                pass
            self._trigger_task = None

        if self.webhook:
            await self.webhook.close()
        if self.db_pool:
            await self.db_pool.close()


_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = Services(load_settings())
    return _services


async def get_reminder_manager() -> ReminderManager:
    """Get reminder manager instance."""
    return get_services().reminder_manager


async def get_notification_service() -> NotificationService:
    """Get notification service instance."""
    return get_services().notification_service
