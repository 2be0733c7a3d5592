"""Pytest configuration and fixtures."""

import pytest
from datetime import date, datetime, time
from typing import AsyncGenerator
from unittest.mock import AsyncMock

from httpx import AsyncClient, ASGITransport

from care_reminders.api.dependencies import get_notification_service, get_reminder_manager
from care_reminders.core.clock import FixedClock
from care_reminders.core.models import (
    DeliveryResult,
    MedicationSource,
    RecurrenceKind,
    RecurrenceRule,
)
from care_reminders.core.notification_service import NotificationService
from care_reminders.core.reminder_manager import ReminderManager
from care_reminders.db.repositories import (
    InMemoryNotificationRepository,
    InMemoryReminderRepository,
)
from care_reminders.main import app

# Monday
START = datetime(2024, 1, 1, 0, 0)


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to 2024-01-01 00:00."""
    return FixedClock(START)


@pytest.fixture
def reminder_repository() -> InMemoryReminderRepository:
    return InMemoryReminderRepository()


@pytest.fixture
def notification_repository() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def mock_channel() -> AsyncMock:
    """Delivery channel that succeeds unless a test says otherwise."""
    channel = AsyncMock()
    channel.send.return_value = DeliveryResult.ok()
    return channel


@pytest.fixture
def reminder_manager(
    reminder_repository: InMemoryReminderRepository,
    clock: FixedClock
) -> ReminderManager:
    return ReminderManager(reminder_repository, clock, horizon_days=30)


@pytest.fixture
def notification_service(
    notification_repository: InMemoryNotificationRepository,
    mock_channel: AsyncMock,
    clock: FixedClock
) -> NotificationService:
    return NotificationService(
        notification_repository,
        mock_channel,
        clock,
        delivery_timeout_seconds=0.5,
        retry_warning_threshold=3
    )


@pytest.fixture
def twice_daily_rule() -> RecurrenceRule:
    """08:00 and 20:00 every day from the first of January."""
    return RecurrenceRule(
        kind=RecurrenceKind.DAILY,
        times_of_day=[time(8, 0), time(20, 0)],
        active_from=date(2024, 1, 1)
    )


@pytest.fixture
def medication(twice_daily_rule: RecurrenceRule) -> MedicationSource:
    return MedicationSource(
        id="med_1",
        user_id="user_1",
        name="Metformin",
        dosage="500 mg",
        rule=twice_daily_rule
    )


@pytest.fixture
async def test_client(
    reminder_manager: ReminderManager,
    notification_service: NotificationService
) -> AsyncGenerator[AsyncClient, None]:
    """Provide test HTTP client wired to in-memory services."""
    app.dependency_overrides[get_reminder_manager] = lambda: reminder_manager
    app.dependency_overrides[get_notification_service] = lambda: notification_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
