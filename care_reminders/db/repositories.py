"""Persistence interfaces for reminders and notifications, with in-memory storage."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Set
from uuid import UUID

from care_reminders.core.exceptions import ConcurrentUpdateError, NotFoundError
from care_reminders.core.models import (
    Notification,
    NotificationStatus,
    Reminder,
    ReminderStatus,
)


class ReminderRepository(Protocol):
    """Storage of the Reminder collection."""

    async def get(self, reminder_id: UUID) -> Optional[Reminder]:
        ...

    async def add_many(self, reminders: List[Reminder]) -> None:
        ...

    async def update(self, reminder: Reminder) -> Reminder:
        ...

    async def list_for_reference(self, reference_id: str) -> List[Reminder]:
        ...

    async def query(
        self,
        user_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        statuses: Optional[Set[ReminderStatus]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Reminder]:
        ...

    async def list_due(self, now: datetime, limit: int) -> List[Reminder]:
        ...

    async def replace_future_pending(
        self,
        reference_id: str,
        now: datetime,
        keep_ids: Set[UUID],
        new_reminders: List[Reminder]
    ) -> int:
        ...


class NotificationRepository(Protocol):
    """Storage of the Notification collection."""

    async def get(self, notification_id: UUID) -> Optional[Notification]:
        ...

    async def add(self, notification: Notification) -> Notification:
        ...

    async def find_for_occurrence(
        self,
        reminder_id: UUID,
        scheduled_time: datetime
    ) -> Optional[Notification]:
        ...

    async def save(self, notification: Notification, expected_version: int) -> Notification:
        ...

    async def query(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Set[NotificationStatus]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 50
    ) -> List[Notification]:
        ...


def is_future_pending(reminder: Reminder, now: datetime) -> bool:
    """Pending reminder that has not come due yet."""
    return reminder.status == ReminderStatus.PENDING and reminder.scheduled_time > now


def is_due(reminder: Reminder, now: datetime) -> bool:
    """
    Pending reminder whose current scheduled time has arrived and not been fired.

    Occurrences that were already past when generated stay as Missed history
    and are never fired, unless the recipient snoozed them.
    """
    return (
        reminder.status == ReminderStatus.PENDING
        and reminder.scheduled_time <= now
        and reminder.notified_for != reminder.scheduled_time
        and (reminder.snoozed_from is not None or reminder.scheduled_time >= reminder.created_at)
    )


def _in_range(value: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


class InMemoryReminderRepository:
    """Reminder storage kept in process memory; the default for tests and single-node use."""

    def __init__(self, reminders: Iterable[Reminder] = ()):
        self._reminders: Dict[UUID, Reminder] = {}
        for reminder in reminders:
            self._reminders[reminder.id] = reminder.model_copy(deep=True)

    async def get(self, reminder_id: UUID) -> Optional[Reminder]:
        reminder = self._reminders.get(reminder_id)
        return reminder.model_copy(deep=True) if reminder else None

    async def add_many(self, reminders: List[Reminder]) -> None:
        for reminder in reminders:
            self._reminders[reminder.id] = reminder.model_copy(deep=True)

    async def update(self, reminder: Reminder) -> Reminder:
        if reminder.id not in self._reminders:
            raise NotFoundError(f"Reminder {reminder.id} not found")
        self._reminders[reminder.id] = reminder.model_copy(deep=True)
        return reminder

    async def list_for_reference(self, reference_id: str) -> List[Reminder]:
        return await self.query(reference_id=reference_id)

    async def query(
        self,
        user_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        statuses: Optional[Set[ReminderStatus]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Reminder]:
        results = [
            r.model_copy(deep=True)
            for r in self._reminders.values()
            if (user_id is None or r.user_id == user_id)
            and (reference_id is None or r.reference_id == reference_id)
            and (statuses is None or r.status in statuses)
            and _in_range(r.scheduled_time, start, end)
        ]
        results.sort(key=lambda r: (r.scheduled_time, r.created_at))
        return results

    async def list_due(self, now: datetime, limit: int) -> List[Reminder]:
        due = [r for r in self._reminders.values() if is_due(r, now)]
        due.sort(key=lambda r: r.scheduled_time)
        return [r.model_copy(deep=True) for r in due[:limit]]

    async def replace_future_pending(
        self,
        reference_id: str,
        now: datetime,
        keep_ids: Set[UUID],
        new_reminders: List[Reminder]
    ) -> int:
        # No awaits below: the swap is atomic with respect to other tasks
        stale = [
            r.id for r in self._reminders.values()
            if r.reference_id == reference_id
            and is_future_pending(r, now)
            and r.id not in keep_ids
        ]
        for reminder_id in stale:
            del self._reminders[reminder_id]
        for reminder in new_reminders:
            self._reminders[reminder.id] = reminder.model_copy(deep=True)
        return len(stale)

    def __len__(self) -> int:
        return len(self._reminders)


class InMemoryNotificationRepository:
    """Notification storage kept in process memory."""

    def __init__(self):
        self._notifications: Dict[UUID, Notification] = {}

    async def get(self, notification_id: UUID) -> Optional[Notification]:
        notification = self._notifications.get(notification_id)
        return notification.model_copy(deep=True) if notification else None

    async def add(self, notification: Notification) -> Notification:
        self._notifications[notification.id] = notification.model_copy(deep=True)
        return notification

    async def find_for_occurrence(
        self,
        reminder_id: UUID,
        scheduled_time: datetime
    ) -> Optional[Notification]:
        for notification in self._notifications.values():
            if (notification.source_reminder_id == reminder_id
                    and notification.scheduled_time == scheduled_time):
                return notification.model_copy(deep=True)
        return None

    async def save(self, notification: Notification, expected_version: int) -> Notification:
        current = self._notifications.get(notification.id)
        if current is None:
            raise NotFoundError(f"Notification {notification.id} not found")
        if current.version != expected_version:
            raise ConcurrentUpdateError(
                f"Notification {notification.id} is at version {current.version}, "
                f"expected {expected_version}"
            )
        self._notifications[notification.id] = notification.model_copy(deep=True)
        return notification

    async def query(
        self,
        user_id: Optional[str] = None,
        statuses: Optional[Set[NotificationStatus]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 50
    ) -> List[Notification]:
        results = [
            n for n in self._notifications.values()
            if (user_id is None or n.user_id == user_id)
            and (statuses is None or n.status in statuses)
            and _in_range(n.sent_at, start, end)
        ]
        results.sort(key=lambda n: n.sent_at, reverse=True)
        return [n.model_copy(deep=True) for n in results[offset:offset + limit]]

    def __len__(self) -> int:
        return len(self._notifications)
