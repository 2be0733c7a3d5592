"""API request/response schemas."""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional
from uuid import UUID

from care_reminders.core.models import (
    Notification,
    Reminder,
    ReminderSource,
    ReminderStatus,
    ReminderSyncResult,
)
from care_reminders.core.reminder_manager import effective_status


class SourceEvent(BaseModel):
    """Change event carrying the full current source record."""

    source: ReminderSource


class SyncResponse(BaseModel):
    """Reminders affected by a source event."""

    reference_id: str
    cancelled: int
    kept: int
    reminders_created: int
    reminder_ids: List[UUID]

    @classmethod
    def from_result(cls, result: ReminderSyncResult) -> "SyncResponse":
        return cls(
            reference_id=result.reference_id,
            cancelled=result.cancelled,
            kept=result.kept,
            reminders_created=len(result.created),
            reminder_ids=[r.id for r in result.created]
        )


class ReminderView(Reminder):
    """Reminder with the status readers should see."""

    effective_status: ReminderStatus

    @classmethod
    def from_reminder(cls, reminder: Reminder, now: datetime) -> "ReminderView":
        return cls(**reminder.model_dump(), effective_status=effective_status(reminder, now))


class ReminderListResponse(BaseModel):
    """Reminders sorted by scheduled time."""

    reminders: List[ReminderView]
    total: int


class SnoozeRequest(BaseModel):
    """Postpone a pending reminder."""

    minutes: int = Field(..., ge=1, le=1440)


class DeliveryReport(BaseModel):
    """Delivery channel callback for the open attempt."""

    delivered: bool
    reason: Optional[str] = Field(default=None, max_length=500)


class NotificationView(Notification):
    """Notification with a flag for retries that should be confirmed first."""

    retry_warning: bool = False


class NotificationListResponse(BaseModel):
    """One page of notifications, most recent first."""

    notifications: List[NotificationView]
    page: int
    page_size: int
