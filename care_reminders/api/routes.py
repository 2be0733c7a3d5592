"""FastAPI routes for reminders and notifications."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Depends, Query

from care_reminders.api.dependencies import get_notification_service, get_reminder_manager
from care_reminders.api.schemas import (
    DeliveryReport,
    NotificationListResponse,
    NotificationView,
    ReminderListResponse,
    ReminderView,
    SnoozeRequest,
    SourceEvent,
    SyncResponse,
)
from care_reminders.core.exceptions import (
    ConcurrentUpdateError,
    InvalidRuleError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
)
from care_reminders.core.models import Notification, NotificationStatus, ReminderStatus
from care_reminders.core.notification_service import NotificationService
from care_reminders.core.reminder_manager import ReminderManager

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["reminders"])


def _http_error(e: Exception, action: str) -> HTTPException:
    """Map an engine error to the HTTP response the caller should get."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidStateError, InvalidTransitionError, ConcurrentUpdateError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (InvalidRuleError, ValueError)):
        return HTTPException(status_code=422, detail=str(e))
    logger.error(f"{action} failed: {e}")
    return HTTPException(status_code=500, detail=f"{action} failed: {str(e)}")


def _notification_view(service: NotificationService, notification: Notification) -> NotificationView:
    return NotificationView(
        **notification.model_dump(),
        retry_warning=service.needs_retry_confirmation(notification)
    )


@router.post("/sources/created", response_model=SyncResponse, status_code=201)
async def source_created(
    event: SourceEvent,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> SyncResponse:
    """
    Schedule reminders for a new medication, appointment or health check.

    - **source**: Full source record; `source_type` selects the kind
    """
    try:
        result = await manager.on_source_created(event.source)
        return SyncResponse.from_result(result)
    except Exception as e:
        raise _http_error(e, "Source creation")


@router.post("/sources/updated", response_model=SyncResponse)
async def source_updated(
    event: SourceEvent,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> SyncResponse:
    """
    Reschedule future reminders after a source edit.

    Past and completed reminders are kept. An invalid schedule is rejected
    with 422 and leaves existing reminders untouched.
    """
    try:
        result = await manager.on_source_updated(event.source)
        return SyncResponse.from_result(result)
    except Exception as e:
        raise _http_error(e, "Source update")


@router.post("/sources/paused", response_model=SyncResponse)
async def source_paused(
    event: SourceEvent,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> SyncResponse:
    """Cancel future pending reminders of a paused source."""
    try:
        result = await manager.on_source_paused(event.source)
        return SyncResponse.from_result(result)
    except Exception as e:
        raise _http_error(e, "Source pause")


@router.post("/sources/resumed", response_model=SyncResponse)
async def source_resumed(
    event: SourceEvent,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> SyncResponse:
    """Schedule reminders again from now forward."""
    try:
        result = await manager.on_source_resumed(event.source)
        return SyncResponse.from_result(result)
    except Exception as e:
        raise _http_error(e, "Source resume")


@router.delete("/sources/{reference_id}", response_model=SyncResponse)
async def source_deleted(
    reference_id: str,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> SyncResponse:
    """Cancel future pending reminders of a deleted source; history is kept."""
    try:
        result = await manager.on_source_deleted(reference_id)
        return SyncResponse.from_result(result)
    except Exception as e:
        raise _http_error(e, "Source deletion")


@router.get("/reminders", response_model=ReminderListResponse)
async def list_reminders(
    user_id: Optional[str] = None,
    reference_id: Optional[str] = None,
    status: Optional[ReminderStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> ReminderListResponse:
    """
    Query reminders for calendars and dashboards.

    - **status**: Filters on the effective status, so `Missed` selects overdue pending reminders
    - **start** / **end**: Inclusive scheduled time range
    """
    try:
        reminders = await manager.list_reminders(
            user_id=user_id,
            reference_id=reference_id,
            status=status,
            start=start,
            end=end
        )
        now = manager.clock.now()
        return ReminderListResponse(
            reminders=[ReminderView.from_reminder(r, now) for r in reminders],
            total=len(reminders)
        )
    except Exception as e:
        raise _http_error(e, "Reminder query")


@router.get("/reminders/{reminder_id}", response_model=ReminderView)
async def get_reminder(
    reminder_id: UUID,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> ReminderView:
    """Get one reminder."""
    try:
        reminder = await manager.get_reminder(reminder_id)
        return ReminderView.from_reminder(reminder, manager.clock.now())
    except Exception as e:
        raise _http_error(e, "Reminder lookup")


@router.post("/reminders/{reminder_id}/done", response_model=ReminderView)
async def mark_reminder_done(
    reminder_id: UUID,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> ReminderView:
    """Mark a reminder as done. Repeating the call is harmless."""
    try:
        reminder = await manager.mark_done(reminder_id)
        return ReminderView.from_reminder(reminder, manager.clock.now())
    except Exception as e:
        raise _http_error(e, "Mark done")


@router.post("/reminders/{reminder_id}/snooze", response_model=ReminderView)
async def snooze_reminder(
    reminder_id: UUID,
    request: SnoozeRequest,
    manager: ReminderManager = Depends(get_reminder_manager)
) -> ReminderView:
    """
    Postpone a pending reminder.

    - **minutes**: Minutes to postpone, 1 to 1440
    """
    try:
        reminder = await manager.snooze(reminder_id, request.minutes)
        return ReminderView.from_reminder(reminder, manager.clock.now())
    except Exception as e:
        raise _http_error(e, "Snooze")


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    user_id: Optional[str] = None,
    status: Optional[NotificationStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    service: NotificationService = Depends(get_notification_service)
) -> NotificationListResponse:
    """Notification history, most recent first."""
    try:
        notifications = await service.list_notifications(
            user_id=user_id,
            status=status,
            start=start,
            end=end,
            page=page,
            page_size=page_size
        )
        return NotificationListResponse(
            notifications=[_notification_view(service, n) for n in notifications],
            page=page,
            page_size=page_size
        )
    except Exception as e:
        raise _http_error(e, "Notification query")


@router.get("/notifications/{notification_id}", response_model=NotificationView)
async def get_notification(
    notification_id: UUID,
    service: NotificationService = Depends(get_notification_service)
) -> NotificationView:
    """Get one notification with its delivery attempts."""
    try:
        notification = await service.get_notification(notification_id)
        return _notification_view(service, notification)
    except Exception as e:
        raise _http_error(e, "Notification lookup")


@router.patch("/notifications/{notification_id}/read", response_model=NotificationView)
async def mark_notification_read(
    notification_id: UUID,
    service: NotificationService = Depends(get_notification_service)
) -> NotificationView:
    """Recipient viewed a delivered notification."""
    try:
        notification = await service.mark_read(notification_id)
        return _notification_view(service, notification)
    except Exception as e:
        raise _http_error(e, "Mark read")


@router.patch("/notifications/{notification_id}/acknowledge", response_model=NotificationView)
async def acknowledge_notification(
    notification_id: UUID,
    service: NotificationService = Depends(get_notification_service)
) -> NotificationView:
    """Recipient confirmed a read notification."""
    try:
        notification = await service.acknowledge(notification_id)
        return _notification_view(service, notification)
    except Exception as e:
        raise _http_error(e, "Acknowledge")


@router.post("/notifications/{notification_id}/retry", response_model=NotificationView)
async def retry_notification(
    notification_id: UUID,
    service: NotificationService = Depends(get_notification_service)
) -> NotificationView:
    """
    Retry delivery of a failed notification.

    `retry_warning` in the response is set once the notification has failed
    at least the configured number of times.
    """
    try:
        notification = await service.retry_delivery(notification_id)
        return _notification_view(service, notification)
    except Exception as e:
        raise _http_error(e, "Retry")


@router.post("/notifications/{notification_id}/delivery", response_model=NotificationView)
async def report_delivery(
    notification_id: UUID,
    report: DeliveryReport,
    service: NotificationService = Depends(get_notification_service)
) -> NotificationView:
    """
    Delivery channel callback resolving the open attempt.

    - **delivered**: True on confirmed receipt
    - **reason**: Failure reason when delivered is false
    """
    try:
        if report.delivered:
            notification = await service.mark_delivered(notification_id)
        else:
            notification = await service.mark_failed(
                notification_id, report.reason or "Delivery failed"
            )
        return _notification_view(service, notification)
    except Exception as e:
        raise _http_error(e, "Delivery report")


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "care-reminders",
        "version": "1.0.0"
    }
