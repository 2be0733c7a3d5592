"""Notification delivery state machine and the service that drives it."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import UUID

from care_reminders.core.channels import DeliveryChannelClient
from care_reminders.core.clock import Clock
from care_reminders.core.exceptions import InvalidTransitionError, NotFoundError
from care_reminders.core.locks import KeyedLocks
from care_reminders.core.models import (
    AttemptOutcome,
    DeliveryAttempt,
    DeliveryChannel,
    DeliveryResult,
    Notification,
    NotificationStatus,
    RecipientType,
    Reminder,
    SourceType,
)
from care_reminders.db.repositories import NotificationRepository

logger = logging.getLogger(__name__)

# Statuses with an open delivery attempt
DELIVERABLE = {NotificationStatus.SENT, NotificationStatus.RETRYING}

TEMPLATES = {
    SourceType.MEDICATION: ("Medication Reminder", "It's time to take your medication."),
    SourceType.APPOINTMENT: ("Appointment Reminder", "You have an upcoming appointment."),
    SourceType.HEALTH: ("Health Check Reminder", "It's time for your health check."),
}


def _require(notification: Notification, allowed: Set[NotificationStatus], target: NotificationStatus):
    if notification.status not in allowed:
        raise InvalidTransitionError(
            f"Cannot move notification {notification.id} from "
            f"{notification.status.value} to {target.value}"
        )


def _not_before(at: datetime, *earlier: Optional[datetime]) -> datetime:
    floor = max((t for t in earlier if t is not None), default=at)
    return max(at, floor)


def _resolve_attempt(
    attempts: List[DeliveryAttempt],
    outcome: AttemptOutcome,
    at: datetime,
    channel: DeliveryChannel,
    error_reason: Optional[str] = None
) -> List[DeliveryAttempt]:
    attempts = [a.model_copy() for a in attempts]
    if attempts and attempts[-1].outcome == AttemptOutcome.PENDING:
        attempts[-1] = attempts[-1].model_copy(
            update={"outcome": outcome, "error_reason": error_reason}
        )
    else:
        attempts.append(DeliveryAttempt(
            attempt_number=len(attempts) + 1,
            attempted_at=at,
            outcome=outcome,
            channel=channel,
            error_reason=error_reason
        ))
    return attempts


def _advance(notification: Notification, at: datetime, **changes) -> Notification:
    changes["version"] = notification.version + 1
    changes["updated_at"] = max(at, notification.updated_at)
    return notification.model_copy(update=changes)


def new_notification(
    reminder: Reminder,
    at: datetime,
    channel: DeliveryChannel,
    recipient_type: RecipientType,
    title: Optional[str] = None,
    message: Optional[str] = None
) -> Notification:
    """Initial Sent record for a fired reminder, with attempt #1 pending."""
    default_title, default_message = TEMPLATES[reminder.source_type]
    return Notification(
        user_id=reminder.user_id,
        source_reminder_id=reminder.id,
        scheduled_time=reminder.scheduled_time,
        source_type=reminder.source_type,
        reference_id=reminder.reference_id,
        title=title or default_title,
        message=message or f"{default_message} Scheduled for {reminder.scheduled_time:%H:%M}.",
        delivery_channel=channel,
        recipient_type=recipient_type,
        status=NotificationStatus.SENT,
        sent_at=at,
        delivery_attempts=[DeliveryAttempt(attempt_number=1, attempted_at=at, channel=channel)],
        created_at=at,
        updated_at=at
    )


def delivered(notification: Notification, at: datetime) -> Notification:
    """Sent/Retrying -> Delivered."""
    _require(notification, DELIVERABLE, NotificationStatus.DELIVERED)
    return _advance(
        notification, at,
        status=NotificationStatus.DELIVERED,
        delivered_at=_not_before(at, notification.sent_at),
        failure_reason=None,
        delivery_attempts=_resolve_attempt(
            notification.delivery_attempts, AttemptOutcome.SUCCESS, at,
            notification.delivery_channel
        )
    )


def failed(notification: Notification, at: datetime, reason: str) -> Notification:
    """Sent/Retrying -> Failed; counts one more failure."""
    _require(notification, DELIVERABLE, NotificationStatus.FAILED)
    return _advance(
        notification, at,
        status=NotificationStatus.FAILED,
        failure_reason=reason[:500],
        retry_count=notification.retry_count + 1,
        delivery_attempts=_resolve_attempt(
            notification.delivery_attempts, AttemptOutcome.FAILURE, at,
            notification.delivery_channel, error_reason=reason[:500]
        )
    )


def read(notification: Notification, at: datetime) -> Notification:
    """Delivered -> Read."""
    _require(notification, {NotificationStatus.DELIVERED}, NotificationStatus.READ)
    return _advance(
        notification, at,
        status=NotificationStatus.READ,
        read_at=_not_before(at, notification.sent_at, notification.delivered_at)
    )


def acknowledged(notification: Notification, at: datetime) -> Notification:
    """Read -> Acknowledged (terminal)."""
    _require(notification, {NotificationStatus.READ}, NotificationStatus.ACKNOWLEDGED)
    return _advance(
        notification, at,
        status=NotificationStatus.ACKNOWLEDGED,
        acknowledged_at=_not_before(
            at, notification.sent_at, notification.delivered_at, notification.read_at
        )
    )


def retrying(notification: Notification, at: datetime) -> Notification:
    """Failed -> Retrying; opens a new pending attempt."""
    _require(notification, {NotificationStatus.FAILED}, NotificationStatus.RETRYING)
    attempts = [a.model_copy() for a in notification.delivery_attempts]
    attempts.append(DeliveryAttempt(
        attempt_number=len(attempts) + 1,
        attempted_at=at,
        channel=notification.delivery_channel
    ))
    return _advance(
        notification, at,
        status=NotificationStatus.RETRYING,
        delivery_attempts=attempts
    )


class NotificationService:
    """Owns Notification records and moves them through the delivery lifecycle."""

    def __init__(
        self,
        repository: NotificationRepository,
        channel: DeliveryChannelClient,
        clock: Clock,
        delivery_timeout_seconds: float = 10.0,
        retry_warning_threshold: int = 3,
        default_channel: DeliveryChannel = DeliveryChannel.MOBILE_PUSH,
        default_recipient: RecipientType = RecipientType.ELDERLY_USER
    ):
        """
        Initialize notification service.

        Args:
            repository: Notification storage
            channel: Delivery channel client used for first delivery and retries
            clock: Source of "now"
            delivery_timeout_seconds: Time allowed per attempt before it counts as failed
            retry_warning_threshold: Failures after which retries are flagged
            default_channel: Channel for fired reminders
            default_recipient: Recipient for fired reminders
        """
        self.repository = repository
        self.channel = channel
        self.clock = clock
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self.retry_warning_threshold = retry_warning_threshold
        self.default_channel = default_channel
        self.default_recipient = default_recipient
        self._locks = KeyedLocks()

    async def create_for_reminder(
        self,
        reminder: Reminder,
        channel: Optional[DeliveryChannel] = None,
        recipient_type: Optional[RecipientType] = None
    ) -> Notification:
        """
        Create the Sent record for a fired reminder occurrence.

        At most one notification exists per reminder occurrence; an existing
        one is returned unchanged.
        """
        async with self._locks.hold(("reminder", reminder.id)):
            existing = await self.repository.find_for_occurrence(reminder.id, reminder.scheduled_time)
            if existing is not None:
                logger.debug(f"Reminder {reminder.id} already has notification {existing.id}")
                return existing

            notification = new_notification(
                reminder,
                self.clock.now(),
                channel or self.default_channel,
                recipient_type or self.default_recipient
            )
            await self.repository.add(notification)

        logger.info(
            f"Created notification {notification.id} for reminder {reminder.id} "
            f"via {notification.delivery_channel.value}"
        )
        return notification

    async def get_notification(self, notification_id: UUID) -> Notification:
        """
        Fetch one notification with its delivery history.

        Raises:
            NotFoundError: If the notification does not exist
        """
        notification = await self.repository.get(notification_id)
        if notification is None:
            logger.warning(f"Notification {notification_id} not found")
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification

    async def list_notifications(
        self,
        user_id: Optional[str] = None,
        status: Optional[NotificationStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50
    ) -> List[Notification]:
        """Notifications sorted by sent_at, most recent first."""
        return await self.repository.query(
            user_id=user_id,
            statuses={status} if status else None,
            start=start,
            end=end,
            offset=(page - 1) * page_size,
            limit=page_size
        )

    async def _transition(
        self,
        notification_id: UUID,
        apply: Callable[[Notification, datetime], Notification]
    ) -> Notification:
        async with self._locks.hold(notification_id):
            current = await self.get_notification(notification_id)
            try:
                updated = apply(current, self.clock.now())
            except InvalidTransitionError as e:
                logger.warning(str(e))
                raise
            await self.repository.save(updated, expected_version=current.version)

        logger.info(
            f"Notification {notification_id}: {current.status.value} -> {updated.status.value}"
        )
        return updated

    async def mark_delivered(self, notification_id: UUID) -> Notification:
        """Channel confirmed receipt."""
        return await self._transition(notification_id, delivered)

    async def mark_failed(self, notification_id: UUID, reason: str) -> Notification:
        """Channel reported a failed attempt."""
        return await self._transition(
            notification_id, lambda n, at: failed(n, at, reason)
        )

    async def mark_read(self, notification_id: UUID) -> Notification:
        """Recipient viewed the notification."""
        return await self._transition(notification_id, read)

    async def acknowledge(self, notification_id: UUID) -> Notification:
        """Recipient explicitly confirmed the notification."""
        return await self._transition(notification_id, acknowledged)

    def needs_retry_confirmation(self, notification: Notification) -> bool:
        """Whether a retry should be confirmed by the caller first. Never enforced."""
        return notification.retry_count >= self.retry_warning_threshold

    async def retry_delivery(self, notification_id: UUID) -> Notification:
        """
        Retry a failed notification: Failed -> Retrying -> Delivered | Failed.

        Raises:
            NotFoundError: If the notification does not exist
            InvalidTransitionError: If the notification is not Failed
        """
        retried = await self._transition(notification_id, retrying)
        if self.needs_retry_confirmation(retried):
            logger.warning(
                f"Retrying notification {notification_id} after {retried.retry_count} failed attempts"
            )
        return await self.dispatch(notification_id)

    async def dispatch(self, notification_id: UUID) -> Notification:
        """
        Send the open delivery attempt through the channel and record its outcome.

        A timeout or an exception from the channel counts as a failed attempt.
        If another writer resolved the attempt meanwhile, the current record
        is returned as is.
        """
        notification = await self.get_notification(notification_id)
        if notification.status not in DELIVERABLE:
            raise InvalidTransitionError(
                f"Notification {notification_id} has no open delivery attempt "
                f"(status {notification.status.value})"
            )

        result = await self._send(notification)

        try:
            if result.success:
                return await self.mark_delivered(notification_id)
            return await self.mark_failed(notification_id, result.reason or "Delivery failed")
        except InvalidTransitionError:
            logger.info(f"Notification {notification_id} was resolved by another writer during dispatch")
            return await self.get_notification(notification_id)

    async def _send(self, notification: Notification) -> DeliveryResult:
        try:
            return await asyncio.wait_for(
                self.channel.send(
                    notification.id,
                    notification.delivery_channel,
                    self._payload(notification)
                ),
                timeout=self.delivery_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Delivery of notification {notification.id} timed out "
                f"after {self.delivery_timeout_seconds}s"
            )
            return DeliveryResult.failed(
                f"Delivery timed out after {self.delivery_timeout_seconds:g} seconds"
            )
        except Exception as e:
            logger.error(f"Delivery channel error for notification {notification.id}: {e}")
            return DeliveryResult.failed(f"Channel error: {e}")

    @staticmethod
    def _payload(notification: Notification) -> Dict[str, Any]:
        return {
            "user_id": notification.user_id,
            "recipient_type": notification.recipient_type.value,
            "title": notification.title,
            "message": notification.message,
            "source_type": notification.source_type.value,
            "reference_id": notification.reference_id,
            "scheduled_time": notification.scheduled_time.isoformat(),
        }
