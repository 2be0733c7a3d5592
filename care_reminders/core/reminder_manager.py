"""Reminder lifecycle management: keeps future reminders in sync with their sources."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Set
from uuid import UUID

from care_reminders.core.clock import Clock
from care_reminders.core.exceptions import InvalidStateError, NotFoundError
from care_reminders.core.generator import (
    DEFAULT_HORIZON_DAYS,
    generate_for_source,
    validate_source,
)
from care_reminders.core.locks import KeyedLocks
from care_reminders.core.models import (
    Reminder,
    ReminderSource,
    ReminderStatus,
    ReminderSyncResult,
    SourceStatus,
)
from care_reminders.db.repositories import ReminderRepository, is_future_pending

logger = logging.getLogger(__name__)


def effective_status(reminder: Reminder, now: datetime) -> ReminderStatus:
    """
    Status as seen by readers at time now.

    A Pending reminder whose scheduled time has passed reads as Missed.
    Nothing is persisted.
    """
    if reminder.status == ReminderStatus.PENDING and reminder.scheduled_time < now:
        return ReminderStatus.MISSED
    return reminder.status


class ReminderManager:
    """Owns the Reminder collection and reacts to source change events."""

    def __init__(
        self,
        repository: ReminderRepository,
        clock: Clock,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        max_snooze_minutes: int = 1440
    ):
        """
        Initialize reminder manager.

        Args:
            repository: Reminder storage
            clock: Source of "now"
            horizon_days: Days of reminders generated ahead
            max_snooze_minutes: Longest accepted snooze
        """
        self.repository = repository
        self.clock = clock
        self.horizon_days = horizon_days
        self.max_snooze_minutes = max_snooze_minutes
        self._locks = KeyedLocks()

    async def on_source_created(self, source: ReminderSource) -> ReminderSyncResult:
        """Generate the default window of reminders for a newly created source."""
        validate_source(source)
        async with self._locks.hold(source.id):
            result = await self._sync(source, regenerate=source.status == SourceStatus.ACTIVE)
        logger.info(
            f"Source {source.source_type} {source.id} created: "
            f"{len(result.created)} reminders scheduled"
        )
        return result

    async def on_source_updated(self, source: ReminderSource) -> ReminderSyncResult:
        """
        Cancel future pending reminders and regenerate them from the current schedule.

        The schedule is validated before anything is cancelled, and the
        cancel and insert happen in one repository call. Past and Done
        reminders are never touched. A snoozed reminder survives if its
        original time is still part of the schedule.

        Raises:
            InvalidRuleError: If the new schedule is invalid; stored reminders are unchanged
        """
        validate_source(source)
        async with self._locks.hold(source.id):
            result = await self._sync(source, regenerate=source.status == SourceStatus.ACTIVE)
        logger.info(
            f"Source {source.source_type} {source.id} updated: cancelled {result.cancelled}, "
            f"kept {result.kept} snoozed, scheduled {len(result.created)}"
        )
        return result

    async def on_source_paused(self, source: ReminderSource) -> ReminderSyncResult:
        """Cancel all future pending reminders and generate none."""
        async with self._locks.hold(source.id):
            result = await self._sync(source, regenerate=False)
        logger.info(f"Source {source.source_type} {source.id} paused: cancelled {result.cancelled}")
        return result

    async def on_source_resumed(self, source: ReminderSource) -> ReminderSyncResult:
        """Regenerate from now forward; same as an update."""
        return await self.on_source_updated(source)

    async def on_source_deleted(self, reference_id: str) -> ReminderSyncResult:
        """Cancel all future pending reminders of a deleted source; history stays."""
        async with self._locks.hold(reference_id):
            now = self.clock.now()
            cancelled = await self.repository.replace_future_pending(
                reference_id, now, keep_ids=set(), new_reminders=[]
            )
        logger.info(f"Source {reference_id} deleted: cancelled {cancelled}")
        return ReminderSyncResult(reference_id=reference_id, cancelled=cancelled)

    async def _sync(self, source: ReminderSource, regenerate: bool) -> ReminderSyncResult:
        now = self.clock.now()
        requests = (
            generate_for_source(source, now.date(), self.horizon_days, zone=self.clock.zone)
            if regenerate else []
        )
        implied = {request.scheduled_time for request in requests}

        # Dose times already covered by reminders that survive the cancel.
        # A snoozed reminder stands for the dose at snoozed_from only.
        occupied: Set[datetime] = set()
        keep_ids: Set[UUID] = set()
        for reminder in await self.repository.list_for_reference(source.id):
            if is_future_pending(reminder, now):
                if reminder.snoozed_from is None or reminder.snoozed_from not in implied:
                    continue
                keep_ids.add(reminder.id)
            occupied.add(reminder.snoozed_from or reminder.scheduled_time)

        new_reminders = [
            Reminder(
                user_id=request.user_id,
                source_type=request.source_type,
                reference_id=request.reference_id,
                scheduled_time=request.scheduled_time,
                status=ReminderStatus.PENDING,
                created_at=now,
                updated_at=now
            )
            for request in requests
            if request.scheduled_time not in occupied
        ]

        cancelled = await self.repository.replace_future_pending(
            source.id, now, keep_ids=keep_ids, new_reminders=new_reminders
        )
        return ReminderSyncResult(
            reference_id=source.id,
            cancelled=cancelled,
            kept=len(keep_ids),
            created=new_reminders
        )

    async def get_reminder(self, reminder_id: UUID) -> Reminder:
        """
        Fetch one reminder.

        Raises:
            NotFoundError: If the reminder does not exist
        """
        reminder = await self.repository.get(reminder_id)
        if reminder is None:
            logger.warning(f"Reminder {reminder_id} not found")
            raise NotFoundError(f"Reminder {reminder_id} not found")
        return reminder

    async def mark_done(self, reminder_id: UUID) -> Reminder:
        """
        Complete a reminder. Already-Done reminders are returned unchanged.

        Raises:
            NotFoundError: If the reminder does not exist
        """
        reminder = await self.get_reminder(reminder_id)
        async with self._locks.hold(reminder.reference_id):
            reminder = await self.get_reminder(reminder_id)
            if reminder.status == ReminderStatus.DONE:
                return reminder

            reminder.status = ReminderStatus.DONE
            reminder.updated_at = self.clock.now()
            await self.repository.update(reminder)

        logger.info(f"Reminder {reminder_id} marked done")
        return reminder

    async def snooze(self, reminder_id: UUID, minutes: int) -> Reminder:
        """
        Push a pending reminder's scheduled time forward.

        Args:
            reminder_id: Reminder identifier
            minutes: Minutes to add, between 1 and max_snooze_minutes

        Raises:
            NotFoundError: If the reminder does not exist
            InvalidStateError: If the reminder is already Done
            ValueError: If minutes is out of range
        """
        if minutes < 1 or minutes > self.max_snooze_minutes:
            raise ValueError(f"Snooze must be between 1 and {self.max_snooze_minutes} minutes")

        reminder = await self.get_reminder(reminder_id)
        async with self._locks.hold(reminder.reference_id):
            reminder = await self.get_reminder(reminder_id)
            if reminder.status != ReminderStatus.PENDING:
                logger.warning(f"Cannot snooze reminder {reminder_id} in status {reminder.status.value}")
                raise InvalidStateError(
                    f"Cannot snooze reminder {reminder_id}: status is {reminder.status.value}"
                )

            if reminder.snoozed_from is None:
                reminder.snoozed_from = reminder.scheduled_time
            reminder.scheduled_time = reminder.scheduled_time + timedelta(minutes=minutes)
            reminder.updated_at = self.clock.now()
            await self.repository.update(reminder)

        logger.info(f"Reminder {reminder_id} snoozed {minutes} min to {reminder.scheduled_time}")
        return reminder

    async def mark_notified(self, reminder_id: UUID, scheduled_time: datetime) -> Reminder:
        """Record that the occurrence at scheduled_time was handed to delivery."""
        reminder = await self.get_reminder(reminder_id)
        async with self._locks.hold(reminder.reference_id):
            reminder = await self.get_reminder(reminder_id)
            reminder.notified_for = scheduled_time
            reminder.updated_at = self.clock.now()
            await self.repository.update(reminder)
        return reminder

    async def list_due(self, limit: int) -> List[Reminder]:
        """Pending reminders whose time has come and that were not fired yet, oldest first."""
        return await self.repository.list_due(self.clock.now(), limit)

    async def list_reminders(
        self,
        user_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        status: Optional[ReminderStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Reminder]:
        """
        Query reminders for read-only consumers.

        A status filter is applied to the effective status, so MISSED
        selects overdue pending reminders and PENDING excludes them.

        Returns:
            Reminders sorted by scheduled_time
        """
        stored = None
        if status is not None:
            stored = {ReminderStatus.DONE} if status == ReminderStatus.DONE else {ReminderStatus.PENDING}

        reminders = await self.repository.query(
            user_id=user_id,
            reference_id=reference_id,
            statuses=stored,
            start=start,
            end=end
        )
        if status is None:
            return reminders

        now = self.clock.now()
        return [r for r in reminders if effective_status(r, now) == status]
