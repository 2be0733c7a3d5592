"""PostgreSQL-backed reminder and notification repositories."""

import logging
from datetime import datetime
from typing import List, Optional, Set
from uuid import UUID

from care_reminders.core.exceptions import ConcurrentUpdateError, NotFoundError
from care_reminders.core.models import (
    AttemptOutcome,
    DeliveryAttempt,
    DeliveryChannel,
    Notification,
    NotificationStatus,
    RecipientType,
    Reminder,
    ReminderStatus,
    SourceType,
)
from care_reminders.db.pool import DatabasePool

logger = logging.getLogger(__name__)

REMINDER_COLUMNS = """
    id, user_id, source_type, reference_id, scheduled_time, status,
    snoozed_from, notified_for, created_at, updated_at
"""

NOTIFICATION_COLUMNS = """
    id, user_id, source_reminder_id, scheduled_time, source_type, reference_id,
    title, message, delivery_channel, recipient_type, status, sent_at,
    delivered_at, read_at, acknowledged_at, failure_reason, retry_count,
    version, created_at, updated_at
"""


def _reminder_from_row(row) -> Reminder:
    return Reminder(
        id=row["id"],
        user_id=row["user_id"],
        source_type=SourceType(row["source_type"]),
        reference_id=row["reference_id"],
        scheduled_time=row["scheduled_time"],
        status=ReminderStatus(row["status"]),
        snoozed_from=row["snoozed_from"],
        notified_for=row["notified_for"],
        created_at=row["created_at"],
        updated_at=row["updated_at"]
    )


def _reminder_args(reminder: Reminder) -> tuple:
    return (
        reminder.id,
        reminder.user_id,
        reminder.source_type.value,
        reminder.reference_id,
        reminder.scheduled_time,
        reminder.status.value,
        reminder.snoozed_from,
        reminder.notified_for,
        reminder.created_at,
        reminder.updated_at,
    )


class PostgresReminderRepository:
    """Reminder storage in the reminders table."""

    def __init__(self, db_pool: DatabasePool):
        self.db_pool = db_pool

    async def get(self, reminder_id: UUID) -> Optional[Reminder]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {REMINDER_COLUMNS} FROM reminders WHERE id = $1",
                reminder_id
            )
        return _reminder_from_row(row) if row else None

    async def add_many(self, reminders: List[Reminder]) -> None:
        if not reminders:
            return
        async with self.db_pool.acquire() as conn:
            await conn.executemany(
                f"""
                INSERT INTO reminders ({REMINDER_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                [_reminder_args(r) for r in reminders]
            )

    async def update(self, reminder: Reminder) -> Reminder:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE reminders
                SET scheduled_time = $2, status = $3, snoozed_from = $4,
                    notified_for = $5, updated_at = $6
                WHERE id = $1
                """,
                reminder.id,
                reminder.scheduled_time,
                reminder.status.value,
                reminder.snoozed_from,
                reminder.notified_for,
                reminder.updated_at
            )
        if result == "UPDATE 0":
            raise NotFoundError(f"Reminder {reminder.id} not found")
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
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {REMINDER_COLUMNS}
                FROM reminders
                WHERE ($1::text IS NULL OR user_id = $1)
                  AND ($2::text IS NULL OR reference_id = $2)
                  AND ($3::text[] IS NULL OR status = ANY($3::text[]))
                  AND ($4::timestamp IS NULL OR scheduled_time >= $4)
                  AND ($5::timestamp IS NULL OR scheduled_time <= $5)
                ORDER BY scheduled_time, created_at
                """,
                user_id,
                reference_id,
                [s.value for s in statuses] if statuses else None,
                start,
                end
            )
        return [_reminder_from_row(row) for row in rows]

    async def list_due(self, now: datetime, limit: int) -> List[Reminder]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {REMINDER_COLUMNS}
                FROM reminders
                WHERE status = 'Pending'
                  AND scheduled_time <= $1
                  AND notified_for IS DISTINCT FROM scheduled_time
                  AND (snoozed_from IS NOT NULL OR scheduled_time >= created_at)
                ORDER BY scheduled_time
                LIMIT $2
                """,
                now,
                limit
            )
        return [_reminder_from_row(row) for row in rows]

    async def replace_future_pending(
        self,
        reference_id: str,
        now: datetime,
        keep_ids: Set[UUID],
        new_reminders: List[Reminder]
    ) -> int:
        # Cancel and insert commit together, cancel first
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    DELETE FROM reminders
                    WHERE reference_id = $1
                      AND status = 'Pending'
                      AND scheduled_time > $2
                      AND NOT (id = ANY($3::uuid[]))
                    """,
                    reference_id,
                    now,
                    list(keep_ids)
                )
                if new_reminders:
                    await conn.executemany(
                        f"""
                        INSERT INTO reminders ({REMINDER_COLUMNS})
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        """,
                        [_reminder_args(r) for r in new_reminders]
                    )
        cancelled = int(result.split()[-1])
        logger.debug(
            f"Replaced future reminders of {reference_id}: "
            f"cancelled {cancelled}, inserted {len(new_reminders)}"
        )
        return cancelled


class PostgresNotificationRepository:
    """Notification storage in the notifications and delivery_attempts tables."""

    def __init__(self, db_pool: DatabasePool):
        self.db_pool = db_pool

    async def _load(self, conn, rows) -> List[Notification]:
        if not rows:
            return []
        attempt_rows = await conn.fetch(
            """
            SELECT notification_id, attempt_number, attempted_at, outcome, channel, error_reason
            FROM delivery_attempts
            WHERE notification_id = ANY($1::uuid[])
            ORDER BY notification_id, attempt_number
            """,
            [row["id"] for row in rows]
        )
        attempts = {}
        for a in attempt_rows:
            attempts.setdefault(a["notification_id"], []).append(DeliveryAttempt(
                attempt_number=a["attempt_number"],
                attempted_at=a["attempted_at"],
                outcome=AttemptOutcome(a["outcome"]),
                channel=DeliveryChannel(a["channel"]),
                error_reason=a["error_reason"]
            ))

        return [
            Notification(
                id=row["id"],
                user_id=row["user_id"],
                source_reminder_id=row["source_reminder_id"],
                scheduled_time=row["scheduled_time"],
                source_type=SourceType(row["source_type"]),
                reference_id=row["reference_id"],
                title=row["title"],
                message=row["message"],
                delivery_channel=DeliveryChannel(row["delivery_channel"]),
                recipient_type=RecipientType(row["recipient_type"]),
                status=NotificationStatus(row["status"]),
                sent_at=row["sent_at"],
                delivered_at=row["delivered_at"],
                read_at=row["read_at"],
                acknowledged_at=row["acknowledged_at"],
                failure_reason=row["failure_reason"],
                retry_count=row["retry_count"],
                delivery_attempts=attempts.get(row["id"], []),
                version=row["version"],
                created_at=row["created_at"],
                updated_at=row["updated_at"]
            )
            for row in rows
        ]

    async def _write_attempts(self, conn, notification: Notification):
        # Resolved attempts are immutable; only a trailing Pending one may change
        await conn.executemany(
            """
            INSERT INTO delivery_attempts
            (notification_id, attempt_number, attempted_at, outcome, channel, error_reason)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (notification_id, attempt_number) DO UPDATE
            SET outcome = EXCLUDED.outcome, error_reason = EXCLUDED.error_reason
            WHERE delivery_attempts.outcome = 'Pending'
            """,
            [
                (
                    notification.id,
                    a.attempt_number,
                    a.attempted_at,
                    a.outcome.value,
                    a.channel.value,
                    a.error_reason
                )
                for a in notification.delivery_attempts
            ]
        )

    async def get(self, notification_id: UUID) -> Optional[Notification]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {NOTIFICATION_COLUMNS} FROM notifications WHERE id = $1",
                notification_id
            )
            loaded = await self._load(conn, rows)
        return loaded[0] if loaded else None

    async def add(self, notification: Notification) -> Notification:
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"""
                    INSERT INTO notifications ({NOTIFICATION_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10,
                            $11, $12, $13, $14, $15, $16, $17, $18, $19, $20)
                    """,
                    notification.id,
                    notification.user_id,
                    notification.source_reminder_id,
                    notification.scheduled_time,
                    notification.source_type.value,
                    notification.reference_id,
                    notification.title,
                    notification.message,
                    notification.delivery_channel.value,
                    notification.recipient_type.value,
                    notification.status.value,
                    notification.sent_at,
                    notification.delivered_at,
                    notification.read_at,
                    notification.acknowledged_at,
                    notification.failure_reason,
                    notification.retry_count,
                    notification.version,
                    notification.created_at,
                    notification.updated_at
                )
                await self._write_attempts(conn, notification)
        return notification

    async def find_for_occurrence(
        self,
        reminder_id: UUID,
        scheduled_time: datetime
    ) -> Optional[Notification]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {NOTIFICATION_COLUMNS}
                FROM notifications
                WHERE source_reminder_id = $1 AND scheduled_time = $2
                """,
                reminder_id,
                scheduled_time
            )
            loaded = await self._load(conn, rows)
        return loaded[0] if loaded else None

    async def save(self, notification: Notification, expected_version: int) -> Notification:
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    UPDATE notifications
                    SET status = $3, delivered_at = $4, read_at = $5,
                        acknowledged_at = $6, failure_reason = $7, retry_count = $8,
                        version = $9, updated_at = $10
                    WHERE id = $1 AND version = $2
                    """,
                    notification.id,
                    expected_version,
                    notification.status.value,
                    notification.delivered_at,
                    notification.read_at,
                    notification.acknowledged_at,
                    notification.failure_reason,
                    notification.retry_count,
                    notification.version,
                    notification.updated_at
                )
                if result == "UPDATE 0":
                    exists = await conn.fetchval(
                        "SELECT version FROM notifications WHERE id = $1", notification.id
                    )
                    if exists is None:
                        raise NotFoundError(f"Notification {notification.id} not found")
                    raise ConcurrentUpdateError(
                        f"Notification {notification.id} is at version {exists}, "
                        f"expected {expected_version}"
                    )
                await self._write_attempts(conn, notification)
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
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {NOTIFICATION_COLUMNS}
                FROM notifications
                WHERE ($1::text IS NULL OR user_id = $1)
                  AND ($2::text[] IS NULL OR status = ANY($2::text[]))
                  AND ($3::timestamp IS NULL OR sent_at >= $3)
                  AND ($4::timestamp IS NULL OR sent_at <= $4)
                ORDER BY sent_at DESC
                OFFSET $5
                LIMIT $6
                """,
                user_id,
                [s.value for s in statuses] if statuses else None,
                start,
                end,
                offset,
                limit
            )
            return await self._load(conn, rows)
