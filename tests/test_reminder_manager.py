"""Tests for reminder lifecycle management."""

import asyncio
import pytest
from datetime import datetime, time
from uuid import uuid4

from care_reminders.core.exceptions import InvalidRuleError, InvalidStateError, NotFoundError
from care_reminders.core.models import (
    AppointmentSource,
    RecurrenceKind,
    Reminder,
    ReminderStatus,
    SourceStatus,
)
from care_reminders.core.reminder_manager import effective_status


def _with_times(medication, *times):
    rule = medication.rule.model_copy(update={"times_of_day": list(times)})
    return medication.model_copy(update={"rule": rule})


async def _find(manager, scheduled_time):
    reminders = await manager.list_reminders(reference_id="med_1")
    return next(r for r in reminders if r.scheduled_time == scheduled_time)


@pytest.mark.asyncio
async def test_source_created_schedules_thirty_days(reminder_manager, reminder_repository, medication):
    """Twice daily over 30 days gives 60 pending reminders."""
    result = await reminder_manager.on_source_created(medication)

    assert len(result.created) == 60
    assert len(reminder_repository) == 60
    reminders = await reminder_manager.list_reminders(reference_id="med_1")
    assert all(r.status == ReminderStatus.PENDING for r in reminders)
    assert reminders[0].scheduled_time == datetime(2024, 1, 1, 8, 0)


@pytest.mark.asyncio
async def test_paused_source_created_schedules_nothing(reminder_manager, reminder_repository, medication):
    paused = medication.model_copy(update={"status": SourceStatus.PAUSED})

    result = await reminder_manager.on_source_created(paused)

    assert result.created == []
    assert len(reminder_repository) == 0


@pytest.mark.asyncio
async def test_appointment_created_schedules_one_reminder(reminder_manager):
    appointment = AppointmentSource(
        id="appt_1",
        user_id="user_1",
        title="Eye exam",
        scheduled_at=datetime(2024, 1, 4, 10, 0),
        lead_minutes=60
    )

    result = await reminder_manager.on_source_created(appointment)

    assert [r.scheduled_time for r in result.created] == [datetime(2024, 1, 4, 9, 0)]


@pytest.mark.asyncio
async def test_repeated_update_is_idempotent(reminder_manager, reminder_repository, medication):
    await reminder_manager.on_source_created(medication)
    before = [r.scheduled_time for r in await reminder_manager.list_reminders(reference_id="med_1")]

    await reminder_manager.on_source_updated(medication)
    await reminder_manager.on_source_updated(medication)

    after = [r.scheduled_time for r in await reminder_manager.list_reminders(reference_id="med_1")]
    assert after == before
    assert len(reminder_repository) == 60


@pytest.mark.asyncio
async def test_update_keeps_past_and_done_reminders(reminder_manager, reminder_repository, medication, clock):
    await reminder_manager.on_source_created(medication)
    first = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))
    await reminder_manager.mark_done(first.id)
    clock.current = datetime(2024, 1, 3, 12, 0)

    result = await reminder_manager.on_source_updated(_with_times(medication, time(9, 0)))

    # Jan 3 20:00 and two doses a day for Jan 4 to Jan 30
    assert result.cancelled == 55
    # Jan 3 to Feb 1 at 09:00
    assert len(result.created) == 30
    assert len(reminder_repository) == 35
    assert (await reminder_manager.get_reminder(first.id)).status == ReminderStatus.DONE

    # The Jan 3 09:00 occurrence is now past; a second update must not duplicate it
    again = await reminder_manager.on_source_updated(_with_times(medication, time(9, 0)))
    assert again.cancelled == 29
    assert len(again.created) == 29
    assert len(reminder_repository) == 35


@pytest.mark.asyncio
async def test_pause_and_resume(reminder_manager, reminder_repository, medication, clock):
    await reminder_manager.on_source_created(medication)
    for hour in (8, 20):
        reminder = await _find(reminder_manager, datetime(2024, 1, 1, hour, 0))
        await reminder_manager.mark_done(reminder.id)
    clock.current = datetime(2024, 1, 3, 12, 0)

    paused = await reminder_manager.on_source_paused(
        medication.model_copy(update={"status": SourceStatus.PAUSED})
    )

    assert paused.cancelled == 55
    assert paused.created == []
    remaining = await reminder_manager.list_reminders(reference_id="med_1")
    assert len(remaining) == 5
    assert len([r for r in remaining if r.status == ReminderStatus.DONE]) == 2
    assert all(r.scheduled_time <= clock.now() for r in remaining)

    resumed = await reminder_manager.on_source_resumed(medication)

    # Jan 3 08:00 is already on record
    assert len(resumed.created) == 59
    assert len(reminder_repository) == 64


@pytest.mark.asyncio
async def test_invalid_update_leaves_reminders_untouched(reminder_manager, reminder_repository, medication):
    await reminder_manager.on_source_created(medication)
    rule = medication.rule.model_copy(update={"kind": RecurrenceKind.WEEKLY, "days_of_week": []})
    broken = medication.model_copy(update={"rule": rule})

    with pytest.raises(InvalidRuleError):
        await reminder_manager.on_source_updated(broken)

    assert len(reminder_repository) == 60


@pytest.mark.asyncio
async def test_update_keeps_snoozed_reminder_while_time_still_scheduled(
    reminder_manager, reminder_repository, medication
):
    await reminder_manager.on_source_created(medication)
    reminder = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))
    snoozed = await reminder_manager.snooze(reminder.id, 30)

    result = await reminder_manager.on_source_updated(medication)

    assert result.kept == 1
    kept = await reminder_manager.get_reminder(snoozed.id)
    assert kept.scheduled_time == datetime(2024, 1, 1, 8, 30)
    assert kept.snoozed_from == datetime(2024, 1, 1, 8, 0)
    times = [r.scheduled_time for r in await reminder_manager.list_reminders(reference_id="med_1")]
    assert datetime(2024, 1, 1, 8, 0) not in times
    assert len(reminder_repository) == 60


@pytest.mark.asyncio
async def test_update_drops_snoozed_reminder_when_time_removed(reminder_manager, medication):
    await reminder_manager.on_source_created(medication)
    reminder = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))
    snoozed = await reminder_manager.snooze(reminder.id, 30)

    result = await reminder_manager.on_source_updated(_with_times(medication, time(9, 0), time(20, 0)))

    assert result.kept == 0
    with pytest.raises(NotFoundError):
        await reminder_manager.get_reminder(snoozed.id)


@pytest.mark.asyncio
async def test_source_deleted_keeps_history(reminder_manager, medication, clock):
    await reminder_manager.on_source_created(medication)
    clock.current = datetime(2024, 1, 2, 12, 0)

    result = await reminder_manager.on_source_deleted("med_1")

    assert result.cancelled == 57
    remaining = await reminder_manager.list_reminders(reference_id="med_1")
    assert [r.scheduled_time for r in remaining] == [
        datetime(2024, 1, 1, 8, 0),
        datetime(2024, 1, 1, 20, 0),
        datetime(2024, 1, 2, 8, 0),
    ]


@pytest.mark.asyncio
async def test_concurrent_updates_do_not_duplicate(reminder_manager, reminder_repository, medication):
    await reminder_manager.on_source_created(medication)

    await asyncio.gather(*[reminder_manager.on_source_updated(medication) for _ in range(5)])

    assert len(reminder_repository) == 60


@pytest.mark.asyncio
async def test_mark_done_is_idempotent(reminder_manager, medication):
    await reminder_manager.on_source_created(medication)
    reminder = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))

    done = await reminder_manager.mark_done(reminder.id)
    again = await reminder_manager.mark_done(reminder.id)

    assert done.status == ReminderStatus.DONE
    assert again.status == ReminderStatus.DONE
    assert again.updated_at == done.updated_at


@pytest.mark.asyncio
async def test_unknown_reminder_raises_not_found(reminder_manager):
    with pytest.raises(NotFoundError):
        await reminder_manager.mark_done(uuid4())
    with pytest.raises(NotFoundError):
        await reminder_manager.snooze(uuid4(), 10)


@pytest.mark.asyncio
async def test_snooze_moves_time_forward(reminder_manager, medication):
    await reminder_manager.on_source_created(medication)
    reminder = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))

    first = await reminder_manager.snooze(reminder.id, 15)
    second = await reminder_manager.snooze(reminder.id, 15)

    assert first.scheduled_time == datetime(2024, 1, 1, 8, 15)
    assert second.scheduled_time == datetime(2024, 1, 1, 8, 30)
    assert second.snoozed_from == datetime(2024, 1, 1, 8, 0)
    assert second.status == ReminderStatus.PENDING


@pytest.mark.asyncio
async def test_snooze_done_reminder_rejected(reminder_manager, medication):
    await reminder_manager.on_source_created(medication)
    reminder = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))
    await reminder_manager.mark_done(reminder.id)

    with pytest.raises(InvalidStateError):
        await reminder_manager.snooze(reminder.id, 10)


@pytest.mark.asyncio
@pytest.mark.parametrize("minutes", [0, -5, 1441])
async def test_snooze_out_of_range(reminder_manager, medication, minutes):
    await reminder_manager.on_source_created(medication)
    reminder = await _find(reminder_manager, datetime(2024, 1, 1, 8, 0))

    with pytest.raises(ValueError):
        await reminder_manager.snooze(reminder.id, minutes)


@pytest.mark.asyncio
async def test_list_reminders_filters_on_effective_status(reminder_manager, medication, clock):
    await reminder_manager.on_source_created(medication)
    clock.current = datetime(2024, 1, 1, 12, 0)

    missed = await reminder_manager.list_reminders(status=ReminderStatus.MISSED)
    pending = await reminder_manager.list_reminders(status=ReminderStatus.PENDING)

    assert [r.scheduled_time for r in missed] == [datetime(2024, 1, 1, 8, 0)]
    assert len(pending) == 59


@pytest.mark.asyncio
async def test_list_reminders_by_range(reminder_manager, medication):
    await reminder_manager.on_source_created(medication)

    reminders = await reminder_manager.list_reminders(
        user_id="user_1",
        start=datetime(2024, 1, 2, 0, 0),
        end=datetime(2024, 1, 2, 23, 59)
    )

    assert [r.scheduled_time.hour for r in reminders] == [8, 20]


def test_effective_status():
    now = datetime(2024, 1, 2, 12, 0)
    reminder = Reminder(
        user_id="user_1",
        source_type="Medication",
        reference_id="med_1",
        scheduled_time=datetime(2024, 1, 2, 8, 0),
        created_at=now,
        updated_at=now
    )

    assert effective_status(reminder, now) == ReminderStatus.MISSED
    assert effective_status(reminder, datetime(2024, 1, 2, 7, 0)) == ReminderStatus.PENDING
    done = reminder.model_copy(update={"status": ReminderStatus.DONE})
    assert effective_status(done, now) == ReminderStatus.DONE


@pytest.mark.asyncio
async def test_snooze_onto_another_dose_time_keeps_both_doses(reminder_manager, medication):
    """Morning dose snoozed to 20:00 must not replace the evening dose."""
    await reminder_manager.on_source_created(medication)
    morning = await _find(reminder_manager, datetime(2024, 1, 2, 8, 0))
    await reminder_manager.snooze(morning.id, 720)

    result = await reminder_manager.on_source_updated(medication)

    assert result.kept == 1
    day = await reminder_manager.list_reminders(
        reference_id="med_1",
        start=datetime(2024, 1, 2, 0, 0),
        end=datetime(2024, 1, 2, 23, 59)
    )
    assert len(day) == 2
    assert sorted(r.snoozed_from is None for r in day) == [False, True]
    assert all(r.scheduled_time == datetime(2024, 1, 2, 20, 0) for r in day)


@pytest.mark.asyncio
async def test_appointment_with_offset_uses_recipient_zone(reminder_manager):
    """10:00 at +08:00 is 02:00 UTC; one hour earlier is 01:00."""
    appointment = AppointmentSource(
        id="appt_2",
        user_id="user_1",
        title="Physiotherapy",
        scheduled_at=datetime.fromisoformat("2024-01-05T10:00:00+08:00"),
        lead_minutes=60
    )

    result = await reminder_manager.on_source_created(appointment)

    assert [r.scheduled_time for r in result.created] == [datetime(2024, 1, 5, 1, 0)]
