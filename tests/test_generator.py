"""Tests for occurrence window generation."""

import pytest
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from care_reminders.core.exceptions import InvalidRuleError
from care_reminders.core.generator import default_window, generate, generate_for_source
from care_reminders.core.models import (
    AppointmentSource,
    HealthCheckSource,
    MedicationSource,
    RecurrenceKind,
    RecurrenceRule,
    SourceType,
)


def test_thirty_day_window_twice_daily(twice_daily_rule):
    """30 days of 08:00 and 20:00 doses give 60 requests."""
    window = default_window(twice_daily_rule, date(2024, 1, 1), horizon_days=30)
    assert window == (date(2024, 1, 1), date(2024, 1, 30))

    requests = generate(twice_daily_rule, "med_1", "user_1", *window)

    assert len(requests) == 60
    assert requests[0].scheduled_time == datetime(2024, 1, 1, 8, 0)
    assert requests[-1].scheduled_time == datetime(2024, 1, 30, 20, 0)


def test_output_sorted_and_unique(twice_daily_rule):
    requests = generate(twice_daily_rule, "med_1", "user_1", date(2024, 1, 1), date(2024, 1, 10))

    times = [r.scheduled_time for r in requests]
    assert times == sorted(times)
    assert len(set(times)) == len(times)


def test_every_other_day():
    rule = RecurrenceRule(
        kind=RecurrenceKind.INTERVAL,
        times_of_day=[time(9, 0)],
        interval_days=2,
        active_from=date(2024, 1, 1)
    )

    requests = generate(rule, "med_2", "user_1", date(2024, 1, 1), date(2024, 1, 10))

    assert [r.scheduled_time.day for r in requests] == [1, 3, 5, 7, 9]


def test_weekly_generation():
    """Sundays only, over two weeks."""
    rule = RecurrenceRule(
        kind=RecurrenceKind.WEEKLY,
        times_of_day=[time(10, 0)],
        days_of_week=[0],
        active_from=date(2024, 1, 1)
    )

    requests = generate(rule, "med_3", "user_1", date(2024, 1, 1), date(2024, 1, 14))

    assert [r.scheduled_time for r in requests] == [
        datetime(2024, 1, 7, 10, 0),
        datetime(2024, 1, 14, 10, 0),
    ]


def test_window_cut_by_active_until():
    rule = RecurrenceRule(
        kind=RecurrenceKind.DAILY,
        times_of_day=[time(8, 0)],
        active_from=date(2024, 1, 1),
        active_until=date(2024, 1, 5)
    )

    window = default_window(rule, date(2024, 1, 3), horizon_days=30)
    assert window == (date(2024, 1, 3), date(2024, 1, 5))
    assert len(generate(rule, "med_4", "user_1", *window)) == 3


def test_window_empty_after_course_ends():
    rule = RecurrenceRule(
        kind=RecurrenceKind.DAILY,
        times_of_day=[time(8, 0)],
        active_from=date(2023, 12, 1),
        active_until=date(2023, 12, 31)
    )

    assert default_window(rule, date(2024, 1, 1)) is None


def test_window_starts_at_future_active_from():
    rule = RecurrenceRule(
        kind=RecurrenceKind.DAILY,
        times_of_day=[time(8, 0)],
        active_from=date(2024, 1, 20)
    )

    assert default_window(rule, date(2024, 1, 1), horizon_days=5) == (
        date(2024, 1, 20), date(2024, 1, 24)
    )


def test_generate_for_medication_source(medication):
    requests = generate_for_source(medication, date(2024, 1, 1), horizon_days=7)

    assert len(requests) == 14
    assert all(r.reference_id == "med_1" for r in requests)
    assert all(r.user_id == "user_1" for r in requests)
    assert all(r.source_type == SourceType.MEDICATION for r in requests)


def test_generate_for_health_check_source(twice_daily_rule):
    source = HealthCheckSource(id="bp_1", user_id="user_1", name="Blood pressure", rule=twice_daily_rule)

    requests = generate_for_source(source, date(2024, 1, 1), horizon_days=1)

    assert [r.source_type for r in requests] == [SourceType.HEALTH, SourceType.HEALTH]


def test_generate_for_appointment_source():
    source = AppointmentSource(
        id="appt_1",
        user_id="user_1",
        title="Cardiology check-up",
        scheduled_at=datetime(2024, 1, 5, 14, 30),
        lead_minutes=90
    )

    requests = generate_for_source(source, date(2024, 1, 1))

    assert len(requests) == 1
    assert requests[0].scheduled_time == datetime(2024, 1, 5, 13, 0)
    assert requests[0].source_type == SourceType.APPOINTMENT


def test_past_appointment_generates_nothing():
    source = AppointmentSource(
        id="appt_2",
        user_id="user_1",
        title="Dentist",
        scheduled_at=datetime(2023, 12, 20, 9, 0)
    )

    assert generate_for_source(source, date(2024, 1, 1)) == []


def test_invalid_source_rule_raises():
    source = MedicationSource(
        id="med_5",
        user_id="user_1",
        name="Aspirin",
        rule=RecurrenceRule(kind=RecurrenceKind.INTERVAL, times_of_day=[time(8, 0)], active_from=date(2024, 1, 1))
    )

    with pytest.raises(InvalidRuleError):
        generate_for_source(source, date(2024, 1, 1))


def test_appointment_offset_converted_to_zone():
    source = AppointmentSource(
        id="appt_3",
        user_id="user_1",
        title="Blood test",
        scheduled_at=datetime.fromisoformat("2024-01-05T10:00:00+08:00"),
        lead_minutes=60
    )

    in_utc = generate_for_source(source, date(2024, 1, 1))
    in_berlin = generate_for_source(source, date(2024, 1, 1), zone=ZoneInfo("Europe/Berlin"))

    assert in_utc[0].scheduled_time == datetime(2024, 1, 5, 1, 0)
    assert in_berlin[0].scheduled_time == datetime(2024, 1, 5, 2, 0)
