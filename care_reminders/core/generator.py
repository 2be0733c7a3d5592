"""Occurrence window generation: expands rules into concrete reminder requests."""

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import List, Optional, Tuple

from care_reminders.core.models import (
    AppointmentSource,
    RecurrenceRule,
    ReminderRequest,
    ReminderSource,
    SourceType,
)
from care_reminders.core.recurrence import times_for_day, validate_rule

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 30


def default_window(
    rule: RecurrenceRule,
    today: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS
) -> Optional[Tuple[date, date]]:
    """
    Compute the generation window for a rule.

    The window starts at the later of today and active_from and spans
    horizon_days calendar days, cut short by active_until.

    Args:
        rule: Recurrence rule
        today: Current local date
        horizon_days: Number of days to cover

    Returns:
        Inclusive (start, end) dates, or None if the window is empty
    """
    start = max(today, rule.active_from)
    end = start + timedelta(days=horizon_days - 1)
    if rule.active_until is not None and rule.active_until < end:
        end = rule.active_until
    if end < start:
        return None
    return start, end


def generate(
    rule: RecurrenceRule,
    reference_id: str,
    user_id: str,
    window_start: date,
    window_end: date,
    source_type: SourceType = SourceType.MEDICATION
) -> List[ReminderRequest]:
    """
    Walk [window_start, window_end] day by day and emit one request per dose time.

    No deduplication against stored reminders happens here.

    Args:
        rule: Validated recurrence rule
        reference_id: Id of the source entity
        user_id: Owner of the reminders
        window_start: First day, inclusive
        window_end: Last day, inclusive
        source_type: Source kind stamped on each request

    Returns:
        Requests sorted by scheduled_time, unique per scheduled_time
    """
    requests = []
    day = window_start
    while day <= window_end:
        for time_of_day in times_for_day(rule, day):
            requests.append(ReminderRequest(
                user_id=user_id,
                source_type=source_type,
                reference_id=reference_id,
                scheduled_time=datetime.combine(day, time_of_day)
            ))
        day += timedelta(days=1)

    return requests


def _appointment_requests(
    source: AppointmentSource,
    today: date,
    zone: tzinfo
) -> List[ReminderRequest]:
    scheduled_at = source.scheduled_at
    # Offset-aware times are converted to the recipient's wall clock
    if scheduled_at.tzinfo is not None:
        scheduled_at = scheduled_at.astimezone(zone).replace(tzinfo=None)
    remind_at = scheduled_at - timedelta(minutes=source.lead_minutes)
    if remind_at.date() < today:
        return []
    return [ReminderRequest(
        user_id=source.user_id,
        source_type=SourceType.APPOINTMENT,
        reference_id=source.id,
        scheduled_time=remind_at
    )]


def validate_source(source: ReminderSource) -> None:
    """Raise InvalidRuleError if the source's schedule cannot be expanded."""
    if isinstance(source, AppointmentSource):
        return
    validate_rule(source.rule)


def generate_for_source(
    source: ReminderSource,
    today: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    zone: tzinfo = timezone.utc
) -> List[ReminderRequest]:
    """
    Expand a source into reminder requests over its default window.

    Args:
        source: Medication, health check or appointment
        today: Current local date
        horizon_days: Number of days to cover
        zone: Recipient's zone; naive times are taken as already in it

    Returns:
        Requests sorted by scheduled_time
    """
    validate_source(source)

    if isinstance(source, AppointmentSource):
        return _appointment_requests(source, today, zone)

    window = default_window(source.rule, today, horizon_days)
    if window is None:
        logger.debug(f"Empty generation window for {source.source_type} {source.id}")
        return []

    requests = generate(
        source.rule,
        reference_id=source.id,
        user_id=source.user_id,
        window_start=window[0],
        window_end=window[1],
        source_type=SourceType(source.source_type)
    )
    logger.debug(
        f"Generated {len(requests)} occurrences for {source.source_type} {source.id} "
        f"between {window[0]} and {window[1]}"
    )
    return requests
