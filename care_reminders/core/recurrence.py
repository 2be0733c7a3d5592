"""Recurrence evaluation: decides which calendar days and times a rule fires on."""

from datetime import date, time
from typing import List

from care_reminders.core.exceptions import InvalidRuleError
from care_reminders.core.models import RecurrenceKind, RecurrenceRule

SCHEDULED_KINDS = {RecurrenceKind.DAILY, RecurrenceKind.WEEKLY, RecurrenceKind.INTERVAL}


def weekday_index(day: date) -> int:
    """Weekday of day with 0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7


def normalized_times(rule: RecurrenceRule) -> List[time]:
    """Rule times deduplicated and sorted ascending."""
    return sorted(set(rule.times_of_day))


def validate_rule(rule: RecurrenceRule) -> None:
    """
    Check rule invariants.

    Args:
        rule: Rule to check

    Raises:
        InvalidRuleError: If the rule cannot be expanded into occurrences
    """
    if rule.active_until is not None and rule.active_until < rule.active_from:
        raise InvalidRuleError(
            f"active_until {rule.active_until} is before active_from {rule.active_from}"
        )

    if rule.kind == RecurrenceKind.AS_NEEDED:
        return

    if not rule.times_of_day:
        raise InvalidRuleError(f"{rule.kind.value} rule needs at least one time of day")

    if rule.kind == RecurrenceKind.WEEKLY:
        if not rule.days_of_week:
            raise InvalidRuleError("Weekly rule needs at least one day of week")
        out_of_range = [d for d in rule.days_of_week if d < 0 or d > 6]
        if out_of_range:
            raise InvalidRuleError(
                f"Weekly rule has days outside 0-6 (Sunday-Saturday): {out_of_range}"
            )

    if rule.kind == RecurrenceKind.INTERVAL:
        if rule.interval_days is None or rule.interval_days < 1:
            raise InvalidRuleError(
                f"Interval rule needs a positive interval_days, got {rule.interval_days}"
            )


def is_active_on(rule: RecurrenceRule, day: date) -> bool:
    """Whether day lies inside the rule's active window."""
    if day < rule.active_from:
        return False
    if rule.active_until is not None and day > rule.active_until:
        return False
    return True


def is_dose_day(rule: RecurrenceRule, day: date, anchor_date: date) -> bool:
    """
    Decide whether the rule fires on day.

    Interval cadence counts from anchor_date (the medication's start date),
    not from a calendar epoch.

    Args:
        rule: Recurrence rule
        day: Calendar day to test
        anchor_date: Start of the interval cadence

    Returns:
        True if at least one occurrence falls on day
    """
    if rule.kind not in SCHEDULED_KINDS:
        return False

    if not is_active_on(rule, day):
        return False

    if rule.kind == RecurrenceKind.DAILY:
        return True

    if rule.kind == RecurrenceKind.WEEKLY:
        return weekday_index(day) in set(rule.days_of_week)

    # Interval
    offset = (day - anchor_date).days
    return offset >= 0 and offset % rule.interval_days == 0


def times_for_day(rule: RecurrenceRule, day: date) -> List[time]:
    """
    Times of day at which the rule fires on day.

    Returns:
        Sorted, deduplicated times; empty when day is not a dose day
    """
    if not is_dose_day(rule, day, rule.active_from):
        return []
    return normalized_times(rule)
