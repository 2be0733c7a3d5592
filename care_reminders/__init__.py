"""Reminder recurrence engine and notification delivery tracking for elderly care."""

__version__ = "1.0.0"
