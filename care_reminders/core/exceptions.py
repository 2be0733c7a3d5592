"""Errors raised by the reminder engine and notification state machine."""


class ReminderEngineError(Exception):
    """Base class for caller errors surfaced by the core."""


class NotFoundError(ReminderEngineError):
    """Operation referenced a reminder or notification that does not exist."""


class InvalidStateError(ReminderEngineError):
    """Operation is not valid in the reminder's current lifecycle state."""


class InvalidTransitionError(ReminderEngineError):
    """Illegal notification status transition."""


class InvalidRuleError(ReminderEngineError):
    """Recurrence rule or source schedule fails its invariants."""


class ConcurrentUpdateError(ReminderEngineError):
    """A notification was modified by another writer since it was read."""
