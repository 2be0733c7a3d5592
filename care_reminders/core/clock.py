"""Time sources for the engine."""

from datetime import datetime, timedelta, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Supplies "now" as naive wall-clock time in the care recipient's zone."""

    zone: tzinfo

    def now(self) -> datetime:
        ...


class SystemClock:
    """Clock backed by the system time, converted to a configured zone."""

    def __init__(self, timezone: str = "UTC"):
        self.zone = ZoneInfo(timezone)

    def now(self) -> datetime:
        return datetime.now(self.zone).replace(tzinfo=None, microsecond=0)


class FixedClock:
    """Manually advanced clock, used by tests and replays."""

    def __init__(self, current: datetime, timezone: str = "UTC"):
        self.current = current
        self.zone = ZoneInfo(timezone)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current
