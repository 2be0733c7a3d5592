"""Pydantic domain models for Care Reminders."""

from pydantic import BaseModel, Field, ConfigDict
from datetime import date, datetime, time
from enum import Enum
from typing import Annotated, Optional, List, Literal, Union
from uuid import UUID, uuid4


class RecurrenceKind(str, Enum):
    """How a source recurs."""

    DAILY = "Daily"
    WEEKLY = "Weekly"
    INTERVAL = "Interval"
    AS_NEEDED = "AsNeeded"  # Never scheduled


class SourceType(str, Enum):
    """Kind of entity a reminder was generated from."""

    MEDICATION = "Medication"
    APPOINTMENT = "Appointment"
    HEALTH = "Health"


class SourceStatus(str, Enum):
    """Lifecycle of a reminder source as reported by its CRUD layer."""

    ACTIVE = "Active"
    PAUSED = "Paused"
    COMPLETED = "Completed"


class ReminderStatus(str, Enum):
    """Reminder completion state. MISSED is only ever derived at read time."""

    PENDING = "Pending"
    DONE = "Done"
    MISSED = "Missed"


class NotificationStatus(str, Enum):
    """Notification delivery lifecycle."""

    SENT = "Sent"
    DELIVERED = "Delivered"
    READ = "Read"
    ACKNOWLEDGED = "Acknowledged"  # Terminal
    FAILED = "Failed"
    RETRYING = "Retrying"


class DeliveryChannel(str, Enum):
    """Transport used to reach the recipient."""

    MOBILE_PUSH = "MobilePush"
    EMAIL = "Email"
    IN_APP = "InApp"
    SMS = "SMS"


class RecipientType(str, Enum):
    """Who a notification is addressed to."""

    ELDERLY_USER = "ElderlyUser"
    CAREGIVER = "Caregiver"


class AttemptOutcome(str, Enum):
    """Result of a single delivery attempt."""

    PENDING = "Pending"
    SUCCESS = "Success"
    FAILURE = "Failure"


class RecurrenceRule(BaseModel):
    """
    Recurrence pattern embedded in a medication or health check.

    Weekday indices follow 0 = Sunday ... 6 = Saturday.
    Invariants are checked by recurrence.validate_rule, not on construction,
    so that a bad edit surfaces as InvalidRuleError.
    """

    kind: RecurrenceKind
    times_of_day: List[time] = Field(default_factory=list)
    days_of_week: List[int] = Field(default_factory=list)
    interval_days: Optional[int] = None
    active_from: date
    active_until: Optional[date] = None


class MedicationSource(BaseModel):
    """Medication as delivered by the medication change feed."""

    source_type: Literal["Medication"] = "Medication"
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    dosage: Optional[str] = None
    instructions: Optional[str] = None
    status: SourceStatus = SourceStatus.ACTIVE
    rule: RecurrenceRule


class HealthCheckSource(BaseModel):
    """Recurring health measurement (blood pressure, weight, ...)."""

    source_type: Literal["Health"] = "Health"
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    status: SourceStatus = SourceStatus.ACTIVE
    rule: RecurrenceRule


class AppointmentSource(BaseModel):
    """One-off appointment, reminded once ahead of time."""

    source_type: Literal["Appointment"] = "Appointment"
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    status: SourceStatus = SourceStatus.ACTIVE
    scheduled_at: datetime
    lead_minutes: int = Field(default=60, ge=0)


ReminderSource = Annotated[
    Union[MedicationSource, HealthCheckSource, AppointmentSource],
    Field(discriminator="source_type"),
]


class ReminderRequest(BaseModel):
    """One concrete occurrence produced by the window generator."""

    user_id: str
    source_type: SourceType
    reference_id: str
    scheduled_time: datetime


class Reminder(BaseModel):
    """Persisted, actionable occurrence."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    source_type: SourceType
    reference_id: str
    scheduled_time: datetime
    status: ReminderStatus = ReminderStatus.PENDING
    snoozed_from: Optional[datetime] = None
    notified_for: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class DeliveryAttempt(BaseModel):
    """Single delivery attempt in a notification's audit trail."""

    model_config = ConfigDict(from_attributes=True)

    attempt_number: int = Field(..., ge=1)
    attempted_at: datetime
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    channel: DeliveryChannel
    error_reason: Optional[str] = None


class Notification(BaseModel):
    """Delivery record for a fired reminder. Never deleted."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    source_reminder_id: UUID
    scheduled_time: datetime
    source_type: SourceType
    reference_id: str
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=1000)
    delivery_channel: DeliveryChannel
    recipient_type: RecipientType
    status: NotificationStatus = NotificationStatus.SENT
    sent_at: datetime
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    delivery_attempts: List[DeliveryAttempt] = Field(default_factory=list)
    version: int = 1
    created_at: datetime
    updated_at: datetime


class DeliveryResult(BaseModel):
    """Answer of a delivery channel for one attempt."""

    success: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "DeliveryResult":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> "DeliveryResult":
        return cls(success=False, reason=reason)


class ReminderSyncResult(BaseModel):
    """Outcome of reconciling a source's future reminders with its current schedule."""

    reference_id: str
    cancelled: int = 0
    kept: int = 0
    created: List[Reminder] = Field(default_factory=list)
