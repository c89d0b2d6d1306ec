"""
Domain models for maintenance reminders.

ScheduledMaintenance is read from the maintenance-tracking tables and never
mutated here. DeliveryLogEntry is the idempotency record keyed by
(recipient_id, entity_id, kind); DeliveryJob is the in-memory unit of work
owned by the delivery queue.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from bikemanager.infrastructure.clock import ensure_utc


class NotificationKind(StrEnum):
    MAINTENANCE_REMINDER = "maintenance-reminder"
    PASSWORD_RESET = "password-reset"


class DeliveryStatus(StrEnum):
    PENDING = "pending"  # claimed by a queue session, not yet sent
    SENT = "sent"
    FAILED = "failed"


class JobStatus(StrEnum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"


class ScheduledMaintenance(BaseModel):
    """A maintenance appointment joined with the bike and owner it notifies."""

    id: str
    bike_id: str
    bike_name: str = ""
    owner_id: str
    owner_email: str
    owner_name: str = ""
    scheduled_date: datetime
    service_description: str
    notification_days_before: int = Field(default=0, ge=0)
    is_completed: bool = False

    @field_validator("scheduled_date")
    @classmethod
    def _normalize_scheduled_date(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def reminder_instant(self) -> datetime:
        return self.scheduled_date - timedelta(days=self.notification_days_before)

    def is_due(self, now: datetime) -> bool:
        return not self.is_completed and ensure_utc(now) >= self.reminder_instant()

    def days_until(self, now: datetime) -> int:
        """Whole days left before the appointment, rounded up and never negative."""
        remaining = (self.scheduled_date - ensure_utc(now)).total_seconds() / 86400
        return max(0, math.ceil(remaining))


@dataclass(frozen=True, slots=True)
class DedupKey:
    recipient_id: str
    entity_id: str
    kind: NotificationKind

    def as_string(self) -> str:
        return f"{self.kind}:{self.recipient_id}:{self.entity_id}"


@dataclass(slots=True)
class DeliveryLogEntry:
    """Represents an email_delivery_log row."""

    recipient_id: str
    entity_id: str
    kind: NotificationKind
    status: DeliveryStatus
    attempt_count: int = 0
    terminal: bool = False
    claim_id: str | None = None
    sent_at: datetime | None = None
    message_id: str | None = None
    error_message: str | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> DedupKey:
        return DedupKey(self.recipient_id, self.entity_id, self.kind)

    def suppresses_delivery(self) -> bool:
        """Sent, or failed with the retry budget exhausted."""
        if self.status == DeliveryStatus.SENT:
            return True
        return self.status == DeliveryStatus.FAILED and self.terminal


@dataclass(slots=True)
class DeliveryJob:
    """A queued notification, owned by exactly one worker while in flight."""

    job_id: str
    kind: NotificationKind
    target_entity_id: str
    recipient_id: str
    recipient: str
    payload: dict[str, Any]
    enqueued_at: datetime
    attempts: int = 0
    status: JobStatus = JobStatus.PENDING
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    message_id: str | None = None
    finished_at: datetime | None = None
    claim_id: str | None = None

    @property
    def key(self) -> DedupKey:
        return DedupKey(self.recipient_id, self.target_entity_id, self.kind)

    def is_ready(self, now: datetime) -> bool:
        if self.status != JobStatus.PENDING:
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now

    def is_live(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.IN_FLIGHT)
