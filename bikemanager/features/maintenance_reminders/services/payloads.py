"""
Reminder payload builder.

Produces the opaque email payload (subject + plain text) for a maintenance
reminder. Layout and branding live with the email provider templates.
"""

from datetime import datetime
from typing import Any, Protocol

from bikemanager.features.maintenance_reminders.domain import ScheduledMaintenance


class ReminderPayloadBuilder(Protocol):
    def __call__(self, maintenance: ScheduledMaintenance, now: datetime) -> dict[str, Any]: ...


def reminder_subject(days_until: int) -> str:
    if days_until == 0:
        return "Maintenance TODAY - BikeManager"
    if days_until == 1:
        return "Maintenance TOMORROW - BikeManager"
    return f"Maintenance reminder: {days_until} days to go - BikeManager"


def make_reminder_payload_builder(frontend_url: str) -> ReminderPayloadBuilder:
    base_url = frontend_url.rstrip("/")

    def build(maintenance: ScheduledMaintenance, now: datetime) -> dict[str, Any]:
        days_until = maintenance.days_until(now)
        bike_url = f"{base_url}/bikes/{maintenance.bike_id}"
        scheduled_on = maintenance.scheduled_date.date().isoformat()

        text = (
            f"Hi {maintenance.owner_name or 'there'},\n\n"
            f"{maintenance.bike_name or 'Your bike'} is due for "
            f"\"{maintenance.service_description}\" on {scheduled_on}.\n\n"
            f"See the details: {bike_url}\n"
            f"Email preferences: {base_url}/settings/email-preferences\n"
        )

        return {
            "subject": reminder_subject(days_until),
            "text": text,
            "bike_name": maintenance.bike_name,
            "service_description": maintenance.service_description,
            "scheduled_date": maintenance.scheduled_date.isoformat(),
            "days_until": days_until,
            "bike_url": bike_url,
        }

    return build
