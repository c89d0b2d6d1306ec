"""
Read-only access to scheduled maintenance records.

The maintenance tables belong to the bike tracking side of the product; this
module only reads them, joined with the bike and owner that a reminder goes to.
"""

from datetime import datetime
from typing import Protocol

from bikemanager.db.helpers import fetch_all
from bikemanager.db.pool import DatabasePoolManager
from bikemanager.features.maintenance_reminders.domain import ScheduledMaintenance
from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MaintenanceSource(Protocol):
    async def list_due_candidates(self, now: datetime) -> list[ScheduledMaintenance]:
        """Incomplete maintenance records, with owner and recipient info attached."""
        ...


class InMemoryMaintenanceSource:
    def __init__(self, records: list[ScheduledMaintenance] | None = None):
        self._records: dict[str, ScheduledMaintenance] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: ScheduledMaintenance) -> None:
        self._records[record.id] = record

    def complete(self, maintenance_id: str) -> None:
        record = self._records[maintenance_id]
        self._records[maintenance_id] = record.model_copy(update={"is_completed": True})

    async def list_due_candidates(self, now: datetime) -> list[ScheduledMaintenance]:
        candidates = [record for record in self._records.values() if not record.is_completed]
        return sorted(candidates, key=lambda record: record.scheduled_date)


class PostgresMaintenanceSource:
    """
    Reads candidates whose reminder instant has passed.

    Owners who switched maintenance reminders off in their email preferences
    are filtered out here; a missing preferences row means reminders are on.
    """

    QUERY = """
        SELECT
            sm.id::text AS id,
            b.id::text AS bike_id,
            COALESCE(b.name, '') AS bike_name,
            u.id::text AS owner_id,
            u.email AS owner_email,
            COALESCE(u.name, '') AS owner_name,
            sm.scheduled_date,
            sm.service_description,
            COALESCE(sm.notification_days_before, 0) AS notification_days_before,
            sm.is_completed
        FROM scheduled_maintenances sm
        JOIN bikes b ON b.id = sm.bike_id
        JOIN users u ON u.id = b.owner_id
        LEFT JOIN user_email_preferences p ON p.user_id = u.id
        WHERE sm.is_completed = FALSE
          AND sm.notification_days_before IS NOT NULL
          AND COALESCE(p.maintenance_reminders, TRUE)
          AND sm.scheduled_date - make_interval(days => sm.notification_days_before) <= %s
        ORDER BY sm.scheduled_date ASC
    """

    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def list_due_candidates(self, now: datetime) -> list[ScheduledMaintenance]:
        rows = await fetch_all(self.pool, self.QUERY, (now,))
        logger.debug("Maintenance candidates loaded", candidate_count=len(rows))
        return [ScheduledMaintenance(**row) for row in rows]
