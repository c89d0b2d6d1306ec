"""
Maintenance reminder scanner.

Finds maintenance records whose reminder instant has passed, claims a
delivery log entry for each one that has not been handled yet, and hands the
resulting jobs to the delivery queue. A claim is what makes a reminder
happen at most once: a record is enqueued only when this scanner wins the
insert (no entry yet) or the compare-and-swap over a stale claim.
"""

import asyncio
import uuid
from datetime import datetime

from bikemanager.features.maintenance_reminders.domain import (
    DeliveryJob,
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationKind,
    ScheduledMaintenance,
)
from bikemanager.features.maintenance_reminders.errors import (
    ScanAlreadyRunning,
    ScanSourceUnavailable,
)
from bikemanager.features.maintenance_reminders.repository import (
    DeliveryLogStore,
    MaintenanceSource,
)
from bikemanager.features.maintenance_reminders.services.delivery_queue import DeliveryQueue
from bikemanager.features.maintenance_reminders.services.payloads import ReminderPayloadBuilder
from bikemanager.infrastructure.clock import Clock
from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.services.rate_window import RateWindow

logger = get_logger(__name__)


class ReminderScanMetrics:
    """Counters for a single scan pass."""

    def __init__(self, trigger: str, started_at: datetime):
        self.trigger = trigger
        self.started_at = started_at
        self.candidates = 0
        self.due = 0
        self.claimed = 0
        self.enqueued = 0
        self.suppressed = 0
        self.already_queued = 0
        self.throttled = 0
        self.lost_claims = 0
        self.errors: list[dict] = []
        self.duration_seconds = 0.0

    def record_error(self, maintenance_id: str, error: Exception):
        self.errors.append(
            {
                "maintenance_id": maintenance_id,
                "error": str(error),
                "error_type": type(error).__name__,
            }
        )
        logger.error(
            "Failed to process maintenance reminder",
            maintenance_id=maintenance_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    def finalize(self, finished_at: datetime):
        self.duration_seconds = (finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "maintenance_reminder_scan",
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "candidates": self.candidates,
            "due": self.due,
            "claimed": self.claimed,
            "enqueued": self.enqueued,
            "suppressed": self.suppressed,
            "already_queued": self.already_queued,
            "throttled": self.throttled,
            "lost_claims": self.lost_claims,
            "errors_count": len(self.errors),
        }


class ReminderScanner:
    """
    Turns due maintenance records into claimed delivery jobs.

    Safe to run from several processes at once against a shared delivery
    log: losers of a claim simply skip the record. Within one process,
    run_scan() allows a single scan at a time.
    """

    def __init__(
        self,
        source: MaintenanceSource,
        delivery_log: DeliveryLogStore,
        queue: DeliveryQueue,
        clock: Clock,
        payload_builder: ReminderPayloadBuilder,
        *,
        max_attempts: int = 3,
        redelivery_window: RateWindow | None = None,
    ):
        self.source = source
        self.delivery_log = delivery_log
        self.queue = queue
        self.clock = clock
        self.payload_builder = payload_builder
        self.max_attempts = max_attempts
        self.redelivery_window = redelivery_window

        self._scan_lock = asyncio.Lock()
        self.last_run_time: datetime | None = None
        self.last_metrics: dict | None = None

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    async def scan(self, now: datetime | None = None) -> list[DeliveryJob]:
        """
        Claim every due, not-yet-handled record and return the new jobs
        without enqueueing them.

        Raises:
            ScanSourceUnavailable: the maintenance source could not be read;
                nothing was claimed.
        """
        now = now or self.clock.now()
        return await self._scan(now, ReminderScanMetrics("direct", now))

    async def _scan(self, now: datetime, metrics: ReminderScanMetrics) -> list[DeliveryJob]:
        try:
            candidates = await self.source.list_due_candidates(now)
        except Exception as e:
            logger.error(
                "Maintenance source unavailable",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ScanSourceUnavailable(f"Could not load maintenance records: {e}") from e

        jobs: list[DeliveryJob] = []
        for record in candidates:
            metrics.candidates += 1
            if not record.is_due(now):
                continue

            metrics.due += 1
            try:
                job = await self._claim(record, now, metrics)
            except Exception as e:
                metrics.record_error(record.id, e)
                continue

            if job is not None:
                metrics.claimed += 1
                jobs.append(job)

        return jobs

    async def _claim(
        self, record: ScheduledMaintenance, now: datetime, metrics: ReminderScanMetrics
    ) -> DeliveryJob | None:
        kind = NotificationKind.MAINTENANCE_REMINDER
        existing = await self.delivery_log.find_entry(record.owner_id, record.id, kind)

        if existing is not None:
            if existing.suppresses_delivery() or existing.attempt_count >= self.max_attempts:
                metrics.suppressed += 1
                return None
            if existing.claim_id == self.queue.session_id:
                # Pending or retrying in this process already.
                metrics.already_queued += 1
                return None

        claim = DeliveryLogEntry(
            recipient_id=record.owner_id,
            entity_id=record.id,
            kind=kind,
            status=DeliveryStatus.PENDING,
            attempt_count=existing.attempt_count if existing else 0,
            claim_id=self.queue.session_id,
            updated_at=now,
        )

        throttle_key = claim.key.as_string()
        if self.redelivery_window is not None:
            recent = await self.redelivery_window.activity_count(throttle_key, now)
            if recent >= self.redelivery_window.limit:
                metrics.throttled += 1
                logger.warning(
                    "Reminder redelivery throttled",
                    maintenance_id=record.id,
                    recipient_id=record.owner_id,
                )
                return None

        if existing is None:
            claimed = await self.delivery_log.insert_if_absent(claim)
        else:
            claimed = await self.delivery_log.replace_if(existing, claim)

        if not claimed:
            metrics.lost_claims += 1
            logger.info(
                "Reminder claimed by another scanner",
                maintenance_id=record.id,
                recipient_id=record.owner_id,
            )
            return None

        if self.redelivery_window is not None:
            # Budget is spent only by claims this scanner actually won.
            await self.redelivery_window.try_record_activity(throttle_key, now)

        return DeliveryJob(
            job_id=f"{kind}-{record.id}-{record.owner_id}-{uuid.uuid4().hex[:8]}",
            kind=kind,
            target_entity_id=record.id,
            recipient_id=record.owner_id,
            recipient=record.owner_email,
            payload=self.payload_builder(record, now),
            enqueued_at=now,
            attempts=claim.attempt_count,
            claim_id=claim.claim_id,
        )

    async def run_scan(self, trigger: str = "scheduled", raise_if_running: bool = False) -> dict:
        """
        Scan and enqueue, one scan at a time.

        Returns the scan metrics, or a skipped marker when another scan holds
        the lock (ScanAlreadyRunning instead when raise_if_running is set).
        """
        if self._scan_lock.locked():
            if raise_if_running:
                raise ScanAlreadyRunning()
            logger.warning("Maintenance scan already running, skipping", trigger=trigger)
            return {"skipped": True, "reason": "already_running", "trigger": trigger}

        async with self._scan_lock:
            now = self.clock.now()
            metrics = ReminderScanMetrics(trigger, now)
            logger.info("Starting maintenance reminder scan", trigger=trigger)

            jobs = await self._scan(now, metrics)
            for job in jobs:
                if self.queue.enqueue(job):
                    metrics.enqueued += 1

            metrics.finalize(self.clock.now())
            self.last_run_time = now
            self.last_metrics = metrics.to_dict()

            logger.info(
                "Maintenance reminder scan completed",
                queue_depth=self.queue.depth(),
                **self.last_metrics,
            )
            return {**self.last_metrics, "queue_depth": self.queue.depth()}
