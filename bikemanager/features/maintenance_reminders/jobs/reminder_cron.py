"""
Maintenance reminder cron.

Runs the reminder scan on a cron schedule evaluated in the configured
timezone (default: daily at 09:00 America/Sao_Paulo), plus once at startup
outside production so a freshly started dev server sends what is due.
"""

import asyncio
import contextlib
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from croniter import croniter

from bikemanager.features.maintenance_reminders.errors import ScanSourceUnavailable
from bikemanager.features.maintenance_reminders.services.reminder_scanner import ReminderScanner
from bikemanager.infrastructure.clock import Clock
from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CRON_EXPRESSION = "0 9 * * *"
DEFAULT_TIMEZONE = "America/Sao_Paulo"
ERROR_RETRY_SECONDS = 60


class MaintenanceReminderCron:
    """Owns the background task that triggers scheduled scans."""

    def __init__(
        self,
        scanner: ReminderScanner,
        clock: Clock,
        *,
        cron_expression: str = DEFAULT_CRON_EXPRESSION,
        timezone: str = DEFAULT_TIMEZONE,
        enabled: bool = True,
        run_on_startup: bool = False,
    ):
        if not croniter.is_valid(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression!r}")

        self.scanner = scanner
        self.clock = clock
        self.cron_expression = cron_expression
        self.timezone = timezone
        self.tz = ZoneInfo(timezone)
        self.enabled = enabled
        self.run_on_startup = run_on_startup
        self._task: asyncio.Task | None = None

    def next_run(self, after: datetime | None = None) -> datetime | None:
        """Next scheduled fire time in UTC, or None when the cron is disabled."""
        if not self.enabled:
            return None

        base = (after or self.clock.now()).astimezone(self.tz)
        return croniter(self.cron_expression, base).get_next(datetime).astimezone(UTC)

    async def _tick(self, trigger: str) -> None:
        try:
            metrics = await self.scanner.run_scan(trigger=trigger)
            if metrics.get("skipped"):
                logger.info("Scheduled maintenance scan skipped", trigger=trigger)
        except ScanSourceUnavailable as e:
            logger.error(
                "Maintenance scan aborted, will retry on next tick",
                trigger=trigger,
                error=str(e),
            )

    async def run_forever(self) -> None:
        if self.run_on_startup:
            try:
                await self._tick("startup")
            except Exception as e:
                logger.error(
                    "Startup maintenance scan failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if not self.enabled:
            return

        logger.info(
            "Maintenance reminder cron started",
            cron_expression=self.cron_expression,
            timezone=self.timezone,
        )

        while True:
            try:
                next_run = self.next_run()
                delay = max(0.0, (next_run - self.clock.now()).total_seconds())
                logger.info(
                    "Next maintenance reminder scan scheduled",
                    next_run=next_run.isoformat(),
                    delay_seconds=round(delay, 1),
                )
                await asyncio.sleep(delay)
                await self._tick("scheduled")

            except Exception as e:
                logger.error(
                    "Error in maintenance reminder cron",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                # Avoid a tight error loop
                await asyncio.sleep(ERROR_RETRY_SECONDS)

    def start(self) -> None:
        if not self.enabled and not self.run_on_startup:
            logger.info("Maintenance reminder cron is disabled")
            return
        if self._task is None:
            self._task = asyncio.create_task(self.run_forever(), name="maintenance-reminder-cron")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Maintenance reminder cron stopped")

    def status(self) -> dict:
        next_run = self.next_run()
        return {
            "enabled": self.enabled,
            "is_scanning": self.scanner.is_scanning,
            "next_run": next_run.isoformat() if next_run else None,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "last_run_time": (
                self.scanner.last_run_time.isoformat() if self.scanner.last_run_time else None
            ),
            "last_run_metrics": self.scanner.last_metrics,
        }
