"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the matching job coroutine. Workers build their
own service container; they do not serve HTTP.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from bikemanager.config import settings
from bikemanager.container import build_services
from bikemanager.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def run_maintenance_reminders() -> None:
    """Long-running: cron-driven scans plus the delivery queue loop."""
    services = build_services(settings)
    await services.start()
    try:
        # Background tasks do the work; park until cancelled.
        await asyncio.Event().wait()
    finally:
        await services.stop()


async def run_reminder_scan_once() -> None:
    """One scan, then deliver everything it enqueued (including retries) and exit."""
    services = build_services(settings)
    await services.start(run_background=False)
    try:
        metrics = await services.reminder_scanner.run_scan(trigger="worker")
        await services.delivery_queue.flush()
        logger.info(
            "One-shot reminder scan finished",
            enqueued=metrics.get("enqueued", 0),
            **services.delivery_queue.stats(),
        )
    finally:
        await services.stop()


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "maintenance_reminders": run_maintenance_reminders,
    "reminder_scan_once": run_reminder_scan_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "maintenance_reminders").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
