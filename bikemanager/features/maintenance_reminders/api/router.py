"""
Background job routes: manual reminder scans and delivery queue inspection.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from bikemanager.dependencies import get_services
from bikemanager.features.maintenance_reminders.errors import (
    ScanAlreadyRunning,
    ScanSourceUnavailable,
)
from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.models.api.jobs_response import (
    CleanQueueResponse,
    CronStatusResponse,
    QueueStats,
    QueueStatsResponse,
    TriggerScanResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("/cron/trigger", response_model=TriggerScanResponse)
async def trigger_maintenance_scan(services=Depends(get_services)):
    """
    Run a maintenance reminder scan now and wait for it to finish.

    Raises:
        409: A scan is already running
        503: Maintenance records could not be loaded
    """
    try:
        metrics = await services.reminder_scanner.run_scan(trigger="manual", raise_if_running=True)

    except ScanAlreadyRunning:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Maintenance scan is already running",
        ) from None

    except ScanSourceUnavailable as e:
        logger.error("Manual maintenance scan failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Maintenance data is temporarily unavailable",
        ) from None

    enqueued = metrics["enqueued"]
    return TriggerScanResponse(
        message=f"Maintenance scan completed, {enqueued} reminder(s) enqueued",
        enqueued=enqueued,
        queue_depth=metrics["queue_depth"],
        metrics=metrics,
    )


@router.get("/queue/stats", response_model=QueueStatsResponse)
async def get_queue_stats(services=Depends(get_services)):
    return QueueStatsResponse(stats=QueueStats(**services.delivery_queue.stats()))


@router.get("/cron/status", response_model=CronStatusResponse)
async def get_cron_status(services=Depends(get_services)):
    return CronStatusResponse(**services.reminder_cron.status())


@router.post("/queue/clean", response_model=CleanQueueResponse)
async def clean_queue(services=Depends(get_services)):
    """Remove delivered and failed jobs older than the retention period."""
    retention = timedelta(hours=services.settings.QUEUE_RETENTION_HOURS)
    removed = services.delivery_queue.clean(retention)
    return CleanQueueResponse(message=f"Removed {removed} finished job(s)", removed=removed)
