"""API response models for the background job endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class QueueStats(BaseModel):
    pending: int = Field(..., description="Jobs waiting for a worker or a retry")
    in_flight: int = Field(..., description="Jobs currently being delivered")
    delivered: int = Field(..., description="Jobs delivered and not yet cleaned")
    failed: int = Field(..., description="Jobs that exhausted their retries")
    total: int = Field(..., description="All jobs still tracked by the queue")


class QueueStatsResponse(BaseModel):
    success: bool = True
    stats: QueueStats


class TriggerScanResponse(BaseModel):
    success: bool = True
    message: str = Field(..., description="User-friendly status message")
    enqueued: int = Field(..., description="Reminders enqueued by this scan")
    queue_depth: int = Field(..., description="Pending + in-flight jobs after the scan")
    metrics: dict[str, Any] = Field(default_factory=dict, description="Scan counters")


class CronStatusResponse(BaseModel):
    success: bool = True
    enabled: bool
    is_scanning: bool
    next_run: str | None = Field(default=None, description="Next scheduled scan (ISO 8601, UTC)")
    cron_expression: str
    timezone: str
    last_run_time: str | None = None
    last_run_metrics: dict[str, Any] | None = None


class CleanQueueResponse(BaseModel):
    success: bool = True
    message: str
    removed: int = Field(..., description="Finished jobs removed from the queue")
