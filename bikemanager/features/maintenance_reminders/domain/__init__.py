from .models import (  # noqa: F401
    DedupKey,
    DeliveryJob,
    DeliveryLogEntry,
    DeliveryStatus,
    JobStatus,
    NotificationKind,
    ScheduledMaintenance,
)
