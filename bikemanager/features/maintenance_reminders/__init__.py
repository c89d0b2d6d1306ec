"""
Maintenance reminders feature package.

Everything that turns scheduled maintenance into reminder emails lives
here: domain models, the delivery log and maintenance source, the scanner
and delivery queue, the cron job and the job API router.
"""

from .api.router import router as jobs_router  # noqa: F401
from .errors import ScanAlreadyRunning, ScanSourceUnavailable  # noqa: F401
from .jobs.reminder_cron import MaintenanceReminderCron  # noqa: F401
from .services.delivery_queue import DeliveryQueue  # noqa: F401
from .services.reminder_scanner import ReminderScanner  # noqa: F401
