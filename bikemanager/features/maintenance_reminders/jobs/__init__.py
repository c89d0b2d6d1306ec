from .reminder_cron import MaintenanceReminderCron  # noqa: F401
