"""Errors raised by the maintenance reminder pipeline."""


class ReminderPipelineError(Exception):
    """Base exception for reminder scanning and delivery."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ScanSourceUnavailable(ReminderPipelineError):
    """The maintenance source could not be read; the scan was aborted."""

    def __init__(self, message: str):
        super().__init__(message, operation="list_due_candidates", recoverable=True)


class ScanAlreadyRunning(ReminderPipelineError):
    """A scan was requested while another one is in progress."""

    def __init__(self):
        super().__init__("Maintenance scan is already running", operation="scan")
