from .delivery_queue import DeliveryQueue  # noqa: F401
from .payloads import (  # noqa: F401
    ReminderPayloadBuilder,
    make_reminder_payload_builder,
    reminder_subject,
)
from .reminder_scanner import ReminderScanMetrics, ReminderScanner  # noqa: F401
