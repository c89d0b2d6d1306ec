"""
Persistence for maintenance reminders: the delivery log and the read-only
maintenance source, each with an in-memory and a Postgres implementation.
"""

from .delivery_log import DeliveryLogStore, InMemoryDeliveryLog
from .maintenance_source import (
    InMemoryMaintenanceSource,
    MaintenanceSource,
    PostgresMaintenanceSource,
)
from .postgres_delivery_log import PostgresDeliveryLog

__all__ = [
    "DeliveryLogStore",
    "InMemoryDeliveryLog",
    "PostgresDeliveryLog",
    "MaintenanceSource",
    "InMemoryMaintenanceSource",
    "PostgresMaintenanceSource",
]
