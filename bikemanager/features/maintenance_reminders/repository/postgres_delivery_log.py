"""
Postgres-backed delivery log.

The primary key (recipient_id, entity_id, kind) is the dedup key; claims rely
on ON CONFLICT DO NOTHING and on guarded UPDATEs reporting their row count.
"""

from typing import Any

from bikemanager.db.helpers import execute_query, execute_script, fetch_one
from bikemanager.db.pool import DatabasePoolManager
from bikemanager.features.maintenance_reminders.domain import (
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationKind,
)
from bikemanager.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS email_delivery_log (
        recipient_id TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        status TEXT NOT NULL,
        attempt_count INTEGER NOT NULL DEFAULT 0,
        terminal BOOLEAN NOT NULL DEFAULT FALSE,
        claim_id TEXT,
        sent_at TIMESTAMPTZ,
        message_id TEXT,
        error_message TEXT,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (recipient_id, entity_id, kind)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_email_delivery_log_status
        ON email_delivery_log (kind, status)
    """,
]

_COLUMNS = """
    recipient_id, entity_id, kind, status, attempt_count, terminal,
    claim_id, sent_at, message_id, error_message, updated_at
"""


def _row_to_entry(row: dict[str, Any]) -> DeliveryLogEntry:
    return DeliveryLogEntry(
        recipient_id=row["recipient_id"],
        entity_id=row["entity_id"],
        kind=NotificationKind(row["kind"]),
        status=DeliveryStatus(row["status"]),
        attempt_count=row["attempt_count"],
        terminal=row["terminal"],
        claim_id=row.get("claim_id"),
        sent_at=row.get("sent_at"),
        message_id=row.get("message_id"),
        error_message=row.get("error_message"),
        updated_at=row.get("updated_at"),
    )


def _entry_params(entry: DeliveryLogEntry) -> tuple:
    return (
        entry.recipient_id,
        entry.entity_id,
        str(entry.kind),
        str(entry.status),
        entry.attempt_count,
        entry.terminal,
        entry.claim_id,
        entry.sent_at,
        entry.message_id,
        entry.error_message,
    )


class PostgresDeliveryLog:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def ensure_schema(self) -> None:
        await execute_script(self.pool, SCHEMA_STATEMENTS)

    async def find_entry(
        self, recipient_id: str, entity_id: str, kind: NotificationKind
    ) -> DeliveryLogEntry | None:
        query = f"""
            SELECT {_COLUMNS}
            FROM email_delivery_log
            WHERE recipient_id = %s AND entity_id = %s AND kind = %s
        """
        row = await fetch_one(self.pool, query, (recipient_id, entity_id, str(kind)))
        return _row_to_entry(row) if row else None

    async def insert_if_absent(self, entry: DeliveryLogEntry) -> bool:
        query = f"""
            INSERT INTO email_delivery_log ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (recipient_id, entity_id, kind) DO NOTHING
        """
        inserted = await execute_query(self.pool, query, _entry_params(entry)) == 1

        logger.debug(
            "Delivery log insert_if_absent",
            key=entry.key.as_string(),
            inserted=inserted,
        )
        return inserted

    async def replace_if(self, expected: DeliveryLogEntry, entry: DeliveryLogEntry) -> bool:
        query = """
            UPDATE email_delivery_log
            SET status = %s,
                attempt_count = %s,
                terminal = %s,
                claim_id = %s,
                sent_at = %s,
                message_id = %s,
                error_message = %s,
                updated_at = NOW()
            WHERE recipient_id = %s
              AND entity_id = %s
              AND kind = %s
              AND status = %s
              AND claim_id IS NOT DISTINCT FROM %s
              AND attempt_count = %s
        """
        params = (
            str(entry.status),
            entry.attempt_count,
            entry.terminal,
            entry.claim_id,
            entry.sent_at,
            entry.message_id,
            entry.error_message,
            expected.recipient_id,
            expected.entity_id,
            str(expected.kind),
            str(expected.status),
            expected.claim_id,
            expected.attempt_count,
        )
        replaced = await execute_query(self.pool, query, params) == 1

        logger.debug("Delivery log replace_if", key=entry.key.as_string(), replaced=replaced)
        return replaced

    async def save(self, entry: DeliveryLogEntry) -> None:
        query = f"""
            INSERT INTO email_delivery_log ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (recipient_id, entity_id, kind)
            DO UPDATE SET
                status = EXCLUDED.status,
                attempt_count = EXCLUDED.attempt_count,
                terminal = EXCLUDED.terminal,
                claim_id = EXCLUDED.claim_id,
                sent_at = EXCLUDED.sent_at,
                message_id = EXCLUDED.message_id,
                error_message = EXCLUDED.error_message,
                updated_at = NOW()
        """
        await execute_query(self.pool, query, _entry_params(entry))
