"""
Delivery log store contract and the in-memory implementation.

The log is the source of truth for "has this notification already happened".
Claims are taken with insert_if_absent (first claim) or replace_if
(compare-and-swap over a stale claim); both are atomic at the storage
boundary so concurrent scanners can never enqueue the same key twice.
"""

from dataclasses import replace
from typing import Protocol

from bikemanager.features.maintenance_reminders.domain import (
    DedupKey,
    DeliveryLogEntry,
    NotificationKind,
)


class DeliveryLogStore(Protocol):
    async def find_entry(
        self, recipient_id: str, entity_id: str, kind: NotificationKind
    ) -> DeliveryLogEntry | None: ...

    async def insert_if_absent(self, entry: DeliveryLogEntry) -> bool:
        """Insert the entry unless one exists for its key. True if inserted."""
        ...

    async def replace_if(self, expected: DeliveryLogEntry, entry: DeliveryLogEntry) -> bool:
        """
        Replace the stored entry only if it still matches `expected`
        (status, claim_id and attempt_count). True if replaced.
        """
        ...

    async def save(self, entry: DeliveryLogEntry) -> None:
        """Unconditional upsert, used by the queue for outcome writes."""
        ...


def _same_version(current: DeliveryLogEntry, expected: DeliveryLogEntry) -> bool:
    return (
        current.status == expected.status
        and current.claim_id == expected.claim_id
        and current.attempt_count == expected.attempt_count
    )


class InMemoryDeliveryLog:
    """
    Dict-backed delivery log.

    Each operation completes without awaiting, so it is atomic with respect
    to other coroutines on the same event loop. Entries are copied in and
    out so callers never share mutable state with the store.
    """

    def __init__(self):
        self._entries: dict[DedupKey, DeliveryLogEntry] = {}

    async def find_entry(
        self, recipient_id: str, entity_id: str, kind: NotificationKind
    ) -> DeliveryLogEntry | None:
        entry = self._entries.get(DedupKey(recipient_id, entity_id, kind))
        return replace(entry) if entry else None

    async def insert_if_absent(self, entry: DeliveryLogEntry) -> bool:
        if entry.key in self._entries:
            return False
        self._entries[entry.key] = replace(entry)
        return True

    async def replace_if(self, expected: DeliveryLogEntry, entry: DeliveryLogEntry) -> bool:
        current = self._entries.get(expected.key)
        if current is None or not _same_version(current, expected):
            return False
        self._entries[entry.key] = replace(entry)
        return True

    async def save(self, entry: DeliveryLogEntry) -> None:
        self._entries[entry.key] = replace(entry)

    def entries(self) -> list[DeliveryLogEntry]:
        return [replace(entry) for entry in self._entries.values()]
