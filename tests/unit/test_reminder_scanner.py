import asyncio
from datetime import timedelta

import pytest
from conftest import START, make_maintenance

from bikemanager.features.maintenance_reminders.domain import (
    DeliveryLogEntry,
    DeliveryStatus,
    NotificationKind,
)
from bikemanager.features.maintenance_reminders.errors import (
    ScanAlreadyRunning,
    ScanSourceUnavailable,
)
from bikemanager.features.maintenance_reminders.services import (
    DeliveryQueue,
    ReminderScanner,
    make_reminder_payload_builder,
)
from bikemanager.services.email_sender import TransientDeliveryFailure
from bikemanager.services.rate_window import InMemoryRateWindow

KIND = NotificationKind.MAINTENANCE_REMINDER


def make_scanner(source, delivery_log, queue, clock, **kwargs):
    return ReminderScanner(
        source,
        delivery_log,
        queue,
        clock,
        make_reminder_payload_builder("https://app.bikemanager.test"),
        **kwargs,
    )


@pytest.fixture
def queue(sender, delivery_log, clock):
    return DeliveryQueue(sender, delivery_log, clock)


@pytest.fixture
def scanner(maintenance_source, delivery_log, queue, clock):
    return make_scanner(maintenance_source, delivery_log, queue, clock)


async def deliver_all(queue):
    await queue.drain_once()
    await queue.join()


@pytest.mark.asyncio
async def test_reminder_sent_once_from_due_date(scanner, queue, sender, maintenance_source, clock):
    # Scheduled five days out with a three day lead: due at T+2 days.
    maintenance_source.add(
        make_maintenance(scheduled_date=START + timedelta(days=5), notification_days_before=3)
    )

    clock.advance(days=1)
    metrics = await scanner.run_scan()
    assert metrics["enqueued"] == 0
    assert metrics["due"] == 0

    clock.advance(days=1)
    metrics = await scanner.run_scan()
    assert metrics["enqueued"] == 1
    await deliver_all(queue)

    assert len(sender.sent) == 1
    recipient, payload = sender.sent[0]
    assert recipient == "rider@example.com"
    assert payload["days_until"] == 3
    assert payload["subject"] == "Maintenance reminder: 3 days to go - BikeManager"

    for _ in range(3):
        clock.advance(days=1)
        metrics = await scanner.run_scan()
        assert metrics["enqueued"] == 0
        await deliver_all(queue)

    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_scan_twice_enqueues_once(scanner, queue, maintenance_source, clock):
    maintenance_source.add(make_maintenance(scheduled_date=START + timedelta(days=1)))

    first = await scanner.run_scan()
    second = await scanner.run_scan()

    assert first["enqueued"] == 1
    assert second["enqueued"] == 0
    assert second["already_queued"] == 1
    assert queue.stats()["total"] == 1


@pytest.mark.asyncio
async def test_completed_maintenance_is_never_reminded(scanner, maintenance_source):
    maintenance_source.add(make_maintenance(scheduled_date=START, is_completed=True))

    metrics = await scanner.run_scan()

    assert metrics["candidates"] == 0
    assert metrics["enqueued"] == 0


@pytest.mark.asyncio
async def test_zero_day_lead_is_due_on_the_scheduled_instant(scanner, maintenance_source, clock):
    maintenance_source.add(make_maintenance(scheduled_date=START, notification_days_before=0))

    jobs = await scanner.scan()

    assert len(jobs) == 1
    assert jobs[0].payload["subject"] == "Maintenance TODAY - BikeManager"


@pytest.mark.asyncio
async def test_concurrent_scanners_claim_each_record_once(
    maintenance_source, delivery_log, queue, clock
):
    for n in range(5):
        maintenance_source.add(make_maintenance(id=f"maint-{n}", scheduled_date=START))

    first = make_scanner(maintenance_source, delivery_log, queue, clock)
    second = make_scanner(maintenance_source, delivery_log, queue, clock)

    jobs_a, jobs_b = await asyncio.gather(first.scan(), second.scan())

    claimed = [job.target_entity_id for job in jobs_a + jobs_b]
    assert sorted(claimed) == [f"maint-{n}" for n in range(5)]


@pytest.mark.asyncio
async def test_restart_reclaims_stale_claim(maintenance_source, delivery_log, sender, clock):
    maintenance_source.add(make_maintenance(scheduled_date=START))

    crashed_queue = DeliveryQueue(sender, delivery_log, clock)
    crashed = make_scanner(maintenance_source, delivery_log, crashed_queue, clock)
    assert (await crashed.run_scan())["enqueued"] == 1
    # The process dies before delivering: the claim stays pending.

    queue = DeliveryQueue(sender, delivery_log, clock)
    restarted = make_scanner(maintenance_source, delivery_log, queue, clock)
    metrics = await restarted.run_scan()
    assert metrics["enqueued"] == 1

    await deliver_all(queue)
    entry = await delivery_log.find_entry("user-1", "maint-1", KIND)
    assert entry.status == DeliveryStatus.SENT
    assert entry.claim_id == queue.session_id
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_retry_budget_survives_restart(maintenance_source, delivery_log, sender, clock):
    maintenance_source.add(make_maintenance(scheduled_date=START))
    await delivery_log.save(
        DeliveryLogEntry(
            recipient_id="user-1",
            entity_id="maint-1",
            kind=KIND,
            status=DeliveryStatus.FAILED,
            attempt_count=2,
            claim_id="old-session",
        )
    )

    queue = DeliveryQueue(sender, delivery_log, clock)
    scanner = make_scanner(maintenance_source, delivery_log, queue, clock)
    jobs = await scanner.scan()
    assert jobs[0].attempts == 2

    for job in jobs:
        queue.enqueue(job)
    sender.fail_next(TransientDeliveryFailure("503"))
    await deliver_all(queue)

    entry = await delivery_log.find_entry("user-1", "maint-1", KIND)
    assert entry.terminal is True

    # Terminal failures are never picked up again
    assert await scanner.scan() == []


@pytest.mark.asyncio
async def test_sent_entry_suppresses(scanner, maintenance_source, delivery_log):
    maintenance_source.add(make_maintenance(scheduled_date=START))
    await delivery_log.save(
        DeliveryLogEntry(
            recipient_id="user-1",
            entity_id="maint-1",
            kind=KIND,
            status=DeliveryStatus.SENT,
            attempt_count=1,
            claim_id="old-session",
        )
    )

    metrics = await scanner.run_scan()

    assert metrics["suppressed"] == 1
    assert metrics["enqueued"] == 0


@pytest.mark.asyncio
async def test_redelivery_window_throttles_reclaims(maintenance_source, delivery_log, sender, clock):
    maintenance_source.add(make_maintenance(scheduled_date=START))
    window = InMemoryRateWindow(limit=1, window=timedelta(hours=24))

    first_queue = DeliveryQueue(sender, delivery_log, clock)
    first = make_scanner(
        maintenance_source, delivery_log, first_queue, clock, redelivery_window=window
    )
    assert (await first.run_scan())["enqueued"] == 1

    second_queue = DeliveryQueue(sender, delivery_log, clock)
    second = make_scanner(
        maintenance_source, delivery_log, second_queue, clock, redelivery_window=window
    )
    metrics = await second.run_scan()

    assert metrics["throttled"] == 1
    assert metrics["enqueued"] == 0


@pytest.mark.asyncio
async def test_lost_claim_does_not_spend_redelivery_budget(maintenance_source, queue, clock):
    maintenance_source.add(make_maintenance(scheduled_date=START))
    window = InMemoryRateWindow(limit=1, window=timedelta(hours=24))

    class RacedLog:
        async def find_entry(self, recipient_id, entity_id, kind):
            return None

        async def insert_if_absent(self, entry):
            return False

    scanner = make_scanner(maintenance_source, RacedLog(), queue, clock, redelivery_window=window)
    metrics = await scanner.run_scan()

    assert metrics["lost_claims"] == 1
    assert metrics["throttled"] == 0
    assert await window.activity_count(f"{KIND}:user-1:maint-1", clock.now()) == 0
    assert window.tracked_subjects() == 0


@pytest.mark.asyncio
async def test_source_failure_raises_and_claims_nothing(delivery_log, queue, clock):
    class BrokenSource:
        async def list_due_candidates(self, now):
            raise ConnectionError("database unavailable")

    scanner = make_scanner(BrokenSource(), delivery_log, queue, clock)

    with pytest.raises(ScanSourceUnavailable):
        await scanner.run_scan()

    assert delivery_log.entries() == []
    assert not scanner.is_scanning


@pytest.mark.asyncio
async def test_record_error_is_counted_and_scan_continues(maintenance_source, queue, clock):
    maintenance_source.add(make_maintenance(id="maint-a", scheduled_date=START))
    maintenance_source.add(make_maintenance(id="maint-b", scheduled_date=START + timedelta(hours=1)))

    class FlakyLog:
        def __init__(self):
            self.calls = 0
            self.entries = {}

        async def find_entry(self, recipient_id, entity_id, kind):
            self.calls += 1
            if entity_id == "maint-a":
                raise RuntimeError("timeout")
            return None

        async def insert_if_absent(self, entry):
            self.entries[entry.key] = entry
            return True

    scanner = make_scanner(maintenance_source, FlakyLog(), queue, clock)
    metrics = await scanner.run_scan()

    assert metrics["errors_count"] == 1
    assert metrics["enqueued"] == 1


@pytest.mark.asyncio
async def test_overlapping_scans_are_skipped(delivery_log, queue, clock):
    release = asyncio.Event()

    class SlowSource:
        async def list_due_candidates(self, now):
            await release.wait()
            return []

    scanner = make_scanner(SlowSource(), delivery_log, queue, clock)
    running = asyncio.create_task(scanner.run_scan())
    await asyncio.sleep(0)

    assert scanner.is_scanning
    skipped = await scanner.run_scan()
    assert skipped == {"skipped": True, "reason": "already_running", "trigger": "scheduled"}
    with pytest.raises(ScanAlreadyRunning):
        await scanner.run_scan(trigger="manual", raise_if_running=True)

    release.set()
    assert (await running)["enqueued"] == 0
