"""
In-memory delivery queue with bounded concurrency and retry.

Jobs are drained by a polling loop (every `poll_interval` seconds) so bursts of
enqueues from a scan are smoothed into at most `concurrency` concurrent
sends. Retries are driven by the same loop: a failed job goes back to
PENDING with a `next_attempt_at` in the future instead of scheduling its own
timer.

Queue state is lost on restart. That is safe because every job is backed by
a delivery log claim tagged with this queue's `session_id`; the next scanner
pass in a new process treats claims from other sessions as stale and
re-enqueues them.
"""

import asyncio
import time
import uuid
from collections import Counter
from datetime import datetime, timedelta

from bikemanager.features.maintenance_reminders.domain import (
    DedupKey,
    DeliveryJob,
    DeliveryLogEntry,
    DeliveryStatus,
    JobStatus,
)
from bikemanager.features.maintenance_reminders.repository import DeliveryLogStore
from bikemanager.infrastructure.clock import Clock
from bikemanager.infrastructure.observability.logging import get_logger, log_delivery_outcome
from bikemanager.services.email_sender import (
    EmailSender,
    TerminalDeliveryFailure,
    TransientDeliveryFailure,
)

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 2.0


class DeliveryQueue:
    """
    Bounded-concurrency queue that owns DeliveryJobs until they reach a
    terminal state.

    Thread Safety:
        Runs on a single event loop. Apart from the sender call and the
        delivery log writes, every mutation happens without awaiting, and a
        job is only touched by the worker task that dispatched it until its
        outcome has been written.
    """

    def __init__(
        self,
        sender: EmailSender,
        delivery_log: DeliveryLogStore,
        clock: Clock,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS,
        delivery_timeout: float | None = None,
        session_id: str | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.sender = sender
        self.delivery_log = delivery_log
        self.clock = clock
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.delivery_timeout = delivery_timeout
        self.session_id = session_id or uuid.uuid4().hex

        self._jobs: dict[str, DeliveryJob] = {}
        self._live_keys: dict[DedupKey, str] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._slots = asyncio.Semaphore(concurrency)
        self._draining = False
        self._accepting = True
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Enqueue / inspection
    # ------------------------------------------------------------------

    def enqueue(self, job: DeliveryJob) -> bool:
        """
        Add a job. Returns False when the queue is shutting down or a live
        job already exists for the same dedup key.
        """
        if not self._accepting:
            logger.warning("Delivery queue closed, rejecting job", job_id=job.job_id)
            return False

        if job.key in self._live_keys:
            logger.info(
                "Duplicate delivery job suppressed",
                job_id=job.job_id,
                existing_job_id=self._live_keys[job.key],
                dedup_key=job.key.as_string(),
            )
            return False

        job.status = JobStatus.PENDING
        job.claim_id = job.claim_id or self.session_id
        self._jobs[job.job_id] = job
        self._live_keys[job.key] = job.job_id

        logger.info(
            "Delivery job enqueued",
            job_id=job.job_id,
            kind=str(job.kind),
            target_entity_id=job.target_entity_id,
            attempts=job.attempts,
        )
        return True

    def stats(self) -> dict:
        counts = Counter(job.status for job in self._jobs.values())
        return {
            "pending": counts[JobStatus.PENDING],
            "in_flight": counts[JobStatus.IN_FLIGHT],
            "delivered": counts[JobStatus.DELIVERED],
            "failed": counts[JobStatus.FAILED],
            "total": len(self._jobs),
        }

    def depth(self) -> int:
        """Jobs that still need work (pending + in flight)."""
        return len(self._live_keys)

    def get_job(self, job_id: str) -> DeliveryJob | None:
        return self._jobs.get(job_id)

    def is_queued(self, key: DedupKey) -> bool:
        return key in self._live_keys

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    async def drain_once(self) -> int:
        """
        Dispatch every ready job, waiting for a free worker slot when all
        slots are busy. Returns the number of jobs dispatched. A drain that
        starts while another one is running does nothing.
        """
        if self._draining:
            return 0

        self._draining = True
        dispatched = 0
        try:
            now = self.clock.now()
            ready = sorted(
                (job for job in self._jobs.values() if job.is_ready(now)),
                key=lambda job: (job.next_attempt_at or job.enqueued_at, job.enqueued_at),
            )

            for job in ready:
                await self._slots.acquire()
                if self._stop_event.is_set():
                    self._slots.release()
                    break

                job.status = JobStatus.IN_FLIGHT
                self._in_flight[job.job_id] = asyncio.create_task(
                    self._execute(job), name=f"deliver-{job.job_id}"
                )
                dispatched += 1

        finally:
            self._draining = False

        if dispatched:
            logger.debug("Delivery jobs dispatched", dispatched=dispatched, **self.stats())
        return dispatched

    async def _execute(self, job: DeliveryJob) -> None:
        started = time.monotonic()
        try:
            try:
                message_id = await self._send(job)
            except TerminalDeliveryFailure as e:
                await self._record_failure(job, e, started, terminal=True)
            except Exception as e:
                await self._record_failure(job, e, started, terminal=False)
            else:
                await self._record_success(job, message_id, started)
        except Exception as e:
            # Nothing awaits worker tasks, so errors must end here.
            logger.error(
                "Delivery bookkeeping failed, job abandoned",
                job_id=job.job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            job.status = JobStatus.FAILED
            job.last_error = f"{type(e).__name__}: {e}"
            job.finished_at = job.finished_at or job.next_attempt_at or job.enqueued_at
            self._live_keys.pop(job.key, None)
        finally:
            self._in_flight.pop(job.job_id, None)
            self._slots.release()

    async def _send(self, job: DeliveryJob) -> str:
        send = self.sender.send(job.recipient, job.payload)
        try:
            if self.delivery_timeout is None:
                return await send
            return await asyncio.wait_for(send, timeout=self.delivery_timeout)
        except TimeoutError as e:
            raise TransientDeliveryFailure("Email delivery timed out") from e

    async def _record_success(self, job: DeliveryJob, message_id: str, started: float) -> None:
        now = self.clock.now()
        attempts = job.attempts + 1
        entry = DeliveryLogEntry(
            recipient_id=job.recipient_id,
            entity_id=job.target_entity_id,
            kind=job.kind,
            status=DeliveryStatus.SENT,
            attempt_count=attempts,
            claim_id=job.claim_id,
            sent_at=now,
            message_id=message_id,
            updated_at=now,
        )
        await self._write_outcome(job, entry)

        job.attempts = attempts
        job.message_id = message_id
        job.status = JobStatus.DELIVERED
        job.finished_at = now
        self._live_keys.pop(job.key, None)

        log_delivery_outcome(
            job.job_id,
            str(job.kind),
            "delivered",
            attempts,
            round((time.monotonic() - started) * 1000, 2),
        )

    async def _record_failure(
        self, job: DeliveryJob, error: Exception, started: float, terminal: bool
    ) -> None:
        now = self.clock.now()
        attempts = job.attempts + 1
        exhausted = terminal or attempts >= self.max_attempts
        error_message = f"{type(error).__name__}: {error}"

        entry = DeliveryLogEntry(
            recipient_id=job.recipient_id,
            entity_id=job.target_entity_id,
            kind=job.kind,
            status=DeliveryStatus.FAILED,
            attempt_count=attempts,
            terminal=exhausted,
            claim_id=job.claim_id,
            error_message=error_message[:500],
            updated_at=now,
        )
        await self._write_outcome(job, entry)

        job.attempts = attempts
        job.last_error = error_message
        if exhausted:
            job.status = JobStatus.FAILED
            job.finished_at = now
            self._live_keys.pop(job.key, None)
        else:
            job.next_attempt_at = self.next_attempt_time(attempts, now)
            job.status = JobStatus.PENDING

        log_delivery_outcome(
            job.job_id,
            str(job.kind),
            "failed" if exhausted else "retrying",
            attempts,
            round((time.monotonic() - started) * 1000, 2),
            error=error_message,
        )

    async def _write_outcome(self, job: DeliveryJob, entry: DeliveryLogEntry) -> None:
        try:
            await self.delivery_log.save(entry)
        except Exception as e:
            # The in-memory outcome still applies; a stale claim is picked up
            # again by the next scan in a new session.
            logger.error(
                "Failed to record delivery outcome",
                job_id=job.job_id,
                status=str(entry.status),
                error=str(e),
                error_type=type(e).__name__,
            )

    def next_attempt_time(self, attempts: int, now: datetime) -> datetime:
        """Exponential backoff: base * 2**attempts (4s, 8s, ... with a 2s base)."""
        return now + timedelta(seconds=self.backoff_base_seconds * (2**attempts))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Polling loop: drain, then wait `poll_interval` or until close()."""
        logger.info(
            "Delivery queue started",
            session_id=self.session_id,
            concurrency=self.concurrency,
            poll_interval=self.poll_interval,
            max_attempts=self.max_attempts,
        )

        while not self._stop_event.is_set():
            try:
                await self.drain_once()
            except Exception as e:
                logger.error(
                    "Error draining delivery queue", error=str(e), error_type=type(e).__name__
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except TimeoutError:
                continue

        logger.info("Delivery queue loop stopped", session_id=self.session_id)

    def start(self) -> None:
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self.run(), name="delivery-queue")

    async def join(self) -> None:
        """Wait until no job is in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def flush(self, max_wait_seconds: float | None = None) -> None:
        """
        Drain until no live jobs remain, sleeping through retry backoffs.
        Used by one-shot workers and tests; the long-running service relies
        on run().
        """
        deadline = time.monotonic() + max_wait_seconds if max_wait_seconds is not None else None

        while self._live_keys:
            await self.drain_once()
            await self.join()

            waiting = [
                job.next_attempt_at
                for job in self._jobs.values()
                if job.status == JobStatus.PENDING and job.next_attempt_at is not None
            ]
            if not waiting:
                continue

            delay = (min(waiting) - self.clock.now()).total_seconds()
            if deadline is not None and time.monotonic() + max(delay, 0) > deadline:
                logger.warning("Delivery queue flush timed out", pending=self.stats()["pending"])
                return
            if delay > 0:
                await asyncio.sleep(delay)

    def clean(self, older_than: timedelta) -> int:
        """Remove delivered/failed jobs that finished before now - older_than."""
        cutoff = self.clock.now() - older_than
        stale = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in (JobStatus.DELIVERED, JobStatus.FAILED)
            and job.finished_at is not None
            and job.finished_at < cutoff
        ]
        for job_id in stale:
            del self._jobs[job_id]

        logger.info("Delivery queue cleaned", removed=len(stale), **self.stats())
        return len(stale)

    async def close(self, timeout: float = 10.0) -> None:
        """
        Stop accepting jobs, stop the loop and give in-flight deliveries up
        to `timeout` seconds. Deliveries still running after that are
        cancelled and their jobs abandoned.
        """
        self._accepting = False
        self._stop_event.set()

        abandoned = 0
        if self._in_flight:
            _, still_running = await asyncio.wait(list(self._in_flight.values()), timeout=timeout)
            for task in still_running:
                task.cancel()
            abandoned = len(still_running)
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        logger.info("Delivery queue stopped", abandoned=abandoned, **self.stats())
