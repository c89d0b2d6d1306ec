import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from bikemanager.config import Settings
from bikemanager.container import build_services
from bikemanager.features.maintenance_reminders.domain import ScheduledMaintenance
from bikemanager.features.maintenance_reminders.repository import (
    InMemoryDeliveryLog,
    InMemoryMaintenanceSource,
)
from bikemanager.features.password_reset.domain import UserAccount
from bikemanager.features.password_reset.repository import InMemoryUserDirectory
from bikemanager.services.email_sender import TransientDeliveryFailure

START = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class FakeEmailSender:
    """
    Records sends and tracks how many are in flight at once.

    `failures` is consumed one exception per send; `gate` (when set) holds
    every send until the test releases it.
    """

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.failures: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0

    def fail_next(self, *errors: Exception) -> None:
        self.failures.extend(errors)

    async def send(self, recipient: str, payload: dict) -> str:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)

            if self.failures:
                raise self.failures.pop(0)

            self.sent.append((recipient, payload))
            return f"msg-{len(self.sent)}"
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        return None


class FakeRedisClient:
    """Stands in for FastRedisClient; `client` raises on every command."""

    class _BrokenRedis:
        async def eval(self, *args, **kwargs):
            raise ConnectionError("redis down")

        async def zcount(self, *args, **kwargs):
            raise ConnectionError("redis down")

        async def delete(self, *args, **kwargs):
            raise ConnectionError("redis down")

    def __init__(self):
        self.client = self._BrokenRedis()


def make_maintenance(**overrides) -> ScheduledMaintenance:
    data = {
        "id": "maint-1",
        "bike_id": "bike-1",
        "bike_name": "Caloi Elite",
        "owner_id": "user-1",
        "owner_email": "rider@example.com",
        "owner_name": "Ana",
        "scheduled_date": START + timedelta(days=3),
        "service_description": "Chain and brake pads",
        "notification_days_before": 3,
    }
    data.update(overrides)
    return ScheduledMaintenance(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return FakeEmailSender()


@pytest.fixture
def delivery_log():
    return InMemoryDeliveryLog()


@pytest.fixture
def maintenance_source():
    return InMemoryMaintenanceSource()


@pytest.fixture
def fake_redis():
    return FakeRedisClient()


@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        DATABASE_URL=None,
        REDIS_URL=None,
        RESEND_API_KEY=None,
        MAINTENANCE_REMINDER_ENABLED=False,
        REMINDER_SCAN_ON_STARTUP=False,
        DELIVERY_POLL_INTERVAL_SECONDS=60.0,
        DELIVERY_BACKOFF_BASE_SECONDS=2.0,
    )


@pytest.fixture
def user_directory():
    users = InMemoryUserDirectory()
    users.add(UserAccount(id="user-1", email="rider@example.com", name="Ana"))
    return users


@pytest.fixture
def services(test_settings, clock, sender, maintenance_source, user_directory):
    return build_services(
        test_settings,
        clock=clock,
        email_sender=sender,
        maintenance_source=maintenance_source,
        user_directory=user_directory,
    )


@pytest.fixture
def transient_error():
    return TransientDeliveryFailure("provider returned 503", status_code=503)
