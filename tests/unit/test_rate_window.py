import asyncio
from datetime import timedelta

import pytest
from conftest import START

from bikemanager.services.rate_window import InMemoryRateWindow, RedisRateWindow


@pytest.mark.asyncio
async def test_allows_up_to_limit_then_refuses():
    window = InMemoryRateWindow(limit=3, window=timedelta(hours=1))

    results = [
        await window.try_record_activity("password_reset:u1", START + timedelta(minutes=m))
        for m in (0, 10, 20, 30)
    ]

    assert results == [True, True, True, False]
    assert await window.activity_count("password_reset:u1", START + timedelta(minutes=30)) == 3


@pytest.mark.asyncio
async def test_refused_activity_is_not_recorded():
    window = InMemoryRateWindow(limit=1, window=timedelta(hours=1))
    assert await window.try_record_activity("k", START)

    for minutes in range(1, 5):
        assert not await window.try_record_activity("k", START + timedelta(minutes=minutes))

    # Only the first activity counts, so the window reopens one hour after it.
    assert await window.try_record_activity("k", START + timedelta(hours=1, seconds=1))


@pytest.mark.asyncio
async def test_window_boundary_is_inclusive():
    window = InMemoryRateWindow(limit=1, window=timedelta(hours=1))
    assert await window.try_record_activity("k", START)

    assert not await window.try_record_activity("k", START + timedelta(hours=1))
    assert await window.try_record_activity("k", START + timedelta(hours=1, microseconds=1))


@pytest.mark.asyncio
async def test_subjects_are_independent():
    window = InMemoryRateWindow(limit=1, window=timedelta(hours=1))

    assert await window.try_record_activity("a", START)
    assert await window.try_record_activity("b", START)
    assert not await window.try_record_activity("a", START)


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_limit():
    window = InMemoryRateWindow(limit=3, window=timedelta(hours=1))

    results = await asyncio.gather(*[window.try_record_activity("k", START) for _ in range(10)])

    assert results.count(True) == 3


@pytest.mark.asyncio
async def test_reset_clears_subject():
    window = InMemoryRateWindow(limit=1, window=timedelta(hours=1))
    await window.try_record_activity("k", START)

    await window.reset("k")

    assert await window.activity_count("k", START) == 0
    assert await window.try_record_activity("k", START)


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryRateWindow(limit=0, window=timedelta(hours=1))


@pytest.mark.asyncio
async def test_redis_window_fails_closed_by_default(fake_redis):
    window = RedisRateWindow(fake_redis, limit=3, window=timedelta(hours=1))

    assert await window.try_record_activity("k", START) is False


@pytest.mark.asyncio
async def test_redis_window_can_fail_open(fake_redis):
    window = RedisRateWindow(fake_redis, limit=3, window=timedelta(hours=1), fail_open=True)

    assert await window.try_record_activity("k", START) is True


@pytest.mark.asyncio
async def test_redis_window_uses_namespaced_key():
    calls = []

    class RecordingRedis:
        async def eval(self, script, numkeys, key, *args):
            calls.append((key, args))
            return [1, 1]

    class Client:
        client = RecordingRedis()

    window = RedisRateWindow(Client(), limit=3, window=timedelta(hours=1), namespace="pr")

    assert await window.try_record_activity("password_reset:u1", START)
    key, args = calls[0]
    assert key == "pr:password_reset:u1"
    assert args[0] == 3
    assert args[1] == 3_600_000


@pytest.mark.asyncio
async def test_expired_subjects_are_dropped():
    window = InMemoryRateWindow(limit=3, window=timedelta(hours=1))
    for n in range(1000):
        assert await window.try_record_activity(f"password_reset:user-{n}", START)
    assert window.tracked_subjects() == 1000

    later = START + timedelta(days=2)
    assert await window.activity_count("password_reset:user-1", later) == 0

    assert window.tracked_subjects() == 0
    assert window._locks == {}


@pytest.mark.asyncio
async def test_counting_unknown_subject_creates_no_state():
    window = InMemoryRateWindow(limit=3, window=timedelta(hours=1))

    assert await window.activity_count("never-seen", START) == 0
    assert await window.activity_count("never-seen", START + timedelta(minutes=5)) == 0

    assert window.tracked_subjects() == 0
    assert window._locks == {}


@pytest.mark.asyncio
async def test_live_subjects_survive_sweep():
    window = InMemoryRateWindow(limit=3, window=timedelta(hours=1))
    await window.try_record_activity("old", START)
    await window.try_record_activity("recent", START + timedelta(minutes=90))

    assert await window.activity_count("recent", START + timedelta(hours=2)) == 1

    assert window.tracked_subjects() == 1
    assert await window.try_record_activity("recent", START + timedelta(hours=2))
