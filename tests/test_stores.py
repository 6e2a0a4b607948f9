"""Tests for call result stores."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
import orjson
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from callbridge.event_models import CallResult
from callbridge.stores.memory import InMemoryResultStore
from callbridge.stores.redis_stream import RedisResultStore

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_result(call_id: str = "42", answered: bool = True) -> CallResult:
    return CallResult(
        call_id=call_id,
        channel="SIP/100-0001",
        start_time=START,
        answered=answered,
        pickup_time=START + timedelta(seconds=5) if answered else None,
        hangup_time=START + timedelta(seconds=65),
        hangup_cause="Normal Clearing",
    )


def test_call_result_talk_seconds():
    assert make_result().talk_seconds == 60.0
    assert make_result(answered=False).talk_seconds is None


@pytest.mark.asyncio
async def test_memory_store_record():
    """Test in-memory store assigns an id and timestamp."""
    store = InMemoryResultStore()

    stored = await store.record(make_result())

    assert stored.id is not None
    assert stored.ts is not None
    assert stored.call_id == "42"
    assert stored.answered is True


@pytest.mark.asyncio
async def test_memory_store_list_recent():
    """Test in-memory store lists newest first."""
    store = InMemoryResultStore()
    for i in range(5):
        await store.record(make_result(call_id=str(i)))

    results = list(await store.list_recent(limit=3))

    assert [r.call_id for r in results] == ["4", "3", "2"]


@pytest.mark.asyncio
async def test_memory_store_is_capped():
    store = InMemoryResultStore(maxlen=2)
    for i in range(3):
        await store.record(make_result(call_id=str(i)))

    results = list(await store.list_recent())

    assert [r.call_id for r in results] == ["2", "1"]
    assert await store.health_check() is True


@pytest.mark.asyncio
async def test_redis_store_record_with_mock():
    """Test Redis store record with mocked Redis."""
    with patch("callbridge.stores.redis_stream.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.xadd.return_value = b"1234567890-0"

        store = RedisResultStore(redis_url="redis://localhost:6379", maxlen=100)
        stored = await store.record(make_result())

        mock_redis.xadd.assert_called_once()
        args, kwargs = mock_redis.xadd.call_args
        assert args[0] == "callbridge:calls"
        assert kwargs["maxlen"] == 100
        assert kwargs["approximate"] is True

        data = orjson.loads(args[1]["data"])
        assert data["call_id"] == "42"
        assert data["id"] == stored.id
        assert data["answered"] is True


@pytest.mark.asyncio
async def test_redis_store_list_recent_with_mock():
    """Test Redis store reads entries back newest first."""
    with patch("callbridge.stores.redis_stream.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis

        newer = make_result(call_id="2")
        older = make_result(call_id="1", answered=False)
        mock_redis.xrevrange.return_value = [
            (b"2-0", {b"data": orjson.dumps({"id": "b", "ts": 2.0, **newer.model_dump(mode="json")})}),
            (b"1-0", {b"data": orjson.dumps({"id": "a", "ts": 1.0, **older.model_dump(mode="json")})}),
        ]

        store = RedisResultStore(redis_url="redis://localhost:6379")
        results = list(await store.list_recent(limit=2))

        mock_redis.xrevrange.assert_called_once_with("callbridge:calls", count=2)
        assert [r.call_id for r in results] == ["2", "1"]
        assert results[0].start_time == START
        assert results[1].pickup_time is None


@pytest.mark.asyncio
async def test_redis_store_failures():
    """Test Redis outages: record raises, listing and health degrade."""
    with patch("callbridge.stores.redis_stream.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.xadd.side_effect = RedisConnectionError("Connection refused")
        mock_redis.xrevrange.side_effect = RedisConnectionError("Connection refused")
        mock_redis.ping.side_effect = RedisConnectionError("Connection refused")

        store = RedisResultStore(redis_url="redis://localhost:6379")

        with pytest.raises(RedisConnectionError):
            await store.record(make_result())
        assert list(await store.list_recent()) == []
        assert await store.health_check() is False


@pytest.mark.asyncio
async def test_redis_store_health_check_with_mock():
    with patch("callbridge.stores.redis_stream.Redis") as mock_redis_class:
        mock_redis = MagicMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.ping.return_value = True

        store = RedisResultStore(redis_url="redis://localhost:6379")

        assert await store.health_check() is True
        store.close()
        mock_redis.close.assert_called_once()
