"""Redis Streams call result store."""
from typing import Iterable
import structlog
import orjson
from redis import Redis
from redis.exceptions import RedisError
from .base import ResultStore
from ..event_models import CallResult, StoredCallResult
from ..config import get_settings

log = structlog.get_logger()


class RedisResultStore(ResultStore):
    """Redis Streams implementation of the result store.

    Each finished call is appended to a capped stream and read back
    newest first.
    """

    def __init__(self, redis_url: str | None = None, maxlen: int | None = None):
        """
        Initialize Redis result store.

        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            maxlen: Approximate cap on stream length (defaults to settings.RESULT_STORE_MAXLEN)
        """
        settings = get_settings()
        self.redis_url = redis_url or str(settings.REDIS_URL)
        self.maxlen = maxlen or settings.RESULT_STORE_MAXLEN
        self._client: Redis | None = None
        self._stream_key = "callbridge:calls"

    def _get_client(self) -> Redis:
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._client

    async def record(self, result: CallResult) -> StoredCallResult:
        """
        Append a result to the stream.

        Raises:
            RedisError: If unable to write to Redis
        """
        stored = StoredCallResult(**result.model_dump())

        try:
            client = self._get_client()
            client.xadd(
                self._stream_key,
                {"data": orjson.dumps(stored.model_dump(mode="json"))},
                id="*",
                maxlen=self.maxlen,
                approximate=True
            )
            log.info(
                "result.stored",
                id=stored.id,
                call_id=stored.call_id,
                answered=stored.answered,
                store="redis_stream"
            )
            return stored

        except RedisError as e:
            log.error("redis.record_failed", error=str(e), call_id=stored.call_id)
            raise

    async def list_recent(self, limit: int = 50) -> Iterable[StoredCallResult]:
        try:
            client = self._get_client()
            entries = client.xrevrange(self._stream_key, count=limit)

            results = []
            for entry_id, entry_data in entries:
                if b"data" in entry_data:
                    results.append(StoredCallResult(**orjson.loads(entry_data[b"data"])))
            return results

        except RedisError as e:
            log.error("redis.list_failed", error=str(e))
            # Listing is best effort; an outage yields an empty page
            return []

    async def health_check(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except RedisError as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    def close(self):
        if self._client:
            self._client.close()
            self._client = None
