"""In-memory call result store."""
from collections import deque
from typing import Iterable
import structlog
from .base import ResultStore
from ..event_models import CallResult, StoredCallResult

log = structlog.get_logger()


class InMemoryResultStore(ResultStore):
    """Keeps the most recent `maxlen` results in process memory."""

    def __init__(self, maxlen: int = 10000):
        self._buffer: deque[StoredCallResult] = deque(maxlen=maxlen)

    async def record(self, result: CallResult) -> StoredCallResult:
        stored = StoredCallResult(**result.model_dump())
        self._buffer.append(stored)
        log.info(
            "result.stored",
            id=stored.id,
            call_id=stored.call_id,
            answered=stored.answered,
            store="memory"
        )
        return stored

    async def list_recent(self, limit: int = 50) -> Iterable[StoredCallResult]:
        return list(reversed(self._buffer))[:limit]

    async def health_check(self) -> bool:
        return True
