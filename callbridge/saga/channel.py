"""Ordered event buffer shared by the tasks of one saga run."""
import asyncio
from dataclasses import dataclass
import structlog
from ..event_models import Event
from ..matchers import Pattern

log = structlog.get_logger()


@dataclass(eq=False)
class Cursor:
    """
    Absolute position of the next event a task may consume.

    `parked` is set while every wait on the cursor is pending, so events
    its waits pass over can be skipped. `limit` caps the positions still
    delivered to a task that is being cancelled.
    """
    position: int = 0
    parked: bool = False
    limit: int | None = None


@dataclass(eq=False)
class _Taker:
    pattern: Pattern
    cursor: Cursor
    future: asyncio.Future


class EventChannel:
    """
    Buffers every bus event delivered during a run.

    A task only resumes on the loop iteration after its wait resolved, and
    events keep arriving in between. Each task therefore reads the buffer
    through its own cursor: a wait first scans what was buffered since the
    task's last match, then parks until a new matching event is put.
    A parked cursor moves past every event its waits reject, so only tasks
    running between waits hold events back. Events behind every live
    cursor are dropped.
    """

    def __init__(self):
        self._events: list[Event] = []
        self._offset = 0
        self._takers: list[_Taker] = []
        self._cursors: set[Cursor] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._events)

    def cursor(self, start: Cursor | None = None) -> Cursor:
        """Open a cursor, starting where `start` is (or at the end of the buffer)."""
        position = start.position if start is not None else self._offset + len(self._events)
        cursor = Cursor(position)
        self._cursors.add(cursor)
        return cursor

    def release(self, cursor: Cursor):
        self._cursors.discard(cursor)
        self._compact()

    def put(self, event: Event):
        """Append an event and resolve every parked wait it satisfies."""
        if self._closed:
            return
        self._events.append(event)
        index = self._offset + len(self._events) - 1

        rejected: set[Cursor] = set()
        for taker in list(self._takers):
            cursor = taker.cursor
            if taker.future.done():
                self._takers.remove(taker)
                continue
            if cursor.position > index or (cursor.limit is not None and index >= cursor.limit):
                continue
            if taker.pattern(event):
                self._takers.remove(taker)
                cursor.position = index + 1
                cursor.parked = False
                taker.future.set_result(event)
            else:
                rejected.add(cursor)

        for cursor in rejected:
            # Every pending wait on this cursor has seen the event
            if cursor.parked and cursor.position <= index:
                cursor.position = index + 1

        self._compact()

    def take(self, pattern: Pattern, cursor: Cursor) -> asyncio.Future:
        """
        Return a future for the first event at or after `cursor` matching `pattern`.

        The wait is registered before this call returns, so no event put
        afterwards can be missed.
        """
        future = asyncio.get_running_loop().create_future()
        if self._closed:
            future.cancel()
            return future

        start = max(cursor.position - self._offset, 0)
        end = len(self._events)
        if cursor.limit is not None:
            end = min(end, cursor.limit - self._offset)
        for i in range(start, end):
            event = self._events[i]
            if pattern(event):
                cursor.position = self._offset + i + 1
                cursor.parked = False
                future.set_result(event)
                self._compact()
                return future

        cursor.parked = True
        self._takers.append(_Taker(pattern, cursor, future))
        return future

    def close(self):
        """Cancel parked waits and drop the buffer."""
        self._closed = True
        for taker in self._takers:
            if not taker.future.done():
                taker.future.cancel()
        self._takers.clear()
        self._events.clear()
        self._cursors.clear()

    def _compact(self):
        if self._cursors:
            low = min(cursor.position for cursor in self._cursors)
        else:
            low = self._offset + len(self._events)
        drop = low - self._offset
        if drop > 0:
            del self._events[:drop]
            self._offset = low
