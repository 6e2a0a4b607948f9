"""Task scopes: take, race, spawn, cancel and guard over an event channel."""
import asyncio
from typing import Any, Awaitable, Callable, NamedTuple
import structlog
from .channel import Cursor, EventChannel
from ..errors import ConnectionLost, WaitTimeout
from ..matchers import Pattern

log = structlog.get_logger()


class RaceResult(NamedTuple):
    """Which race branch completed first, and its value."""
    index: int
    value: Any


class WatchHandle:
    """Handle to a task started with `TaskScope.spawn`."""

    def __init__(self, task: asyncio.Task, name: str, cursor: Cursor | None = None):
        self._task = task
        self.name = name
        self._cursor = cursor

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    def exception(self) -> BaseException | None:
        """The exception the watch failed with, if it finished with one."""
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    def cancel(self) -> bool:
        """Request cancellation; returns False if the task already finished."""
        if self._task.done():
            return False
        return self._task.cancel()

    def __await__(self):
        return self._task.__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<WatchHandle {self.name} {state}>"


class TaskScope:
    """
    The effect surface a saga procedure runs against.

    Every task of a run (the root procedure, spawned watches, guarded
    procedures) gets its own scope with its own channel cursor.
    """

    def __init__(self, channel: EventChannel, cursor: Cursor, name: str = "root"):
        self._channel = channel
        self.cursor = cursor
        self.name = name
        self._children: set[WatchHandle] = set()

    def take(self, pattern: Pattern) -> asyncio.Future:
        """Wait for the next event matching `pattern`; registered immediately."""
        return self._channel.take(pattern, self.cursor)

    async def wait(self, awaitable: Awaitable, timeout: float | None = None, what: str = "event") -> Any:
        """Await with an optional deadline, raising WaitTimeout when it passes."""
        if timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            raise WaitTimeout(what, timeout) from None

    def child(self, name: str) -> "TaskScope":
        """A scope whose cursor starts where this one is now."""
        return TaskScope(self._channel, self._channel.cursor(self.cursor), name=f"{self.name}/{name}")

    async def race(self, *branches: Awaitable) -> RaceResult:
        """
        Wait until the first branch completes.

        Branches are take futures or coroutines. The winner's value is
        returned (or its exception raised); losing waits are detached and
        losing tasks cancelled without waiting for them.
        """
        if not branches:
            raise ValueError("race() needs at least one branch")

        futures = [asyncio.ensure_future(branch) for branch in branches]
        try:
            done, _ = await asyncio.wait(futures, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for future in futures:
                if not future.done():
                    future.cancel()

        index = next(i for i, future in enumerate(futures) if future in done)
        for i, future in enumerate(futures):
            # Discard outcomes of losers that finished in the same tick
            if i != index and future in done and not future.cancelled():
                future.exception()

        return RaceResult(index, futures[index].result())

    def spawn(self, fn: Callable[..., Awaitable], *args, name: str | None = None) -> WatchHandle:
        """
        Start `fn(child_scope, *args)` as a background task owned by this scope.

        Failures are logged as `watch.failed`; nobody awaits the task's result
        unless they await the handle.
        """
        child = self.child(name or getattr(fn, "__name__", "watch"))
        task = asyncio.get_running_loop().create_task(_run_scoped(child, fn, *args), name=child.name)
        handle = WatchHandle(task, child.name, child.cursor)
        self._children.add(handle)
        task.add_done_callback(lambda _: self._on_child_done(handle))
        log.debug("watch.spawned", watch=handle.name)
        return handle

    async def cancel(self, handle: WatchHandle, upto: int | None = None):
        """
        Cancel a spawned task and let it unwind.

        A no-op when the task already finished. Events delivered before this
        call are processed by the task first, and side effects it already
        made are kept. With `upto`, only events at channel positions below
        it are still delivered, e.g. `upto=self.cursor.position` stops at the
        event this scope just took.
        """
        if handle.done():
            return
        if upto is not None and handle._cursor is not None:
            handle._cursor.limit = upto
        # One loop pass runs a task that has not started yet, or one whose
        # wait was already satisfied, up to its next suspension point
        await asyncio.sleep(0)
        if not handle.cancel():
            return
        await asyncio.wait([handle._task])
        log.debug("watch.cancelled", watch=handle.name)

    async def guard(self, proc: Callable[..., Awaitable], drop: Pattern, *args) -> Any:
        """
        Run `proc(child_scope, *args)`, failing fast if a `drop` event arrives first.

        Raises:
            ConnectionLost: if the drop event wins the race
        """
        dropped = self.take(drop)
        child = self.child(getattr(proc, "__name__", "guarded"))
        outcome = await self.race(dropped, _run_scoped(child, proc, *args))
        if outcome.index == 0:
            raise ConnectionLost(f"Connection closed ({outcome.value.type})")
        return outcome.value

    def finish(self):
        """Cancel children still running and release this scope's cursor."""
        for handle in list(self._children):
            if handle.cancel():
                log.warning("saga.child_cancelled", scope=self.name, watch=handle.name)
        self._children.clear()
        self._channel.release(self.cursor)

    def _on_child_done(self, handle: WatchHandle):
        self._children.discard(handle)
        exc = handle.exception()
        if exc is not None:
            log.error("watch.failed", watch=handle.name, error=str(exc), exc_info=exc)


async def _run_scoped(scope: TaskScope, fn: Callable[..., Awaitable], *args) -> Any:
    try:
        return await fn(scope, *args)
    finally:
        scope.finish()
