"""Run saga procedures against a bus adapter."""
import asyncio
from typing import Any, Awaitable, Callable
import structlog
from .channel import EventChannel
from .scope import TaskScope
from ..adapters.base import BusAdapter

log = structlog.get_logger()


class SagaRuntime:
    """
    Executes procedures of the form `async def proc(scope, *args)`.

    Each run gets its own event channel subscribed to the bus for the
    duration of the run, so concurrent runs never consume each other's
    events.
    """

    def __init__(self, bus: BusAdapter):
        self.bus = bus

    async def run(self, proc: Callable[..., Awaitable], *args, name: str | None = None) -> Any:
        """
        Run `proc(scope, *args)` to completion.

        Returns the procedure's value or raises its exception. Background
        tasks the procedure left running are cancelled before this returns.
        """
        channel = EventChannel()
        scope = TaskScope(channel, channel.cursor(), name=name or getattr(proc, "__name__", "saga"))
        unsubscribe = self.bus.subscribe(channel.put)
        log.debug("saga.started", saga=scope.name)
        try:
            return await proc(scope, *args)
        finally:
            scope.finish()
            unsubscribe()
            channel.close()
            log.debug("saga.finished", saga=scope.name)


def to_awaitable(op: Callable[..., Any], *args) -> asyncio.Future:
    """
    Call a callback-style operation as `op(*args, callback)` and return a future.

    The future resolves with the value passed to the callback, or fails if
    the callback receives an exception. Exceptions raised by `op` itself
    propagate synchronously.
    """
    future = asyncio.get_running_loop().create_future()

    def callback(outcome: Any):
        if future.done():
            return
        if isinstance(outcome, BaseException):
            future.set_exception(outcome)
        else:
            future.set_result(outcome)

    op(*args, callback)
    return future
