"""
Event-correlation engine.

Cooperative procedures over an ordered bus event stream:
- take: wait for the next event matching a predicate
- race: first of several waits or tasks to complete
- spawn / cancel: background watches owned by their scope
- guard: abort a procedure when a drop event arrives
"""

from .channel import Cursor, EventChannel
from .runtime import SagaRuntime, to_awaitable
from .scope import RaceResult, TaskScope, WatchHandle

__all__ = [
    "Cursor",
    "EventChannel",
    "RaceResult",
    "SagaRuntime",
    "TaskScope",
    "WatchHandle",
    "to_awaitable",
]
