"""In-memory event bus adapter."""
import asyncio
from typing import Any, Callable, Mapping
import structlog
from .base import BusAdapter, SendCallback, CONNECTED, CONNECTION_CLOSED
from ..event_models import Event

log = structlog.get_logger()

Responder = Callable[[dict[str, Any]], Any]


def accept_all(request: dict[str, Any]) -> dict[str, Any]:
    """Acknowledge every request with Success, echoing its ActionID."""
    return {"response": "Success", "actionid": request.get("ActionID"), "message": "Accepted"}


class InMemoryAdapter(BusAdapter):
    """
    In-process event bus.

    Events are published with `emit`; requests are answered by `responder`
    on the next loop iteration, the way a network peer would answer.
    """

    def __init__(self, responder: Responder | None = None):
        super().__init__()
        self.responder = responder or accept_all
        self.sent: list[dict[str, Any]] = []
        self._connected = False

    def emit(self, event_type: str, **payload) -> Event:
        """Publish an event to all subscribers."""
        event = Event(type=event_type, payload=payload)
        self._emit(event)
        return event

    def send(self, request: Mapping[str, Any], callback: SendCallback):
        self._require_action(request)
        request = dict(request)
        self.sent.append(request)
        log.debug("request.sent", action=request.get("Action"), action_id=request.get("ActionID"), adapter="memory")

        try:
            outcome = self.responder(request)
        except Exception as e:
            outcome = e
        asyncio.get_running_loop().call_soon(callback, outcome)

    async def open(self):
        self._connected = True
        self.emit(CONNECTED)

    async def close(self):
        if self._connected:
            self._connected = False
            self.emit(CONNECTION_CLOSED)

    async def health_check(self) -> bool:
        return self._connected
