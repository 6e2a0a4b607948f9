"""Base adapter interface for event bus backends."""
from abc import ABC, abstractmethod
from typing import Any, Callable, Mapping
import structlog
from ..event_models import Event
from ..errors import MalformedRequest

log = structlog.get_logger()

# Connection lifecycle events every adapter emits
CONNECTED = "connected"
CONNECTION_CLOSED = "connection_closed"
INVALID_PEER = "invalid_peer"
LOGIN_INCORRECT = "login_incorrect"

Subscriber = Callable[[Event], None]
SendCallback = Callable[[Any], None]


class BusAdapter(ABC):
    """
    Abstract interface for event bus backends.

    Subscribers see a single ordered stream of events; filtering is left to
    their predicates.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Deliver every subsequent event to `callback`, in emission order.

        Returns:
            An idempotent unsubscribe function
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def dispatch(self, request: Mapping[str, Any]):
        """
        Emit a locally constructed request as an event of type `request["type"]`.

        Raises:
            MalformedRequest: if the request has no `type`
        """
        event_type = request.get("type") if isinstance(request, Mapping) else None
        if not event_type:
            raise MalformedRequest("Dispatched request has no type")
        self._emit(Event(type=str(event_type), payload=dict(request)))

    def _emit(self, event: Event):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                log.error("bus.subscriber_failed", event_type=event.type, error=str(e), exc_info=True)

    @staticmethod
    def _require_action(request: Mapping[str, Any]) -> str:
        for key, value in request.items():
            if key.lower() == "action" and value:
                return str(value)
        raise MalformedRequest("Request has no Action")

    @abstractmethod
    def send(self, request: Mapping[str, Any], callback: SendCallback):
        """
        Send a request; `callback` later receives the acknowledgement.

        The acknowledgement is a lowercase-keyed mapping such as
        `{"response": "Success", "actionid": "42"}`, or an exception when
        the transport fails.

        Raises:
            MalformedRequest: if the request has no `Action`
        """
        pass

    @abstractmethod
    async def open(self):
        """Connect; the outcome is reported through lifecycle events."""
        pass

    @abstractmethod
    async def close(self):
        """Disconnect and emit `connection_closed`."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is connected and usable.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass
