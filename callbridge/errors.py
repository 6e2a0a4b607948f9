"""Error types surfaced by the call correlator and the bus adapters."""
from typing import Any


class CallBridgeError(Exception):
    """Base class for all CallBridge failures."""


class MalformedRequest(CallBridgeError):
    """A caller-supplied request is missing a required field."""


class DuplicateCorrelationId(MalformedRequest):
    """Another in-flight call already uses this correlation id."""

    def __init__(self, call_id: str):
        super().__init__(f"Call {call_id!r} is already in flight")
        self.call_id = call_id


class RequestRejected(CallBridgeError):
    """The bus acknowledged the request with a non-success response."""

    def __init__(self, response: dict[str, Any]):
        message = response.get("message") or response.get("response") or "no response"
        super().__init__(f"Request rejected: {message}")
        self.response = response


class ConnectionLost(CallBridgeError):
    """The bus connection dropped before the procedure finished."""


class ConnectionFailed(CallBridgeError):
    """Opening the bus connection did not reach the connected state."""

    def __init__(self, reason: str, detail: str | None = None):
        super().__init__(f"Connection failed: {reason}" + (f" ({detail})" if detail else ""))
        self.reason = reason
        self.detail = detail


class WaitTimeout(CallBridgeError):
    """An event wait exceeded its deadline."""

    def __init__(self, what: str, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for {what}")
        self.what = what
        self.timeout = timeout
