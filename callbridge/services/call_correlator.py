"""Call progress tracking over an event bus."""
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
import uuid
import structlog
from pydantic import BaseModel
from ..adapters.base import BusAdapter, CONNECTED, CONNECTION_CLOSED, INVALID_PEER, LOGIN_INCORRECT
from ..config import get_settings
from ..errors import (
    CallBridgeError,
    ConnectionFailed,
    ConnectionLost,
    DuplicateCorrelationId,
    RequestRejected,
    WaitTimeout,
)
from ..event_models import CallProgress, CallResult, Event, OutboundRequest
from ..matchers import Matcher, all_of, any_of, event_type, field_equals
from ..metrics import Metrics
from ..saga import SagaRuntime, TaskScope, to_awaitable
from ..stores.base import ResultStore

log = structlog.get_logger()

_UNSET: Any = object()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallProfile(BaseModel):
    """
    Event types and field names the correlator matches on.

    The defaults follow AMI: the Originate carries a `call=<id>` channel
    variable, the VarSet event echoing it names the new channel,
    OriginateResponse reports whether the call was answered and Hangup
    ends it.
    """
    # Request side
    correlation_variable: str | None = "call"
    variable_header: str = "Variable"
    ack_success_value: str = "Success"

    # Correlating event: binds the call id to a channel
    correlate_event: str = "VarSet"
    correlate_variable_field: str = "variable"
    correlate_id_field: str = "value"
    channel_field: str = "channel"

    # Optional progress event
    progress_event: str = "OriginateResponse"
    progress_id_field: str | None = "actionid"
    progress_success_field: str | None = "response"
    progress_success_value: str = "Success"

    # Terminal event
    terminal_event: str = "Hangup"
    hangup_cause_field: str | None = "cause-txt"

    connection_lost_event: str = CONNECTION_CLOSED

    def correlating(self, call_id: str) -> Matcher:
        conditions = [event_type(self.correlate_event), field_equals(self.correlate_id_field, call_id)]
        if self.correlation_variable:
            conditions.append(field_equals(self.correlate_variable_field, self.correlation_variable))
        return all_of(*conditions)

    def progress(self, call_id: str, channel: str | None) -> Matcher:
        keys = [field_equals(self.channel_field, channel)]
        if self.progress_id_field:
            keys.append(field_equals(self.progress_id_field, call_id))
        return all_of(event_type(self.progress_event), any_of(*keys))

    def terminal(self, channel: str | None) -> Matcher:
        return all_of(event_type(self.terminal_event), field_equals(self.channel_field, channel))

    def connection_lost(self) -> Matcher:
        return all_of(event_type(self.connection_lost_event))

    def is_answer(self, event: Event) -> bool:
        if self.progress_success_field is None:
            return True
        return str(event.get(self.progress_success_field)) == self.progress_success_value


def _with_variable(existing: Any, assignment: str) -> Any:
    if existing is None or existing == "":
        return assignment
    if isinstance(existing, (list, tuple)):
        return [*existing, assignment]
    return [existing, assignment]


class CallCorrelator:
    """
    Places calls on the bus and follows their events to a CallResult.

    Each `originate` runs as its own saga: send the request, wait for the
    event that binds the call id to a channel, watch for the answer in the
    background, and finish on hangup. The whole run is guarded against
    connection loss.
    """

    def __init__(
        self,
        bus: BusAdapter,
        profile: CallProfile | None = None,
        store: ResultStore | None = None,
        metrics: Metrics | None = None,
        correlate_timeout: float | None = _UNSET,
        max_duration: float | None = _UNSET,
        open_timeout: float | None = _UNSET,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.bus = bus
        self.profile = profile or CallProfile()
        self.store = store
        self.metrics = metrics
        self.correlate_timeout = settings.CORRELATE_TIMEOUT if correlate_timeout is _UNSET else correlate_timeout
        self.max_duration = settings.CALL_MAX_DURATION if max_duration is _UNSET else max_duration
        self.open_timeout = settings.AMI_CONNECT_TIMEOUT if open_timeout is _UNSET else open_timeout
        self.runtime = SagaRuntime(bus)
        self._clock = clock
        self._in_flight: set[str] = set()
        self._unsubscribe_metrics = None
        if metrics is not None:
            self._unsubscribe_metrics = bus.subscribe(metrics.record_bus_event)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    async def open(self) -> Event:
        """
        Connect the bus and wait for the outcome.

        Raises:
            ConnectionFailed: if the bus reports anything but `connected`, or
                reports nothing within `open_timeout` (reason "timeout")
        """
        return await self.runtime.run(self._saga_open, name="open")

    async def close(self):
        await self.bus.close()
        if self._unsubscribe_metrics is not None:
            self._unsubscribe_metrics()
            self._unsubscribe_metrics = None

    async def originate(self, request: OutboundRequest | Mapping[str, Any]) -> CallResult:
        """
        Place a call and wait until it hangs up.

        Args:
            request: An OutboundRequest or an AMI-style header mapping.
                A request without an ActionID gets a generated one.

        Returns:
            The frozen CallResult (start, answer and hangup times)

        Raises:
            MalformedRequest: if the request is missing required fields
            DuplicateCorrelationId: if the ActionID is already in flight
            RequestRejected: if the bus acknowledges with a non-success response
            ConnectionLost: if the connection drops before hangup
            WaitTimeout: if a configured deadline passes
        """
        if not isinstance(request, OutboundRequest):
            request = OutboundRequest.from_mapping(request)

        call_id = request.action_id if request.action_id is not None else uuid.uuid4().hex
        if call_id in self._in_flight:
            raise DuplicateCorrelationId(call_id)
        request = request.model_copy(update={"action_id": call_id})

        self._in_flight.add(call_id)
        if self.metrics is not None:
            self.metrics.call_started()

        outcome = "error"
        result = None
        try:
            with structlog.contextvars.bound_contextvars(call_id=call_id):
                result = await self.runtime.run(
                    self._saga_watch_connection,
                    self._saga_originate,
                    request,
                    name=f"originate:{call_id}",
                )
                outcome = "answered" if result.answered else "unanswered"
                await self._record(result)
            return result
        except CallBridgeError as e:
            outcome = type(e).__name__
            raise
        finally:
            self._in_flight.discard(call_id)
            if self.metrics is not None:
                duration = None
                if result is not None and result.hangup_time is not None:
                    duration = (result.hangup_time - result.start_time).total_seconds()
                self.metrics.call_finished(outcome, duration, answered=bool(result and result.answered))

    async def _record(self, result: CallResult):
        if self.store is None:
            return
        try:
            await self.store.record(result)
        except Exception as e:
            # The call itself completed; a store outage must not turn it into a failure
            log.error("call.store_failed", error=str(e), exc_info=True)

    async def _saga_open(self, scope: TaskScope) -> Event:
        waits = [
            scope.take(all_of(event_type(name)))
            for name in (CONNECTED, CONNECTION_CLOSED, INVALID_PEER, LOGIN_INCORRECT)
        ]
        scope.spawn(self._open_bus, name="open_bus")

        try:
            outcome = await scope.wait(scope.race(*waits), self.open_timeout, what="bus login")
        except WaitTimeout as e:
            log.warning("bus.open_failed", reason="timeout", detail=str(e))
            await self.bus.close()
            raise ConnectionFailed("timeout", str(e)) from None

        event = outcome.value
        if outcome.index == 0:
            log.info("bus.opened")
            return event

        detail = event.get("message") or event.get("error") or event.get("banner")
        log.warning("bus.open_failed", reason=event.type, detail=detail)
        raise ConnectionFailed(event.type, detail)

    async def _open_bus(self, scope: TaskScope):
        await self.bus.open()

    async def _saga_watch_connection(self, scope: TaskScope, saga, *args) -> Any:
        """Run `saga`, failing with ConnectionLost if the connection drops meanwhile."""
        return await scope.guard(saga, self.profile.connection_lost(), *args)

    async def _saga_originate(self, scope: TaskScope, request: OutboundRequest) -> CallResult:
        profile = self.profile
        call_id = request.action_id
        progress = CallProgress(call_id=call_id, start_time=self._clock())

        wire = request.to_wire()
        if profile.correlation_variable:
            wire[profile.variable_header] = _with_variable(
                wire.get(profile.variable_header),
                f"{profile.correlation_variable}={call_id}",
            )

        # Registered before sending so an early event cannot slip past
        dropped = scope.take(profile.connection_lost())
        correlated = scope.take(profile.correlating(call_id))

        log.info("call.originating", action=request.action)
        response = await to_awaitable(self.bus.send, wire)
        if str(response.get("response")) != profile.ack_success_value:
            log.warning("call.rejected", response=response.get("response"), message=response.get("message"))
            raise RequestRejected(dict(response))

        outcome = await scope.wait(
            scope.race(dropped, correlated),
            self.correlate_timeout,
            what=f"{profile.correlate_event} for call {call_id}",
        )
        if outcome.index == 0:
            log.warning("call.connection_lost", stage="correlate")
            raise ConnectionLost("Connection closed before the call was correlated")

        channel = outcome.value.get(profile.channel_field)
        if channel is None:
            log.warning("call.channel_missing", event_type=outcome.value.type)
        progress.channel = channel
        log.info("call.correlated", channel=channel)

        # The progress event may never come, so it is watched in the background
        watch = scope.spawn(self._watch_progress, progress, name="progress")

        hangup = await scope.wait(
            scope.take(profile.terminal(channel)),
            self.max_duration,
            what=f"{profile.terminal_event} on {channel}",
        )
        # The watch may still owe an answer delivered before the hangup,
        # but nothing delivered after it
        await scope.cancel(watch, upto=scope.cursor.position)

        progress.hangup_time = self._clock()
        if profile.hangup_cause_field:
            progress.hangup_cause = hangup.get(profile.hangup_cause_field)

        result = progress.freeze()
        log.info(
            "call.finished",
            channel=channel,
            answered=result.answered,
            hangup_cause=result.hangup_cause,
        )
        return result

    async def _watch_progress(self, scope: TaskScope, progress: CallProgress):
        event = await scope.take(self.profile.progress(progress.call_id, progress.channel))
        if self.profile.is_answer(event):
            progress.answered = True
            progress.pickup_time = self._clock()
            log.info("call.answered", channel=progress.channel)
        else:
            log.info("call.not_answered", channel=progress.channel, reason=event.get("reason"))
