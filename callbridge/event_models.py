from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, Mapping
from datetime import datetime
import uuid, time

from .errors import MalformedRequest


class Event(BaseModel):
    """A notification delivered by the event bus."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Event type discriminator")
    payload: Dict[str, Any] = Field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


class OutboundRequest(BaseModel):
    """A request sent once on the bus; `action_id` is its correlation key."""
    action: str = Field(..., min_length=1)
    action_id: str | None = None
    fields: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("action_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        # Numeric and string ids must correlate the same way
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "OutboundRequest":
        """
        Build a request from an AMI-style header mapping.

        Header names are matched case-insensitively for `Action` and
        `ActionID`; every other header is passed through unchanged.

        Raises:
            MalformedRequest: if `Action` is missing or `ActionID` is blank
        """
        action = None
        action_id = None
        has_action_id = False
        fields: Dict[str, Any] = {}
        for key, value in mapping.items():
            lowered = key.lower()
            if lowered == "action":
                action = value
            elif lowered == "actionid":
                has_action_id = True
                action_id = value
            else:
                fields[key] = value

        if not action or not str(action).strip():
            raise MalformedRequest("Request has no Action")
        if has_action_id and (action_id is None or not str(action_id).strip()):
            raise MalformedRequest("Request has a blank ActionID")

        return cls(
            action=str(action),
            action_id=str(action_id) if has_action_id else None,
            fields=fields,
        )

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"Action": self.action}
        if self.action_id is not None:
            wire["ActionID"] = self.action_id
        wire.update(self.fields)
        return wire


class CallResult(BaseModel):
    """Outcome of one tracked call."""
    model_config = ConfigDict(frozen=True)

    call_id: str
    channel: str | None = None
    start_time: datetime
    answered: bool = False
    pickup_time: datetime | None = None
    hangup_time: datetime | None = None
    hangup_cause: str | None = None

    @property
    def talk_seconds(self) -> float | None:
        if self.pickup_time is None or self.hangup_time is None:
            return None
        return (self.hangup_time - self.pickup_time).total_seconds()


class CallProgress(BaseModel):
    """Mutable accumulator for one in-flight call, frozen into a CallResult."""
    call_id: str
    start_time: datetime
    channel: str | None = None
    answered: bool = False
    pickup_time: datetime | None = None
    hangup_time: datetime | None = None
    hangup_cause: str | None = None

    def freeze(self) -> CallResult:
        return CallResult(**self.model_dump())


class StoredCallResult(CallResult):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    ts: float = Field(default_factory=lambda: time.time())
