from pydantic import BaseModel, Field
from typing import Any, Dict, List
from ..event_models import CallResult, OutboundRequest, StoredCallResult

class OriginateCallRequest(BaseModel):
    channel: str = Field(..., description="Channel to dial, e.g. SIP/100")
    application: str | None = None
    data: str | None = None
    context: str | None = None
    exten: str | None = None
    priority: int | None = None
    caller_id: str | None = None
    timeout_ms: int | None = Field(default=None, description="Ring timeout passed to the PBX")
    action_id: str | None = None
    variables: Dict[str, str] = Field(default_factory=dict)

    def to_outbound(self) -> OutboundRequest:
        fields: Dict[str, Any] = {"Channel": self.channel, "Async": "true"}
        optional = {
            "Application": self.application,
            "Data": self.data,
            "Context": self.context,
            "Exten": self.exten,
            "Priority": self.priority,
            "CallerID": self.caller_id,
            "Timeout": self.timeout_ms,
        }
        fields.update({k: v for k, v in optional.items() if v is not None})
        if self.variables:
            fields["Variable"] = [f"{k}={v}" for k, v in self.variables.items()]
        return OutboundRequest(action="Originate", action_id=self.action_id, fields=fields)

class CallResultResponse(BaseModel):
    call_id: str
    status: str
    result: CallResult

class CallListResponse(BaseModel):
    total: int
    calls: List[StoredCallResult]
