from fastapi import APIRouter, Depends, Query, Request
from .schemas import OriginateCallRequest, CallResultResponse, CallListResponse
from ..auth.api_key import verify_api_key
from ..services.call_correlator import CallCorrelator

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


def get_correlator(request: Request) -> CallCorrelator:
    return request.app.state.correlator


@router.post("/calls", response_model=CallResultResponse)
async def originate_call(req: OriginateCallRequest, correlator: CallCorrelator = Depends(get_correlator)):
    """Place a call and return once it has hung up."""
    result = await correlator.originate(req.to_outbound())
    return CallResultResponse(
        call_id=result.call_id,
        status="answered" if result.answered else "unanswered",
        result=result,
    )


@router.get("/calls", response_model=CallListResponse)
async def list_calls(limit: int = Query(25, ge=1, le=1000), correlator: CallCorrelator = Depends(get_correlator)):
    if correlator.store is None:
        return CallListResponse(total=0, calls=[])
    calls = list(await correlator.store.list_recent(limit=limit))
    return CallListResponse(total=len(calls), calls=calls)
