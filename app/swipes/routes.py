"""FastAPI routes for the candidate queue."""

from fastapi import APIRouter, Depends, HTTPException

from deps import get_handle
from sessions.registry import SessionHandle
from swipes.schemas import QueueView, QuotaResponse, SwipeRequest, SwipeResult
from swipes.service import CandidateQueue

router = APIRouter(prefix="/swipes", tags=["swipes"])


def _queue(handle: SessionHandle) -> CandidateQueue:
    if handle.queue is None:
        raise HTTPException(status_code=409, detail="Matching is not available for this check-in")
    return handle.queue


def _view(queue: CandidateQueue) -> QueueView:
    return QueueView(
        candidate=queue.current(),
        cursor=queue.cursor,
        total=len(queue.candidates),
        exhausted=queue.exhausted,
        can_undo=queue.can_undo,
        quota_remaining=queue.remaining_quota(),
        session_ended=queue.session.ended,
    )


@router.get("/{event_id}", response_model=QueueView)
async def current_candidate(handle: SessionHandle = Depends(get_handle)):
    """Card on top of the stack."""
    return _view(_queue(handle))


@router.post("/{event_id}", response_model=SwipeResult)
async def swipe(body: SwipeRequest, handle: SessionHandle = Depends(get_handle)):
    return await _queue(handle).swipe(body.direction)


@router.post("/{event_id}/undo", response_model=QueueView)
async def undo(handle: SessionHandle = Depends(get_handle)):
    """Go back one card; the earlier decision stays recorded."""
    queue = _queue(handle)
    queue.undo()
    return _view(queue)


@router.get("/{event_id}/quota", response_model=QuotaResponse)
async def remaining_quota(handle: SessionHandle = Depends(get_handle)):
    queue = _queue(handle)
    return QuotaResponse(tier=queue.session.tier, quota_remaining=queue.remaining_quota())
