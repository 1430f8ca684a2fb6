"""FastAPI routes for session state and background location."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from backend.base import BackendError
from checkins.schemas import DeviceFix
from deps import current_user_id, get_handle, get_registry
from security_hmac import hmac_guard
from sessions.registry import SessionHandle, SessionRegistry
from sessions.schemas import SessionState
from swipes.schemas import MatchRecord

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/{event_id}", response_model=SessionState)
async def current_session_state(handle: SessionHandle = Depends(get_handle)):
    """Status, distance and end reason for display."""
    return handle.state()


@router.post("/{event_id}/location", response_model=SessionState)
async def push_location(
    body: DeviceFix,
    handle: SessionHandle = Depends(get_handle),
    _sec: bool = Depends(hmac_guard),
):
    """Buffer a GPS fix; the monitor uses it on its next tick."""
    handle.location.push(body.to_sample())
    return handle.state()


@router.post("/{event_id}/location/denied", response_model=SessionState)
async def location_denied(handle: SessionHandle = Depends(get_handle)):
    """The device refused location access."""
    handle.location.deny()
    return handle.state()


@router.get("/{event_id}/matches", response_model=List[MatchRecord])
async def list_matches(
    event_id: str,
    handle: SessionHandle = Depends(get_handle),
):
    """Matches stay reachable after the session ends."""
    try:
        return await handle.backend.list_matches(handle.user_id, event_id)
    except BackendError as e:
        raise HTTPException(status_code=503, detail=f"Matches unavailable: {e}")


@router.delete("/{event_id}", status_code=204)
async def close_session(
    event_id: str,
    user_id: str = Depends(current_user_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Navigate away: stop monitoring and abandon any in-flight step."""
    if not await registry.close(user_id, event_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)
