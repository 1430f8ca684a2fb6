"""FastAPI routes for the check-in flow."""

from fastapi import APIRouter, Depends, HTTPException

from deps import current_user_id, get_handle, get_registry
from checkins.schemas import (
    CheckInAttemptRequest,
    CheckInOutcome,
    ProfileSubmission,
    ScanRequest,
    VisibilityRequest,
)
from checkins.service import CheckInStateError
from security_hmac import hmac_guard
from sessions.registry import SessionHandle, SessionRegistry

router = APIRouter(prefix="/checkins", tags=["checkins"])


# Put the fixed path BEFORE the parameterized ones to avoid conflicts
@router.post("/scan", response_model=CheckInOutcome)
async def scan_check_in(
    body: ScanRequest,
    user_id: str = Depends(current_user_id),
    registry: SessionRegistry = Depends(get_registry),
    _sec: bool = Depends(hmac_guard),
):
    """Start a check-in from a QR payload or access code."""
    sample = body.location.to_sample() if body.location is not None else None
    try:
        return await registry.scan(user_id, body.code, sample)
    except CheckInStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{event_id}/attempt", response_model=CheckInOutcome)
async def attempt_check_in(
    event_id: str,
    body: CheckInAttemptRequest,
    user_id: str = Depends(current_user_id),
    registry: SessionRegistry = Depends(get_registry),
    _sec: bool = Depends(hmac_guard),
):
    """Verify presence at the venue (or short-circuit if already checked in)."""
    handle = registry.open(user_id, event_id)
    if body.location is not None:
        handle.location.push(body.location.to_sample())
    try:
        outcome = await handle.checkin.attempt_check_in(event_id)
    except CheckInStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return await handle.after_step(outcome)


@router.post("/{event_id}/visibility", response_model=CheckInOutcome)
async def choose_visibility(
    body: VisibilityRequest,
    handle: SessionHandle = Depends(get_handle),
):
    """Pick public (profile next) or private (check in now)."""
    try:
        outcome = await handle.checkin.choose_visibility(body.mode)
    except CheckInStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return await handle.after_step(outcome)


@router.post("/{event_id}/profile", response_model=CheckInOutcome)
async def submit_profile(
    body: ProfileSubmission,
    handle: SessionHandle = Depends(get_handle),
):
    """Submit the connection profile and complete a public check-in."""
    try:
        outcome = await handle.checkin.submit_profile(body)
    except CheckInStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return await handle.after_step(outcome)
