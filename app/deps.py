"""Shared FastAPI dependencies."""
from fastapi import Depends, Header, HTTPException, Request

from sessions.registry import SessionHandle, SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


async def current_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Identity is established by the surrounding application."""
    return x_user_id


def get_handle(
    event_id: str,
    user_id: str = Depends(current_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionHandle:
    handle = registry.get(user_id, event_id)
    if handle is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return handle
