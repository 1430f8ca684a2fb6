from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
import asyncio

from deps import get_handle, get_registry
from sessions.registry import SessionHandle, SessionRegistry

router = APIRouter()


async def _stream(registry: SessionRegistry, handle: SessionHandle, interval_s: float):
    # ends after the session ends or once the handle is closed
    while True:
        state = handle.state()
        yield f"data: {state.model_dump_json()}\n\n"
        if state.ended or registry.get(handle.user_id, handle.event_id) is not handle:
            break
        await asyncio.sleep(interval_s)


@router.get("/stream/sessions/{event_id}")
async def stream_session(
    handle: SessionHandle = Depends(get_handle),
    registry: SessionRegistry = Depends(get_registry),
):
    return StreamingResponse(
        _stream(registry, handle, registry.config.stream_interval_s),
        media_type="text/event-stream",
    )
