"""FastAPI application with check-in, session and matching endpoints."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

# local modules (same folder as main.py inside the container)
from metrics import router as metrics_router
from live import router as live_router
from settings import Settings, settings as default_settings

from backend.base import CheckInBackend
from backend.memory import InMemoryBackend
from checkins.routes import router as checkins_router
from sessions.registry import SessionRegistry
from sessions.routes import router as sessions_router
from swipes.routes import router as swipes_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_backend(config: Settings) -> CheckInBackend:
    """Storage collaborator selected by `storage_backend`."""
    if config.storage_backend == "memory":
        return InMemoryBackend()
    if config.storage_backend != "sql":
        raise ValueError(f"unknown storage_backend {config.storage_backend!r}")

    # the engine is only created when SQL storage is selected
    from db import SessionLocal, init_db
    from backend.sql import SqlBackend

    init_db()
    return SqlBackend(SessionLocal, poll_interval_s=config.realtime_poll_interval_s)


def create_app(backend: Optional[CheckInBackend] = None, config: Optional[Settings] = None) -> FastAPI:
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.log_level)
        if backend is None:
            app.state.backend = build_backend(config)
        app.state.registry = SessionRegistry(app.state.backend, config)
        logger.info("check-in service started (%s storage)", config.storage_backend if backend is None else "injected")
        try:
            yield
        finally:
            await app.state.registry.close_all()
            logger.info("check-in service stopped")

    app = FastAPI(
        title="Event Check-In Backend",
        description="Proximity-gated event check-in with in-venue matching",
        version="1.0.0",
        lifespan=lifespan,
    )
    if backend is not None:
        app.state.backend = backend

    # Observability & live stream
    app.include_router(metrics_router)  # exposes GET /metrics
    app.include_router(live_router)  # exposes GET /stream/sessions/{event_id}

    # Functional routers
    app.include_router(checkins_router)
    app.include_router(sessions_router)
    app.include_router(swipes_router)

    @app.get("/")
    async def root():
        return {"message": "Event check-in API", "version": "1.0.0"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
