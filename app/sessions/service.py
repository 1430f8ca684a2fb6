"""Background re-validation of an active check-in session."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

import geo
from backend.base import BackendError, CheckInBackend
from device import LocationProvider, request_silent_location
from metrics import SESSIONS_ENDED
from sessions.schemas import CheckInSession, END_REASON_EVENT_ENDED, END_REASON_LEFT_AREA
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class SessionMonitor:
    """
    Periodically checks that a public session is still valid.

    Each tick re-reads the event lifecycle, then evaluates a silently
    obtained location sample against the venue with the loose monitor
    tolerance. A missing sample or a failed read never ends the session.
    Ending only flips the session flag and stamps the check-in's ended
    marker; swipes and matches are untouched.
    """

    def __init__(
        self,
        session: CheckInSession,
        backend: CheckInBackend,
        location: LocationProvider,
        config: Optional[Settings] = None,
        interval_s: Optional[float] = None,
    ):
        self.session = session
        self.backend = backend
        self.location = location
        self.config = config or default_settings
        self.interval_s = interval_s if interval_s is not None else self.config.monitor_interval_s
        self.tolerance = self.config.monitor_tolerance
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[CheckInSession], None]] = []

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_end(self, callback: Callable[[CheckInSession], None]) -> None:
        self._listeners.append(callback)

    def start(self) -> bool:
        """Begin ticking (first tick immediately). Only public, active check-ins are monitored."""
        session = self.session
        if session.ended or not session.is_public or session.check_in is None:
            return False
        if not self.running:
            self._task = asyncio.create_task(self._run())
            self._task.add_done_callback(self._log_crash)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _run(self) -> None:
        while not self.session.ended:
            await self.tick()
            if self.session.ended:
                break
            await asyncio.sleep(self.interval_s)

    def _log_crash(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "session monitor for %s at %s crashed",
                self.session.user_id, self.session.event_id, exc_info=task.exception(),
            )

    async def tick(self) -> Optional[str]:
        """Run one check; returns the end reason if the session is (now) ended."""
        session = self.session
        if session.ended:
            return session.end_reason

        venue = session.venue
        try:
            event = await self.backend.get_event(session.event_id)
        except BackendError as e:
            logger.warning("lifecycle check skipped for %s: %s", session.event_id, e)
        else:
            if event is None or event.has_ended():
                return await self._end(END_REASON_EVENT_ENDED)
            if venue is None:
                venue = event.venue(self.config.default_geofence_radius_m)

        try:
            sample = await request_silent_location(self.location)
        except Exception:
            # a broken provider counts as no sample; the next tick asks again
            logger.exception("silent location failed for %s at %s", session.user_id, session.event_id)
            sample = None
        if sample is None or venue is None:
            return None

        result = geo.evaluate(venue, sample.coordinate, self.tolerance, sample.sampled_at)
        if not result.within_radius:
            logger.info(
                "%s is %.0fm from %s (limit %.0fm)",
                session.user_id, result.distance_m, session.event_id,
                venue.geofence_radius_m * self.tolerance,
            )
            return await self._end(END_REASON_LEFT_AREA)
        return None

    async def _end(self, reason: str) -> str:
        session = self.session
        if session.end(reason):
            logger.info("session of %s at %s ended: %s", session.user_id, session.event_id, reason)
            SESSIONS_ENDED.labels(reason).inc()
            if session.check_in is not None:
                try:
                    await self.backend.mark_check_in_ended(
                        session.check_in.id, session.ended_at or datetime.now(timezone.utc)
                    )
                except BackendError as e:
                    logger.warning("ended marker not saved for check-in %s: %s", session.check_in.id, e)
            for callback in self._listeners:
                callback(session)
        return session.end_reason
