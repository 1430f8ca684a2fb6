"""Process-local ownership of check-in sessions, keyed by (user, event)."""
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from backend.base import BackendError, CheckInBackend
from checkins.schemas import CheckInOutcome, TERMINAL_STATUSES
from checkins.service import CheckInService, resolve_scan_target, scan_not_found
from device import DeviceLocation, LocationSample
from schemas import VerificationMethod
from sessions.schemas import SessionState
from sessions.service import SessionMonitor
from settings import Settings, settings as default_settings
from swipes.service import CandidateQueue, Matcher, matcher_from_settings

logger = logging.getLogger(__name__)


class SessionHandle:
    """Everything that lives for one user's visit to one event's screen."""

    def __init__(
        self,
        user_id: str,
        event_id: str,
        backend: CheckInBackend,
        config: Settings,
        matcher: Matcher,
    ):
        self.user_id = user_id
        self.event_id = event_id
        self.backend = backend
        self.config = config
        self.matcher = matcher
        self.location = DeviceLocation(max_age_s=config.location_max_age_s)
        self.checkin = CheckInService(backend, self.location, user_id, config)
        self.queue: Optional[CandidateQueue] = None
        self.monitor: Optional[SessionMonitor] = None

    @property
    def session(self):
        return self.checkin.session

    async def after_step(self, outcome: CheckInOutcome) -> CheckInOutcome:
        """Unlock matching once the flow reaches a terminal public state."""
        if outcome.status in TERMINAL_STATUSES:
            await self.activate()
        return outcome

    async def activate(self) -> bool:
        session = self.session
        if session is None or session.ended or not session.is_public or session.check_in is None:
            return False
        if session.check_in.ended_at is not None:
            # hidden from everyone else, so no swiping either
            return False
        if self.queue is not None and self.queue.session is not session:
            # the flow was restarted; matching follows the new session
            await self._stop_matching()
        if self.queue is None:
            queue = CandidateQueue(session, self.backend, self.matcher, self.config)
            try:
                await queue.load()
            except BackendError as e:
                logger.warning("candidate load failed for %s at %s: %s", self.user_id, self.event_id, e)
            queue.follow()
            self.queue = queue
        if self.monitor is None:
            self.monitor = SessionMonitor(session, self.backend, self.location, self.config)
            self.monitor.start()
        return True

    def state(self) -> SessionState:
        session = self.session
        outcome = self.checkin.last_outcome
        state = SessionState(
            status=self.checkin.status.value,
            event_id=self.event_id,
            monitoring=self.monitor is not None and self.monitor.running,
        )
        if outcome is not None:
            state.distance_m = outcome.distance_m
            state.required_radius_m = outcome.required_radius_m
            state.error = outcome.error
            state.warning = outcome.warning
        if session is not None:
            state.visibility_mode = session.visibility_mode
            state.quota_remaining = session.quota_remaining
            if session.ended:
                state.status = "ended"
                state.ended = True
                state.end_reason = session.end_reason
        return state

    async def close(self) -> None:
        """Tear down without writing anything new."""
        self.checkin.abandon()
        await self._stop_matching()

    async def _stop_matching(self) -> None:
        if self.monitor is not None:
            await self.monitor.stop()
            self.monitor = None
        if self.queue is not None:
            await self.queue.close()
            self.queue = None


class SessionRegistry:
    """Open/close sessions explicitly; nothing outlives `close`."""

    def __init__(
        self,
        backend: CheckInBackend,
        config: Optional[Settings] = None,
        matcher: Optional[Matcher] = None,
    ):
        self.backend = backend
        self.config = config or default_settings
        self.matcher = matcher or matcher_from_settings(self.config)
        self._handles: Dict[Tuple[str, str], SessionHandle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def open(self, user_id: str, event_id: str) -> SessionHandle:
        key = (user_id, event_id)
        handle = self._handles.get(key)
        if handle is None:
            handle = SessionHandle(user_id, event_id, self.backend, self.config, self.matcher)
            self._handles[key] = handle
        return handle

    def get(self, user_id: str, event_id: str) -> Optional[SessionHandle]:
        return self._handles.get((user_id, event_id))

    async def scan(
        self, user_id: str, payload: str, sample: Optional[LocationSample] = None
    ) -> CheckInOutcome:
        """
        Start a check-in from a scanned QR payload or a typed access code.

        A payload that does not resolve to an active event opens no session.
        Raises CheckInStateError when the event's flow is mid-step.
        """
        event_id = await resolve_scan_target(self.backend, payload)
        if event_id is None:
            return scan_not_found()
        handle = self.open(user_id, event_id)
        if sample is not None:
            handle.location.push(sample)
        outcome = await handle.checkin.attempt_check_in(event_id, VerificationMethod.qr_code)
        return await handle.after_step(outcome)

    async def close(self, user_id: str, event_id: str) -> bool:
        handle = self._handles.pop((user_id, event_id), None)
        if handle is None:
            return False
        await handle.close()
        return True

    async def close_all(self) -> None:
        for user_id, event_id in list(self._handles):
            await self.close(user_id, event_id)

    @asynccontextmanager
    async def scope(self, user_id: str, event_id: str):
        """`async with registry.scope(user, event) as handle:` closes on exit."""
        handle = self.open(user_id, event_id)
        try:
            yield handle
        finally:
            await self.close(user_id, event_id)
