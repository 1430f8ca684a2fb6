"""Candidate queue, swipe recording and match resolution."""
import asyncio
import logging
import random
from typing import AsyncIterator, Dict, List, Optional, Protocol, Set

from backend.base import BackendError, CheckInBackend, DuplicateSwipeError
from checkins.schemas import ProfileRecord
from metrics import MATCHES, SWIPES, SWIPE_RECORD_FAILURES
from schemas import SubscriptionTier, SwipeDirection
from sessions.schemas import CheckInSession
from settings import Settings, settings as default_settings
from swipes.schemas import MatchRecord, SwipeCreate, SwipeResult, SwipeStatus

logger = logging.getLogger(__name__)


class Matcher(Protocol):
    async def resolve(
        self, backend: CheckInBackend, swiper_id: str, candidate: ProfileRecord
    ) -> Optional[MatchRecord]:
        ...


class ReciprocalMatcher:
    """Match only when the candidate already liked the swiper at this event."""

    async def resolve(self, backend, swiper_id, candidate):
        reverse = await backend.get_swipe(candidate.user_id, swiper_id, candidate.event_id)
        if reverse is None or reverse.direction != SwipeDirection.right:
            return None
        return await backend.insert_match(swiper_id, candidate.user_id, candidate.event_id)


class DemoMatcher:
    """Declares a match with a fixed probability, ignoring the other side."""

    def __init__(self, probability: float = 0.3, rng: Optional[random.Random] = None):
        self.probability = probability
        self.rng = rng or random.Random()

    async def resolve(self, backend, swiper_id, candidate):
        if self.rng.random() >= self.probability:
            return None
        return await backend.insert_match(swiper_id, candidate.user_id, candidate.event_id)


def matcher_from_settings(config: Settings) -> Matcher:
    if config.demo_match_mode:
        return DemoMatcher(config.demo_match_probability)
    return ReciprocalMatcher()


class CandidateQueue:
    """
    Ordered candidates for the session's event with a cursor, an undo stack
    and the free-tier like quota.

    Passes are written in the background and likes are written before the
    match lookup. A failed write is logged and counted but never blocks
    the queue. `undo` only moves the cursor; recorded swipes are
    append-only.
    """

    def __init__(
        self,
        session: CheckInSession,
        backend: CheckInBackend,
        matcher: Optional[Matcher] = None,
        config: Optional[Settings] = None,
    ):
        self.session = session
        self.backend = backend
        self.config = config or default_settings
        self.matcher = matcher or matcher_from_settings(self.config)
        self.candidates: List[ProfileRecord] = []
        self._candidate_ids: Set[str] = set()
        self._decided: Dict[str, SwipeDirection] = {}
        self._pending: Set[asyncio.Task] = set()
        self._feed: Optional[AsyncIterator[ProfileRecord]] = None
        self._feed_task: Optional[asyncio.Task] = None

    # ---------- loading ----------

    async def load(self) -> int:
        """Read the quota and the current candidates; returns the queue length."""
        session = self.session
        # subscribe before the snapshot so nothing published meanwhile is lost
        self._subscribe()
        try:
            member = await self.backend.get_member(session.user_id)
        except BackendError as e:
            logger.warning("member lookup failed for %s: %s", session.user_id, e)
            member = None
        if member is None:
            session.tier = SubscriptionTier.free
            session.quota_remaining = self.config.free_daily_likes
        else:
            session.tier = member.tier
            session.quota_remaining = (
                member.likes_remaining if member.tier == SubscriptionTier.free else None
            )

        for swipe in await self.backend.list_swipes(session.user_id, session.event_id):
            self._decided[swipe.swiped_id] = swipe.direction
        for profile in await self.backend.list_candidates(session.event_id, session.user_id):
            self.add_candidate(profile)
        return len(self.candidates)

    def add_candidate(self, profile: ProfileRecord) -> bool:
        """Append a candidate past the cursor; duplicates, decided and ineligible profiles are ignored."""
        if (
            profile.event_id != self.session.event_id
            or profile.user_id == self.session.user_id
            or not (profile.is_public and profile.is_active)
            or profile.id in self._candidate_ids
            or profile.user_id in self._decided
        ):
            return False
        self._candidate_ids.add(profile.id)
        self.candidates.append(profile)
        return True

    def follow(self) -> None:
        """Start appending candidates from the realtime feed."""
        self._subscribe()
        if self._feed_task is None or self._feed_task.done():
            self._feed_task = asyncio.create_task(self._consume_feed())

    def _subscribe(self) -> None:
        if self._feed is None:
            self._feed = self.backend.subscribe_profiles(self.session.event_id)

    async def _consume_feed(self) -> None:
        async for profile in self._feed:
            if self.session.ended:
                break
            if self.add_candidate(profile):
                logger.debug("new candidate %s at %s", profile.user_id, profile.event_id)

    # ---------- queue state ----------

    @property
    def cursor(self) -> int:
        return self.session.candidate_cursor

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.candidates)

    @property
    def can_undo(self) -> bool:
        return bool(self.session.undo_history) and not self.session.ended

    def current(self) -> Optional[ProfileRecord]:
        return None if self.exhausted else self.candidates[self.cursor]

    def remaining_quota(self) -> Optional[int]:
        """Likes left today; None for unlimited tiers."""
        return self.session.quota_remaining

    # ---------- actions ----------

    async def swipe(self, direction: SwipeDirection) -> SwipeResult:
        session = self.session
        if session.ended:
            return self._result(SwipeStatus.session_ended)
        candidate = self.current()
        if candidate is None:
            return self._result(SwipeStatus.queue_exhausted)
        if (
            direction == SwipeDirection.right
            and not session.unlimited
            and session.quota_remaining <= 0
        ):
            return self._result(SwipeStatus.quota_exhausted, candidate=candidate)

        repeat = candidate.user_id in self._decided
        like = direction == SwipeDirection.right and not repeat
        write = None
        if repeat:
            logger.info(
                "repeat swipe by %s on %s at %s ignored; %s stands",
                session.user_id, candidate.user_id, session.event_id,
                self._decided[candidate.user_id].value,
            )
        else:
            self._decided[candidate.user_id] = direction
            SWIPES.labels(direction.value).inc()
            write = self._write_swipe(SwipeCreate(
                swiper_id=session.user_id,
                swiped_id=candidate.user_id,
                event_id=session.event_id,
                direction=direction,
            ))
            if like and not session.unlimited:
                session.quota_remaining -= 1
                self._spawn(self._write_quota(session.quota_remaining))

        session.undo_history.append(session.candidate_cursor)
        session.candidate_cursor += 1
        quota_remaining, cursor = session.quota_remaining, session.candidate_cursor

        match = None
        if like:
            # a like is stored before the reverse lookup, or two simultaneous
            # likes each miss the other and never match
            await write
            match = await self._resolve_match(candidate)
        elif write is not None:
            self._spawn(write)
        return self._result(
            SwipeStatus.swiped, candidate=candidate, match=match, repeat=repeat,
            quota_remaining=quota_remaining, cursor=cursor,
        )


    def undo(self) -> bool:
        """Step back to the previous card. The recorded swipe is kept."""
        if not self.can_undo:
            return False
        self.session.candidate_cursor = self.session.undo_history.pop()
        return True

    async def drain(self) -> None:
        """Wait for background writes started so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.drain()
        if self._feed_task is not None:
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
            self._feed_task = None
        if self._feed is not None:
            await self._feed.aclose()
            self._feed = None

    # ---------- helpers ----------

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_swipe(self, data: SwipeCreate) -> None:
        try:
            await self.backend.insert_swipe(data)
        except DuplicateSwipeError:
            logger.info("swipe %s -> %s at %s already recorded", data.swiper_id, data.swiped_id, data.event_id)
        except BackendError as e:
            SWIPE_RECORD_FAILURES.inc()
            logger.warning(
                "swipe not recorded (reconciliation gap) swiper=%s swiped=%s event=%s direction=%s: %s",
                data.swiper_id, data.swiped_id, data.event_id, data.direction.value, e,
            )

    async def _write_quota(self, likes_remaining: int) -> None:
        try:
            await self.backend.set_likes_remaining(self.session.user_id, likes_remaining)
        except BackendError as e:
            logger.warning("likes_remaining not saved for %s: %s", self.session.user_id, e)

    async def _resolve_match(self, candidate: ProfileRecord) -> Optional[MatchRecord]:
        try:
            match = await self.matcher.resolve(self.backend, self.session.user_id, candidate)
        except BackendError as e:
            logger.warning("match resolution failed for %s -> %s: %s", self.session.user_id, candidate.user_id, e)
            return None
        if match is not None:
            MATCHES.inc()
            logger.info("match %s between %s and %s at %s", match.id, match.user_a_id, match.user_b_id, match.event_id)
        return match

    def _result(self, status: SwipeStatus, **extra) -> SwipeResult:
        match = extra.pop("match", None)
        extra.setdefault("quota_remaining", self.session.quota_remaining)
        extra.setdefault("cursor", self.session.candidate_cursor)
        return SwipeResult(status=status, matched=match is not None, match=match, **extra)
