"""In-process implementation of the collaborator contract."""
import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional, Tuple

from backend.base import (
    DuplicateCheckInError,
    DuplicateProfileError,
    DuplicateSwipeError,
    ordered_pair,
)
from checkins import qr
from checkins.schemas import CheckInCreate, CheckInRecord, ProfileCreate, ProfileRecord
from events.schemas import EventRecord
from swipes.schemas import MatchRecord, MemberRecord, SwipeCreate, SwipeRecord

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _ProfileFeed:
    """Queue of inserted profiles, registered from construction until `aclose`."""

    def __init__(self, subscribers: List[asyncio.Queue]):
        self._subscribers = subscribers
        self._queue: asyncio.Queue = asyncio.Queue()
        subscribers.append(self._queue)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProfileRecord:
        if self._queue not in self._subscribers:
            raise StopAsyncIteration
        return await self._queue.get()

    async def aclose(self) -> None:
        if self._queue in self._subscribers:
            self._subscribers.remove(self._queue)


class InMemoryBackend:
    """Dictionary-backed store with the same uniqueness rules as the SQL schema."""

    def __init__(self):
        self.events: Dict[str, EventRecord] = {}
        self.check_ins: Dict[Tuple[str, str], CheckInRecord] = {}
        self.profiles: Dict[Tuple[str, str], ProfileRecord] = {}
        self.swipes: Dict[Tuple[str, str, str], SwipeRecord] = {}
        self.matches: Dict[Tuple[str, str, str], MatchRecord] = {}
        self.members: Dict[str, MemberRecord] = {}
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    # ---------- seeding ----------

    def add_event(self, event: EventRecord) -> EventRecord:
        self.events[event.id] = event
        return event

    def add_member(self, member: MemberRecord) -> MemberRecord:
        self.members[member.user_id] = member
        return member

    # ---------- events ----------

    async def get_event(self, event_id: str) -> Optional[EventRecord]:
        return self.events.get(event_id)

    async def resolve_access_code(self, code: str) -> Optional[str]:
        code = code.upper()
        for event in self.events.values():
            if event.is_active and event.access_code and event.access_code.upper() == code:
                return event.id
        return None

    async def validate_event_token(self, event_id: str, token: str) -> bool:
        return qr.validate_event_token(token, event_id)

    async def increment_attendees(self, event_id: str) -> None:
        event = self.events.get(event_id)
        if event is not None:
            self.events[event_id] = event.model_copy(
                update={"attendees_count": event.attendees_count + 1}
            )

    # ---------- check-ins ----------

    async def get_check_in(self, user_id: str, event_id: str) -> Optional[CheckInRecord]:
        return self.check_ins.get((user_id, event_id))

    async def insert_check_in(self, data: CheckInCreate) -> CheckInRecord:
        key = (data.user_id, data.event_id)
        if key in self.check_ins:
            raise DuplicateCheckInError(f"user {data.user_id} already checked in to {data.event_id}")
        record = CheckInRecord(id=str(uuid.uuid4()), created_at=_now(), **data.model_dump())
        self.check_ins[key] = record
        return record

    async def mark_check_in_ended(self, check_in_id: str, ended_at: datetime) -> None:
        for key, record in self.check_ins.items():
            if record.id == check_in_id and record.ended_at is None:
                self.check_ins[key] = record.model_copy(update={"ended_at": ended_at})
                return

    # ---------- profiles ----------

    async def insert_profile(self, data: ProfileCreate) -> ProfileRecord:
        key = (data.user_id, data.event_id)
        if key in self.profiles:
            raise DuplicateProfileError(f"profile exists for {data.user_id} at {data.event_id}")
        record = ProfileRecord(id=str(uuid.uuid4()), created_at=_now(), **data.model_dump())
        self.profiles[key] = record
        for queue in list(self._subscribers.get(data.event_id, [])):
            queue.put_nowait(record)
        return record

    def _visible(self, profile: ProfileRecord) -> bool:
        if not (profile.is_public and profile.is_active):
            return False
        check_in = self.check_ins.get((profile.user_id, profile.event_id))
        return check_in is None or check_in.ended_at is None

    async def list_candidates(self, event_id: str, exclude_user_id: str) -> List[ProfileRecord]:
        found = [
            p
            for p in self.profiles.values()
            if p.event_id == event_id and p.user_id != exclude_user_id and self._visible(p)
        ]
        return sorted(found, key=lambda p: p.created_at)

    def subscribe_profiles(self, event_id: str) -> AsyncIterator[ProfileRecord]:
        return _ProfileFeed(self._subscribers[event_id])

    # ---------- swipes / matches ----------

    async def insert_swipe(self, data: SwipeCreate) -> SwipeRecord:
        key = (data.swiper_id, data.swiped_id, data.event_id)
        if key in self.swipes:
            raise DuplicateSwipeError(f"{data.swiper_id} already swiped {data.swiped_id}")
        record = SwipeRecord(id=str(uuid.uuid4()), swiped_at=_now(), **data.model_dump())
        self.swipes[key] = record
        return record

    async def get_swipe(self, swiper_id: str, swiped_id: str, event_id: str) -> Optional[SwipeRecord]:
        return self.swipes.get((swiper_id, swiped_id, event_id))

    async def list_swipes(self, swiper_id: str, event_id: str) -> List[SwipeRecord]:
        return [s for s in self.swipes.values() if s.swiper_id == swiper_id and s.event_id == event_id]

    async def insert_match(self, user_a_id: str, user_b_id: str, event_id: str) -> MatchRecord:
        a, b = ordered_pair(user_a_id, user_b_id)
        key = (a, b, event_id)
        if key not in self.matches:
            self.matches[key] = MatchRecord(
                id=str(uuid.uuid4()), user_a_id=a, user_b_id=b, event_id=event_id, created_at=_now()
            )
        return self.matches[key]

    async def list_matches(self, user_id: str, event_id: str) -> List[MatchRecord]:
        return [m for m in self.matches.values() if m.event_id == event_id and m.involves(user_id)]

    # ---------- members ----------

    async def get_member(self, user_id: str) -> Optional[MemberRecord]:
        return self.members.get(user_id)

    async def set_likes_remaining(self, user_id: str, likes_remaining: int) -> None:
        member = self.members.get(user_id) or MemberRecord(user_id=user_id)
        self.members[user_id] = member.model_copy(update={"likes_remaining": likes_remaining})
