"""Contract consumed from the persistence / realtime collaborator.

Rows cross this boundary as validated pydantic DTOs; nothing above it sees
raw mappings.
"""
from datetime import datetime
from typing import AsyncIterator, List, Optional, Protocol

from checkins.schemas import CheckInCreate, CheckInRecord, ProfileCreate, ProfileRecord
from events.schemas import EventRecord
from swipes.schemas import MatchRecord, MemberRecord, SwipeCreate, SwipeRecord


class BackendError(Exception):
    """A read or write against the collaborator failed."""


class DuplicateCheckInError(BackendError):
    """A check-in already exists for this (user, event)."""


class DuplicateSwipeError(BackendError):
    """This swiper already decided on this candidate for this event."""


class DuplicateProfileError(BackendError):
    """A connection profile already exists for this (user, event)."""


class CheckInBackend(Protocol):
    # --- events ---
    async def get_event(self, event_id: str) -> Optional[EventRecord]:
        ...

    async def resolve_access_code(self, code: str) -> Optional[str]:
        """Id of the active event carrying this access code."""
        ...

    async def validate_event_token(self, event_id: str, token: str) -> bool:
        ...

    async def increment_attendees(self, event_id: str) -> None:
        ...

    # --- check-ins ---
    async def get_check_in(self, user_id: str, event_id: str) -> Optional[CheckInRecord]:
        ...

    async def insert_check_in(self, data: CheckInCreate) -> CheckInRecord:
        """Raises DuplicateCheckInError when (user, event) already exists."""
        ...

    async def mark_check_in_ended(self, check_in_id: str, ended_at: datetime) -> None:
        ...

    # --- profiles ---
    async def insert_profile(self, data: ProfileCreate) -> ProfileRecord:
        ...

    async def list_candidates(self, event_id: str, exclude_user_id: str) -> List[ProfileRecord]:
        """Active, public profiles of non-ended check-ins, oldest first."""
        ...

    def subscribe_profiles(self, event_id: str) -> AsyncIterator[ProfileRecord]:
        """
        Realtime feed of profiles inserted for the event from this call on.

        Subscription happens at call time, not on first iteration. The feed
        may repeat profiles that were already visible; release it with
        `aclose()`.
        """
        ...

    # --- swipes / matches ---
    async def insert_swipe(self, data: SwipeCreate) -> SwipeRecord:
        """Raises DuplicateSwipeError on a repeated (swiper, swiped, event)."""
        ...

    async def get_swipe(self, swiper_id: str, swiped_id: str, event_id: str) -> Optional[SwipeRecord]:
        ...

    async def list_swipes(self, swiper_id: str, event_id: str) -> List[SwipeRecord]:
        ...

    async def insert_match(self, user_a_id: str, user_b_id: str, event_id: str) -> MatchRecord:
        """Idempotent on the unordered pair and event."""
        ...

    async def list_matches(self, user_id: str, event_id: str) -> List[MatchRecord]:
        ...

    # --- members ---
    async def get_member(self, user_id: str) -> Optional[MemberRecord]:
        ...

    async def set_likes_remaining(self, user_id: str, likes_remaining: int) -> None:
        ...


def ordered_pair(a: str, b: str):
    """Canonical (low, high) ordering used to key matches."""
    return (a, b) if a <= b else (b, a)
