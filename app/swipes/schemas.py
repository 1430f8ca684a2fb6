"""Pydantic schemas for swipes, matches and member quotas."""
from typing import Optional
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict

from checkins.schemas import ProfileRecord
from schemas import SubscriptionTier, SwipeDirection


class SwipeCreate(BaseModel):
    """Append-only swipe decision; unique on (swiper, swiped, event)."""
    swiper_id: str
    swiped_id: str
    event_id: str
    direction: SwipeDirection


class SwipeRecord(SwipeCreate):
    id: str
    swiped_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MatchRecord(BaseModel):
    """Mutual interest between two attendees of one event."""
    id: str
    user_a_id: str
    user_b_id: str
    event_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)


class MemberRecord(BaseModel):
    """Subscription tier and remaining daily likes of a user."""
    user_id: str
    tier: SubscriptionTier = SubscriptionTier.free
    likes_remaining: int = Field(10, ge=0)

    model_config = ConfigDict(from_attributes=True)


class SwipeStatus(str, Enum):
    """What happened to a swipe request."""
    swiped = "swiped"
    quota_exhausted = "quota_exhausted"
    queue_exhausted = "queue_exhausted"
    session_ended = "session_ended"


class SwipeResult(BaseModel):
    """Response to one swipe."""
    status: SwipeStatus
    matched: bool = False
    match: Optional[MatchRecord] = None
    candidate: Optional[ProfileRecord] = None
    repeat: bool = False
    quota_remaining: Optional[int] = None
    cursor: int = 0


# --------------------
# HTTP bodies
# --------------------
class SwipeRequest(BaseModel):
    direction: SwipeDirection


class QueueView(BaseModel):
    """Card currently on top of the stack."""
    candidate: Optional[ProfileRecord] = None
    cursor: int
    total: int
    exhausted: bool
    can_undo: bool
    quota_remaining: Optional[int] = None
    session_ended: bool = False


class QuotaResponse(BaseModel):
    tier: SubscriptionTier
    quota_remaining: Optional[int] = Field(None, description="None means unlimited")
