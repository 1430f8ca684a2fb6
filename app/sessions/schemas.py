"""Client-local session bundle and its display snapshot."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from checkins.schemas import CheckInRecord
from schemas import GeofenceResult, SubscriptionTier, VerificationMethod, Venue, VisibilityMode

END_REASON_EVENT_ENDED = "event ended"
END_REASON_LEFT_AREA = "left event area"


@dataclass
class CheckInSession:
    """
    Mutable, process-local state of one user's check-in at one event.

    Each collaborator writes only its own fields: the state machine owns the
    check-in fields, the candidate queue owns cursor/history/quota, and the
    monitor only ever calls `end()`.
    """

    user_id: str
    event_id: str
    venue: Optional[Venue] = None
    verification_method: VerificationMethod = VerificationMethod.geolocation
    cached_geofence: Optional[GeofenceResult] = None
    visibility_mode: Optional[VisibilityMode] = None
    check_in: Optional[CheckInRecord] = None
    tier: SubscriptionTier = SubscriptionTier.free
    quota_remaining: Optional[int] = None  # None = unlimited
    candidate_cursor: int = 0
    undo_history: List[int] = field(default_factory=list)
    ended: bool = False
    end_reason: Optional[str] = None
    ended_at: Optional[datetime] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def end(self, reason: str) -> bool:
        """Flip the one-way ended flag. Returns False if it was already set."""
        if self.ended:
            return False
        self.ended = True
        self.end_reason = reason
        self.ended_at = datetime.now(timezone.utc)
        return True

    def discard_sample(self) -> None:
        self.cached_geofence = None

    @property
    def is_public(self) -> bool:
        return self.visibility_mode == VisibilityMode.public

    @property
    def unlimited(self) -> bool:
        return self.quota_remaining is None


class SessionState(BaseModel):
    """What the UI needs to render the check-in / matching screen."""
    status: str
    event_id: str
    ended: bool = False
    end_reason: Optional[str] = None
    distance_m: Optional[float] = None
    required_radius_m: Optional[float] = None
    error: Optional[str] = None
    warning: Optional[str] = None
    visibility_mode: Optional[VisibilityMode] = None
    quota_remaining: Optional[int] = None
    monitoring: bool = False
