"""Pydantic schemas for check-ins and connection profiles."""
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict, field_validator

from device import CapturedPhoto, LocationSample
from schemas import Coordinate, VerificationMethod, VisibilityMode


class CheckInStatus(str, Enum):
    """States of the check-in flow."""
    idle = "idle"
    checking_location = "checking_location"
    choose_visibility = "choose_visibility"
    create_profile = "create_profile"
    checking_in = "checking_in"
    success = "success"
    already_checked_in = "already_checked_in"


TERMINAL_STATUSES = frozenset({CheckInStatus.success, CheckInStatus.already_checked_in})


class CheckInErrorKind(str, Enum):
    """Reasons a step sent the flow back to idle (or kept it in place)."""
    event_not_found = "event_not_found"
    location_unavailable = "location_unavailable"
    outside_geofence = "outside_geofence"
    check_in_failed = "check_in_failed"
    invalid_profile = "invalid_profile"


# --------------------
# Storage DTOs
# --------------------
class CheckInCreate(BaseModel):
    """Row to insert; idempotent on (user_id, event_id)."""
    event_id: str
    user_id: str
    coordinate: Coordinate
    distance_m: float = Field(..., ge=0)
    within_geofence: bool
    visibility_mode: VisibilityMode
    verification_method: VerificationMethod = VerificationMethod.geolocation


class CheckInRecord(CheckInCreate):
    """Stored check-in."""
    id: str
    created_at: datetime
    ended_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "ended_at")
    @classmethod
    def assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ProfileCreate(BaseModel):
    """Connection profile row; one per (user_id, event_id)."""
    user_id: str
    event_id: str
    check_in_id: Optional[str] = None
    display_name: str = Field(..., min_length=1, max_length=100)
    age: int = Field(..., ge=0)
    bio: str
    interests: List[str] = Field(default_factory=list)
    photo_url: str
    is_public: bool = True
    is_active: bool = True


class ProfileRecord(ProfileCreate):
    """A match candidate as seen by other attendees."""
    id: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --------------------
# Flow inputs / outputs
# --------------------
class ProfileSubmission(BaseModel):
    """Fields collected on the profile step of a public check-in."""
    display_name: str = Field("", max_length=100)
    age: Optional[int] = None
    bio: str = ""
    interests: List[str] = Field(default_factory=list)
    photo: Optional[CapturedPhoto] = None


class CheckInOutcome(BaseModel):
    """Result of one user-driven step of the check-in flow."""
    status: CheckInStatus
    event_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[CheckInErrorKind] = None
    distance_m: Optional[float] = None
    required_radius_m: Optional[float] = None
    field_errors: List[str] = Field(default_factory=list)
    warning: Optional[str] = None
    check_in: Optional[CheckInRecord] = None
    visibility_mode: Optional[VisibilityMode] = None

    @property
    def succeeded(self) -> bool:
        return self.status in TERMINAL_STATUSES


# --------------------
# HTTP request bodies
# --------------------
class DeviceFix(BaseModel):
    """GPS fix attached to a request by the mobile client."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")
    accuracy: Optional[float] = Field(None, ge=0, description="Accuracy in meters")
    sampled_at: Optional[datetime] = None

    def to_sample(self) -> LocationSample:
        fields = {"coordinate": Coordinate(lat=self.lat, lng=self.lng), "accuracy_m": self.accuracy}
        if self.sampled_at is not None:
            fields["sampled_at"] = self.sampled_at
        return LocationSample(**fields)


class CheckInAttemptRequest(BaseModel):
    """Start a check-in; the fix is optional and may be pushed separately."""
    location: Optional[DeviceFix] = None


class ScanRequest(BaseModel):
    """Start a check-in from a scanned QR payload or typed access code."""
    code: str = Field(..., min_length=1)
    location: Optional[DeviceFix] = None


class VisibilityRequest(BaseModel):
    mode: VisibilityMode
