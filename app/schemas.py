"""Shared pydantic schemas: coordinates, venues and geofence results."""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict


class VisibilityMode(str, Enum):
    """How a checked-in user appears to others at the event."""
    public = "public"
    private = "private"


class VerificationMethod(str, Enum):
    """How presence was verified."""
    geolocation = "geolocation"
    qr_code = "qr_code"


class SwipeDirection(str, Enum):
    """Swipe decision."""
    left = "left"
    right = "right"


class SubscriptionTier(str, Enum):
    """Membership tier; only the free tier has a like quota."""
    free = "free"
    pro = "pro"
    max = "max"


class Coordinate(BaseModel):
    """A WGS84 point in decimal degrees."""
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")

    model_config = ConfigDict(frozen=True)


class Venue(BaseModel):
    """Geofence of one event."""
    event_id: str
    coordinate: Coordinate
    geofence_radius_m: float = Field(default=50.0, gt=0, description="Radius in meters")

    model_config = ConfigDict(frozen=True)


class GeofenceResult(BaseModel):
    """Outcome of evaluating one location sample against a venue."""
    within_radius: bool
    distance_m: float
    sampled_at: datetime
    coordinate: Coordinate

    model_config = ConfigDict(frozen=True)
