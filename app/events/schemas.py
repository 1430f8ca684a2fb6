"""Pydantic schemas for events."""
from typing import Optional
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ConfigDict, field_validator  # v2

from schemas import Coordinate, Venue


class EventRecord(BaseModel):
    """Lifecycle and geofence fields of an event, as read from storage."""
    id: str
    name: str = ""
    latitude: float = Field(..., ge=-90, le=90, description="Latitude")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude")
    geofence_radius_m: Optional[float] = Field(None, description="Geofence radius; None means the configured default")
    is_active: bool = True
    ended_at: Optional[datetime] = None
    access_code: Optional[str] = None
    attendees_count: int = 0

    model_config = ConfigDict(from_attributes=True)

    @field_validator("geofence_radius_m")
    @classmethod
    def positive_radius(cls, v):
        """Radius must be strictly positive when set."""
        if v is not None and v <= 0:
            raise ValueError("geofence radius must be > 0")
        return v

    @field_validator("ended_at")
    @classmethod
    def assume_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def venue(self, default_radius_m: float = 50.0) -> Venue:
        return Venue(
            event_id=self.id,
            coordinate=Coordinate(lat=self.latitude, lng=self.longitude),
            geofence_radius_m=self.geofence_radius_m or default_radius_m,
        )

    def has_ended(self, now: Optional[datetime] = None) -> bool:
        """An event is over once deactivated or once its end time has passed."""
        if not self.is_active:
            return True
        if self.ended_at is None:
            return False
        return self.ended_at <= (now or datetime.now(timezone.utc))
