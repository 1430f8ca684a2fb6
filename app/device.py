"""Platform location and camera abstractions.

The core only ever talks to `LocationProvider` / `CameraProvider`. The HTTP
service backs them with `DeviceLocation`, a per-session buffer that the
mobile client feeds with its own GPS fixes.
"""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, Field, ConfigDict, field_validator

from schemas import Coordinate

logger = logging.getLogger(__name__)


class LocationErrorReason(str, Enum):
    """Why a location request failed."""
    permission_denied = "permission_denied"
    timeout = "timeout"
    unavailable = "unavailable"
    unsupported = "unsupported"


LOCATION_ERROR_MESSAGES = {
    LocationErrorReason.permission_denied: "Location permission denied. Please enable location access to check in.",
    LocationErrorReason.timeout: "Location request timed out.",
    LocationErrorReason.unavailable: "Location information is unavailable.",
    LocationErrorReason.unsupported: "Geolocation is not supported on this device.",
}


class LocationError(Exception):
    """Raised when a location sample cannot be obtained."""

    def __init__(self, reason: LocationErrorReason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or LOCATION_ERROR_MESSAGES[reason])


class LocationSample(BaseModel):
    """One GPS fix reported by the device."""
    coordinate: Coordinate
    accuracy_m: Optional[float] = Field(None, ge=0, description="Accuracy in meters")
    sampled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @field_validator("sampled_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class PhotoSource(str, Enum):
    """Where a profile photo came from."""
    camera = "camera"
    library = "library"
    stored = "stored"


class CapturedPhoto(BaseModel):
    """A still image for a connection profile."""
    url: str = Field(..., min_length=1)
    source: PhotoSource
    captured_at: datetime

    @field_validator("captured_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class LocationProvider(Protocol):
    async def current_position(self, *, timeout: float, high_accuracy: bool = True) -> LocationSample:
        """Single-shot fix; may prompt the user. Raises LocationError."""
        ...

    async def silent_position(self) -> Optional[LocationSample]:
        """Fix obtainable without any prompt, or None."""
        ...


class CameraProvider(Protocol):
    async def capture_still(self) -> CapturedPhoto:
        ...


async def request_location(provider: LocationProvider, timeout: float) -> LocationSample:
    """
    Ask the provider for exactly one sample, bounded by `timeout` seconds.

    A provider that hangs is abandoned and reported as a timeout.
    """
    try:
        return await asyncio.wait_for(
            provider.current_position(timeout=timeout, high_accuracy=True), timeout
        )
    except asyncio.TimeoutError:
        raise LocationError(LocationErrorReason.timeout)


async def request_silent_location(provider: LocationProvider) -> Optional[LocationSample]:
    """Best-effort background sample; a LocationError yields None."""
    try:
        return await provider.silent_position()
    except LocationError as e:
        logger.debug("silent location unavailable: %s", e)
        return None


class DeviceLocation:
    """
    Location provider fed by the client over HTTP.

    Every pushed fix answers at most one `current_position` call; once it has
    been used for a check-in attempt the next request waits for a new push.
    `silent_position` never waits: it returns the newest sample if it is not
    older than `max_age_s`.
    """

    def __init__(self, max_age_s: float = 120.0):
        self.max_age_s = max_age_s
        self._latest: Optional[LocationSample] = None
        self._unused: Optional[LocationSample] = None
        self._pushed = asyncio.Event()
        self.denied = False

    def push(self, sample: LocationSample) -> None:
        self._latest = sample
        self._unused = sample
        self.denied = False
        self._pushed.set()

    def deny(self) -> None:
        """Record that the user refused location access on the device."""
        self.denied = True
        self._pushed.set()

    def _take(self) -> LocationSample:
        sample, self._unused = self._unused, None
        return sample

    async def current_position(self, *, timeout: float, high_accuracy: bool = True) -> LocationSample:
        if self._unused is not None:
            return self._take()
        if self.denied:
            raise LocationError(LocationErrorReason.permission_denied)

        self._pushed.clear()
        try:
            await asyncio.wait_for(self._pushed.wait(), timeout)
        except asyncio.TimeoutError:
            raise LocationError(LocationErrorReason.timeout)
        if self.denied or self._unused is None:
            raise LocationError(LocationErrorReason.permission_denied)
        return self._take()

    async def silent_position(self) -> Optional[LocationSample]:
        if self._latest is None:
            return None
        age = (datetime.now(timezone.utc) - self._latest.sampled_at).total_seconds()
        return self._latest if age <= self.max_age_s else None
