"""Shared fixtures: an in-memory backend seeded with one event and a scripted device."""
import asyncio
import math
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from backend.memory import InMemoryBackend
from checkins.schemas import CheckInRecord, ProfileRecord
from device import CapturedPhoto, LocationSample, PhotoSource
from events.schemas import EventRecord
from schemas import Coordinate, VerificationMethod, VisibilityMode
from sessions.schemas import CheckInSession
from settings import Settings

EVENT_ID = "3f2b8c1e-6a4d-4e8b-9c1a-2d5e7f9a0b13"
VENUE = Coordinate(lat=-22.5609, lng=17.0658)
METERS_PER_DEGREE_LAT = 6_371_000.0 * math.pi / 180


def north_of_venue(meters: float) -> Coordinate:
    """Point `meters` due north of the venue (haversine distance is exact along a meridian)."""
    return Coordinate(lat=VENUE.lat + meters / METERS_PER_DEGREE_LAT, lng=VENUE.lng)


class FakeLocation:
    """Scripted LocationProvider that counts the requests it receives."""

    def __init__(self, sample=None, error=None, silent=None, hang=False):
        self.sample = sample
        self.error = error
        self.silent = silent
        self.hang = hang
        self.calls = 0
        self.silent_calls = 0

    async def current_position(self, *, timeout, high_accuracy=True):
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return self.sample

    async def silent_position(self):
        self.silent_calls += 1
        if isinstance(self.silent, Exception):
            raise self.silent
        return self.silent


@pytest.fixture
def config():
    return Settings(
        storage_backend="memory",
        location_timeout_s=0.2,
        monitor_interval_s=0.01,
        realtime_poll_interval_s=0.01,
        stream_interval_s=0.01,
        free_daily_likes=10,
        demo_match_mode=False,
        hmac_required=False,
    )


@pytest.fixture
def event():
    return EventRecord(
        id=EVENT_ID,
        name="Rooftop Mixer",
        latitude=VENUE.lat,
        longitude=VENUE.lng,
        geofence_radius_m=50.0,
        access_code="KX7P2M",
    )


@pytest.fixture
def backend(event):
    store = InMemoryBackend()
    store.add_event(event)
    return store


@pytest.fixture
def sample_at():
    def _sample(meters: float = 0.0) -> LocationSample:
        return LocationSample(coordinate=north_of_venue(meters), accuracy_m=5.0)

    return _sample


@pytest.fixture
def live_photo():
    def _photo(source: PhotoSource = PhotoSource.camera, captured_at=None) -> CapturedPhoto:
        return CapturedPhoto(
            url="https://cdn.example.com/selfie.jpg",
            source=source,
            captured_at=captured_at or datetime.now(timezone.utc),
        )

    return _photo


@pytest.fixture
def seed_attendee(backend, event):
    """Write a check-in (and a profile when public) straight into the store."""

    def _seed(user_id: str, visibility: VisibilityMode = VisibilityMode.public, **profile_fields):
        order = len(backend.check_ins)
        created = datetime.now(timezone.utc) - timedelta(hours=1) + timedelta(seconds=order)
        check_in = CheckInRecord(
            id=str(uuid.uuid4()),
            event_id=event.id,
            user_id=user_id,
            coordinate=VENUE,
            distance_m=0.0,
            within_geofence=True,
            visibility_mode=visibility,
            verification_method=VerificationMethod.geolocation,
            created_at=created,
        )
        backend.check_ins[(user_id, event.id)] = check_in
        if visibility != VisibilityMode.public:
            return check_in, None
        profile = ProfileRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            event_id=event.id,
            check_in_id=check_in.id,
            display_name=profile_fields.pop("display_name", user_id.title()),
            age=profile_fields.pop("age", 27),
            bio=profile_fields.pop("bio", "Here for the music"),
            photo_url=f"https://cdn.example.com/{user_id}.jpg",
            created_at=created,
            **profile_fields,
        )
        backend.profiles[(user_id, event.id)] = profile
        return check_in, profile

    return _seed


@pytest.fixture
def public_session(seed_attendee, event):
    """A checked-in public session for `user_id`, as the state machine leaves it."""

    def _session(user_id: str = "me") -> CheckInSession:
        check_in, _ = seed_attendee(user_id)
        return CheckInSession(
            user_id=user_id,
            event_id=event.id,
            venue=event.venue(),
            visibility_mode=VisibilityMode.public,
            check_in=check_in,
        )

    return _session


@pytest.fixture
def fake_location():
    """Factory for scripted location providers."""
    return FakeLocation
