"""Unit tests for the device location buffer and location helpers."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from device import (
    DeviceLocation,
    LocationError,
    LocationErrorReason,
    LocationSample,
    request_location,
    request_silent_location,
)
from schemas import Coordinate

HERE = Coordinate(lat=-22.5609, lng=17.0658)


def _sample(age_s: float = 0.0) -> LocationSample:
    return LocationSample(
        coordinate=HERE, sampled_at=datetime.now(timezone.utc) - timedelta(seconds=age_s)
    )


class TestDeviceLocation:
    """Test cases for the client-fed location buffer."""

    @pytest.mark.asyncio
    async def test_fresh_sample_returned_at_once(self):
        """Test a buffered fresh fix answers immediately."""
        location = DeviceLocation(max_age_s=60)
        location.push(_sample())

        sample = await location.current_position(timeout=0.1)

        assert sample.coordinate == HERE

    @pytest.mark.asyncio
    async def test_waits_for_next_push(self):
        """Test a request without a buffered fix waits for the client."""
        location = DeviceLocation(max_age_s=60)
        pending = asyncio.ensure_future(location.current_position(timeout=1))
        await asyncio.sleep(0.01)
        assert pending.done() is False

        location.push(_sample())

        assert (await pending).coordinate == HERE

    @pytest.mark.asyncio
    async def test_each_fix_answers_one_request(self):
        """Test a fix used for one request is not handed out again."""
        location = DeviceLocation(max_age_s=60)
        location.push(_sample())
        await location.current_position(timeout=0.1)

        with pytest.raises(LocationError) as exc:
            await location.current_position(timeout=0.05)

        assert exc.value.reason == LocationErrorReason.timeout
        assert await location.silent_position() is not None

    @pytest.mark.asyncio
    async def test_no_push_times_out(self):
        """Test waiting without a push ends in a timeout error."""
        with pytest.raises(LocationError) as exc:
            await DeviceLocation().current_position(timeout=0.05)
        assert exc.value.reason == LocationErrorReason.timeout

    @pytest.mark.asyncio
    async def test_denied(self):
        """Test a denied permission is reported as such."""
        location = DeviceLocation()
        location.deny()
        with pytest.raises(LocationError) as exc:
            await location.current_position(timeout=0.05)
        assert exc.value.reason == LocationErrorReason.permission_denied

    @pytest.mark.asyncio
    async def test_silent_never_waits(self):
        """Test the silent variant returns only fresh fixes and never blocks."""
        location = DeviceLocation(max_age_s=60)
        assert await location.silent_position() is None

        location.push(_sample(age_s=600))
        assert await location.silent_position() is None

        location.push(_sample())
        assert await location.silent_position() is not None


class TestHelpers:
    """Test cases for the request wrappers."""

    @pytest.mark.asyncio
    async def test_request_location_bounds_hung_provider(self, fake_location):
        """Test a provider that never answers becomes a timeout error."""
        with pytest.raises(LocationError) as exc:
            await request_location(fake_location(hang=True), 0.05)
        assert exc.value.reason == LocationErrorReason.timeout
        assert str(exc.value) == "Location request timed out."

    @pytest.mark.asyncio
    async def test_silent_request_swallows_location_errors(self, fake_location):
        """Test background requests turn failures into no sample."""
        provider = fake_location(silent=LocationError(LocationErrorReason.unsupported))
        assert await request_silent_location(provider) is None

    def test_naive_timestamp_is_utc(self):
        """Test fixes without a timezone are read as UTC."""
        sample = LocationSample(coordinate=HERE, sampled_at=datetime(2024, 5, 1, 12, 0))
        assert sample.sampled_at.tzinfo == timezone.utc
