"""Unit tests for haversine distance and geofence evaluation."""

import math

import pytest

import geo
from schemas import Coordinate, Venue

WINDHOEK = Coordinate(lat=-22.5609, lng=17.0658)
POINTS = [
    WINDHOEK,
    Coordinate(lat=40.7128, lng=-74.0060),
    Coordinate(lat=51.5074, lng=-0.1278),
    Coordinate(lat=-33.8688, lng=151.2093),
    Coordinate(lat=0.0, lng=179.9),
    Coordinate(lat=0.0, lng=-179.9),
    Coordinate(lat=89.9, lng=0.0),
]


def _north(origin: Coordinate, meters: float) -> Coordinate:
    return Coordinate(lat=origin.lat + math.degrees(meters / geo.EARTH_RADIUS_M), lng=origin.lng)


class TestDistance:
    """Test cases for haversine distance."""

    @pytest.mark.parametrize("a", POINTS)
    @pytest.mark.parametrize("b", POINTS)
    def test_symmetric(self, a, b):
        """Test distance(a, b) equals distance(b, a)."""
        assert geo.distance_meters(a, b) == pytest.approx(geo.distance_meters(b, a), rel=1e-12, abs=1e-9)

    @pytest.mark.parametrize("a", POINTS)
    def test_zero_distance_to_self(self, a):
        """Test a point is zero meters from itself."""
        assert geo.distance_meters(a, a) == 0

    def test_known_distance(self):
        """Test New York to London is about 5570 km."""
        d = geo.distance_meters(POINTS[1], POINTS[2])
        assert d == pytest.approx(5_570_000, rel=0.01)

    def test_antimeridian(self):
        """Test points either side of the antimeridian are close."""
        d = geo.distance_meters(POINTS[4], POINTS[5])
        assert d == pytest.approx(22_239, rel=0.01)

    def test_meridian_offset(self):
        """Test a pure latitude offset is measured exactly."""
        assert geo.distance_meters(WINDHOEK, _north(WINDHOEK, 500)) == pytest.approx(500, abs=0.01)


class TestBearing:
    """Test cases for initial bearing."""

    def test_due_north(self):
        """Test bearing towards a point due north is zero."""
        assert geo.bearing_degrees(WINDHOEK, _north(WINDHOEK, 100)) == pytest.approx(0, abs=1e-6)

    def test_due_east(self):
        """Test bearing along the equator towards east is 90 degrees."""
        a = Coordinate(lat=0, lng=10)
        b = Coordinate(lat=0, lng=11)
        assert geo.bearing_degrees(a, b) == pytest.approx(90)

    def test_range(self):
        """Test bearings are normalised into [0, 360)."""
        for a in POINTS:
            for b in POINTS:
                assert 0 <= geo.bearing_degrees(a, b) < 360


class TestEvaluate:
    """Test cases for geofence evaluation."""

    venue = Venue(event_id="evt", coordinate=WINDHOEK, geofence_radius_m=50)

    def test_same_coordinate_is_inside(self):
        """Test a sample at the venue is inside with zero distance."""
        result = geo.evaluate(self.venue, WINDHOEK, geo.STRICT_TOLERANCE)
        assert result.within_radius is True
        assert result.distance_m == pytest.approx(0)
        assert result.coordinate == WINDHOEK

    def test_500m_is_outside(self):
        """Test a sample 500m away is outside the strict check."""
        result = geo.evaluate(self.venue, _north(WINDHOEK, 500), geo.STRICT_TOLERANCE)
        assert result.within_radius is False
        assert result.distance_m == pytest.approx(500, abs=0.5)

    def test_loose_tolerance_buffer(self):
        """Test 120m is outside at 1x but inside at 3x."""
        sample = _north(WINDHOEK, 120)
        assert geo.evaluate(self.venue, sample, geo.STRICT_TOLERANCE).within_radius is False
        assert geo.evaluate(self.venue, sample, geo.MONITOR_TOLERANCE).within_radius is True

    def test_boundary_counts_as_inside(self):
        """Test a sample exactly on the radius is inside."""
        venue = Venue(event_id="evt", coordinate=WINDHOEK, geofence_radius_m=100)
        sample = _north(WINDHOEK, 99.999)
        assert geo.evaluate(venue, sample).within_radius is True

    @pytest.mark.parametrize("meters", [0, 10, 49, 50.5, 120, 149, 151, 1000])
    def test_tolerance_monotonic(self, meters):
        """Test loosening the tolerance never excludes a point the strict check included."""
        sample = _north(WINDHOEK, meters)
        strict = geo.evaluate(self.venue, sample, 1.0).within_radius
        loose = geo.evaluate(self.venue, sample, 3.0).within_radius
        assert not strict or loose

    def test_non_positive_tolerance_rejected(self):
        """Test a zero multiplier is refused."""
        with pytest.raises(ValueError):
            geo.evaluate(self.venue, WINDHOEK, 0)
