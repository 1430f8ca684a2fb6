"""Unit tests for the session monitor and the session registry."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from backend.base import BackendError
from checkins.schemas import CheckInStatus, ProfileSubmission
from device import LocationError, LocationErrorReason
from schemas import VisibilityMode
from sessions.registry import SessionRegistry
from sessions.schemas import END_REASON_EVENT_ENDED, END_REASON_LEFT_AREA, CheckInSession
from sessions.service import SessionMonitor


class TestSessionEnd:
    """Test cases for the one-way ended flag."""

    def test_end_is_idempotent(self):
        """Test the first reason wins and a second end is a no-op."""
        session = CheckInSession(user_id="me", event_id="evt")
        assert session.end(END_REASON_LEFT_AREA) is True
        assert session.end(END_REASON_EVENT_ENDED) is False
        assert session.ended is True
        assert session.end_reason == END_REASON_LEFT_AREA


class TestMonitorTick:
    """Test cases for a single monitor check."""

    @pytest.mark.asyncio
    async def test_missing_location_never_ends(self, public_session, backend, config, fake_location):
        """Test an active event with no obtainable sample keeps the session alive."""
        session = public_session()
        location = fake_location(silent=None)
        monitor = SessionMonitor(session, backend, location, config)

        assert await monitor.tick() is None

        assert session.ended is False
        assert location.silent_calls == 1
        assert location.calls == 0

    @pytest.mark.asyncio
    async def test_location_error_never_ends(self, public_session, backend, config, fake_location):
        """Test a failing silent request is skipped, not fatal."""
        session = public_session()
        location = fake_location(silent=LocationError(LocationErrorReason.unavailable))
        monitor = SessionMonitor(session, backend, location, config)

        await monitor.tick()

        assert session.ended is False

    @pytest.mark.asyncio
    async def test_event_ended(self, public_session, backend, config, fake_location, event):
        """Test a deactivated event ends the session with its reason."""
        session = public_session()
        backend.add_event(event.model_copy(update={"is_active": False}))
        monitor = SessionMonitor(session, backend, fake_location(), config)

        assert await monitor.tick() == END_REASON_EVENT_ENDED

        assert session.ended is True
        assert session.end_reason == "event ended"

    @pytest.mark.asyncio
    async def test_event_end_time_passed(self, public_session, backend, config, fake_location, event):
        """Test an event whose end time has passed ends the session."""
        session = public_session()
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        backend.add_event(event.model_copy(update={"ended_at": past}))
        monitor = SessionMonitor(session, backend, fake_location(), config)

        assert await monitor.tick() == END_REASON_EVENT_ENDED

    @pytest.mark.asyncio
    async def test_left_area_uses_loose_tolerance(self, public_session, backend, config, fake_location, sample_at):
        """Test 120m keeps the session (3x buffer) while 200m ends it."""
        session = public_session()
        location = fake_location(silent=sample_at(120))
        monitor = SessionMonitor(session, backend, location, config)

        assert await monitor.tick() is None
        assert session.ended is False

        location.silent = sample_at(200)
        assert await monitor.tick() == END_REASON_LEFT_AREA
        assert session.end_reason == "left event area"

    @pytest.mark.asyncio
    async def test_end_marks_check_in_only(self, public_session, backend, config, fake_location, sample_at, event):
        """Test ending stamps the check-in marker and leaves other records untouched."""
        session = public_session()
        await backend.insert_match("me", "zoe", event.id)
        matches_before = dict(backend.matches)
        monitor = SessionMonitor(session, backend, fake_location(silent=sample_at(1000)), config)

        await monitor.tick()

        record = backend.check_ins[("me", event.id)]
        assert record.ended_at is not None
        assert record.id == session.check_in.id
        assert record.visibility_mode == VisibilityMode.public
        assert backend.matches == matches_before
        assert ("me", event.id) in backend.profiles

    @pytest.mark.asyncio
    async def test_backend_failure_skips_lifecycle(self, public_session, backend, config, fake_location, sample_at):
        """Test a failed event read does not end the session."""
        session = public_session()
        backend.get_event = AsyncMock(side_effect=BackendError("unreachable"))
        monitor = SessionMonitor(session, backend, fake_location(silent=sample_at(0)), config)

        assert await monitor.tick() is None
        assert session.ended is False

    @pytest.mark.asyncio
    async def test_marker_failure_still_ends(self, public_session, backend, config, fake_location, sample_at):
        """Test a failed ended-marker write does not keep the session alive."""
        session = public_session()
        backend.mark_check_in_ended = AsyncMock(side_effect=BackendError("read only"))
        monitor = SessionMonitor(session, backend, fake_location(silent=sample_at(1000)), config)

        assert await monitor.tick() == END_REASON_LEFT_AREA
        assert session.ended is True

    @pytest.mark.asyncio
    async def test_listeners_called_once(self, public_session, backend, config, fake_location, event):
        """Test end listeners fire once even if ticks keep coming."""
        session = public_session()
        backend.add_event(event.model_copy(update={"is_active": False}))
        monitor = SessionMonitor(session, backend, fake_location(), config)
        listener = Mock()
        monitor.on_end(listener)

        await monitor.tick()
        await monitor.tick()

        listener.assert_called_once_with(session)


class TestMonitorLifecycle:
    """Test cases for starting and stopping the monitor."""

    @pytest.mark.asyncio
    async def test_private_session_not_monitored(self, seed_attendee, backend, config, fake_location, event):
        """Test a private check-in never starts the monitor."""
        check_in, _ = seed_attendee("me", VisibilityMode.private)
        session = CheckInSession(
            user_id="me", event_id=event.id, visibility_mode=VisibilityMode.private, check_in=check_in
        )
        monitor = SessionMonitor(session, backend, fake_location(), config)

        assert monitor.start() is False
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_runs_immediately_and_stops_on_end(self, public_session, backend, config, fake_location, event):
        """Test the first tick runs at once and the loop exits after ending."""
        session = public_session()
        backend.add_event(event.model_copy(update={"is_active": False}))
        monitor = SessionMonitor(session, backend, fake_location(), config, interval_s=3600)

        assert monitor.start() is True
        await asyncio.sleep(0.05)

        assert session.ended is True
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_broken_provider_keeps_ticking(self, public_session, backend, config, fake_location, event):
        """Test an unexpected provider error is skipped and later ticks still end the session."""
        session = public_session()
        location = fake_location(silent=RuntimeError("gps driver crashed"))
        monitor = SessionMonitor(session, backend, location, config)

        monitor.start()
        await asyncio.sleep(0.05)
        assert monitor.running is True
        assert session.ended is False
        assert location.silent_calls > 1

        backend.add_event(event.model_copy(update={"is_active": False}))
        await asyncio.sleep(0.05)

        assert session.end_reason == END_REASON_EVENT_ENDED
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_context_manager_stops(self, public_session, backend, config, fake_location):
        """Test leaving the context cancels the timer."""
        session = public_session()
        async with SessionMonitor(session, backend, fake_location(), config) as monitor:
            await asyncio.sleep(0.03)
            assert monitor.running is True
        assert monitor.running is False
        assert session.ended is False


class TestRegistry:
    """Test cases for session ownership."""

    @pytest.mark.asyncio
    async def test_public_check_in_activates_matching(self, backend, config, seed_attendee, sample_at, live_photo, event):
        """Test a public check-in starts the queue and the monitor."""
        seed_attendee("zoe")
        registry = SessionRegistry(backend, config)
        handle = registry.open("me", event.id)
        handle.location.push(sample_at(0))

        await handle.after_step(await handle.checkin.attempt_check_in(event.id))
        await handle.after_step(await handle.checkin.choose_visibility(VisibilityMode.public))
        outcome = await handle.checkin.submit_profile(
            ProfileSubmission(display_name="Ana", age=30, bio="Hi", photo=live_photo())
        )
        await handle.after_step(outcome)

        assert outcome.status == CheckInStatus.success
        assert handle.queue is not None
        assert handle.queue.current().user_id == "zoe"
        assert handle.monitor.running is True
        assert handle.state().monitoring is True

        await registry.close_all()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_private_check_in_has_no_queue(self, backend, config, sample_at, event):
        """Test a private check-in gets a confirmation only."""
        registry = SessionRegistry(backend, config)
        async with registry.scope("me", event.id) as handle:
            handle.location.push(sample_at(0))
            await handle.checkin.attempt_check_in(event.id)
            await handle.after_step(await handle.checkin.choose_visibility(VisibilityMode.private))

            assert handle.queue is None
            assert handle.monitor is None
            assert handle.state().status == "success"
        assert registry.get("me", event.id) is None

    @pytest.mark.asyncio
    async def test_reentry_on_ended_check_in_stays_inactive(self, backend, config, seed_attendee, event):
        """Test returning after the session ended does not restart swiping or monitoring."""
        check_in, _ = seed_attendee("me")
        await backend.mark_check_in_ended(check_in.id, datetime.now(timezone.utc))
        registry = SessionRegistry(backend, config)
        handle = registry.open("me", event.id)

        outcome = await handle.after_step(await handle.checkin.attempt_check_in(event.id))

        assert outcome.status == CheckInStatus.already_checked_in
        assert handle.queue is None
        assert handle.monitor is None
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_close_stops_everything_without_writes(self, backend, config, public_session, event):
        """Test closing cancels the monitor and the feed and writes nothing."""
        registry = SessionRegistry(backend, config)
        handle = registry.open("me", event.id)
        handle.checkin.session = public_session()
        handle.checkin.status = CheckInStatus.success
        await handle.activate()
        monitor, queue = handle.monitor, handle.queue
        check_ins_before = dict(backend.check_ins)

        assert await registry.close("me", event.id) is True

        assert monitor.running is False
        assert queue._feed_task is None
        assert backend.check_ins == check_ins_before
        assert backend.swipes == {}
        assert await registry.close("me", event.id) is False

    @pytest.mark.asyncio
    async def test_state_reports_end_reason(self, backend, config, public_session, event):
        """Test an ended session is displayed with its reason."""
        registry = SessionRegistry(backend, config)
        handle = registry.open("me", event.id)
        handle.checkin.session = public_session()
        handle.checkin.status = CheckInStatus.success
        handle.session.end(END_REASON_LEFT_AREA)

        state = handle.state()

        assert state.status == "ended"
        assert state.ended is True
        assert state.end_reason == "left event area"
        await registry.close_all()
