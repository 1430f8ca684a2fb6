"""Business logic for the proximity-gated check-in flow."""
import asyncio
import logging
from typing import List, Optional

import geo
from backend.base import BackendError, CheckInBackend, DuplicateCheckInError
from checkins import qr
from checkins.schemas import (
    CheckInCreate,
    CheckInErrorKind,
    CheckInOutcome,
    CheckInRecord,
    CheckInStatus,
    ProfileCreate,
    ProfileSubmission,
    TERMINAL_STATUSES,
)
from device import (
    CameraProvider,
    CapturedPhoto,
    LocationError,
    LocationProvider,
    PhotoSource,
    request_location,
)
from metrics import CHECKIN_ATTEMPTS, CHECKIN_OUTCOMES
from schemas import VerificationMethod, VisibilityMode
from sessions.schemas import CheckInSession
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

EVENT_NOT_FOUND = "Event not found or is no longer active"
CHECK_IN_FAILED = "Failed to complete check-in. Please verify your location again."
PROFILE_WARNING = (
    "You're checked in, but your profile could not be published. "
    "You can finish it from Edit Profile."
)


class CheckInStateError(Exception):
    """An operation was invoked in a state that does not accept it."""


async def resolve_scan_target(backend: CheckInBackend, payload: str) -> Optional[str]:
    """
    Event id referred to by a scanned payload, or None.

    Unknown codes and rejected tokens are indistinguishable from a missing event.
    """
    scanned = qr.parse_check_in_code(payload)
    if scanned is None:
        return None
    try:
        if scanned.access_code:
            return await backend.resolve_access_code(scanned.access_code)
        if scanned.token and not await backend.validate_event_token(scanned.event_id, scanned.token):
            return None
    except BackendError as e:
        logger.warning("scan resolution failed: %s", e)
        return None
    return scanned.event_id


def scan_not_found() -> CheckInOutcome:
    """Outcome of a scan that leads to no active event; no session is started."""
    CHECKIN_ATTEMPTS.inc()
    CHECKIN_OUTCOMES.labels(CheckInErrorKind.event_not_found.value).inc()
    return CheckInOutcome(
        status=CheckInStatus.idle,
        error=EVENT_NOT_FOUND,
        error_kind=CheckInErrorKind.event_not_found,
    )


class CheckInService:
    """
    Check-in state machine for one user.

    idle -> checking_location -> choose_visibility -> [create_profile] ->
    checking_in -> success | already_checked_in, with every failure falling
    back to idle. The single location sample taken in checking_location is
    cached on the session and reused for the check-in write.
    """

    def __init__(
        self,
        backend: CheckInBackend,
        location: LocationProvider,
        user_id: str,
        config: Optional[Settings] = None,
    ):
        self.backend = backend
        self.location = location
        self.user_id = user_id
        self.config = config or default_settings
        self.status = CheckInStatus.idle
        self.session: Optional[CheckInSession] = None
        self.last_outcome: Optional[CheckInOutcome] = None
        self._inflight: Optional[asyncio.Future] = None
        self._abandoned = False

    # ---------- public operations ----------

    async def attempt_check_in(
        self,
        event_id: str,
        verification_method: VerificationMethod = VerificationMethod.geolocation,
    ) -> CheckInOutcome:
        """Start the flow for `event_id` (user action)."""
        self._require_restartable()
        return await self._run_step(self._attempt(event_id, verification_method))

    async def choose_visibility(self, mode: VisibilityMode) -> CheckInOutcome:
        """One-way fork: private checks in now, public asks for a profile first."""
        self._require(CheckInStatus.choose_visibility)
        self.session.visibility_mode = mode
        if mode == VisibilityMode.private:
            return await self._run_step(self._write_check_in())
        self.status = CheckInStatus.create_profile
        return self._outcome()

    async def submit_profile(self, fields: ProfileSubmission) -> CheckInOutcome:
        """Validate the profile, then write the check-in and the profile, in that order."""
        self._require(CheckInStatus.create_profile)
        errors = self.validate_profile(fields)
        if errors:
            CHECKIN_OUTCOMES.labels(CheckInErrorKind.invalid_profile.value).inc()
            return self._outcome(
                error="; ".join(errors),
                error_kind=CheckInErrorKind.invalid_profile,
                field_errors=errors,
            )
        return await self._run_step(self._submit(fields))

    async def capture_profile_photo(self, camera: CameraProvider) -> CapturedPhoto:
        """Take the live still required by the profile step."""
        self._require(CheckInStatus.create_profile)
        photo = await camera.capture_still()
        if photo.source != PhotoSource.camera:
            raise CheckInStateError("camera returned a non-live photo")
        return photo

    def validate_profile(self, fields: ProfileSubmission) -> List[str]:
        errors = []
        if not fields.display_name.strip():
            errors.append("Display name is required")
        if fields.age is None or fields.age < self.config.min_profile_age:
            errors.append(f"You must be at least {self.config.min_profile_age} years old")
        if not fields.bio.strip():
            errors.append("Bio is required")
        photo = fields.photo
        if photo is None:
            errors.append("A live photo is required")
        elif photo.source != PhotoSource.camera:
            errors.append("Photo must be taken with the camera")
        elif self.session is not None and photo.captured_at < self.session.started_at:
            errors.append("Photo must be captured during this check-in")
        return errors

    def abandon(self) -> None:
        """Navigate-away: cancel any in-flight step and drop the cached sample."""
        self._abandoned = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        if self.session is not None and self.status not in TERMINAL_STATUSES:
            self.session.discard_sample()
            self.status = CheckInStatus.idle

    # ---------- steps ----------

    async def _attempt(self, event_id: str, method: VerificationMethod) -> CheckInOutcome:
        CHECKIN_ATTEMPTS.inc()
        self.session = CheckInSession(
            user_id=self.user_id, event_id=event_id, verification_method=method
        )
        self.last_outcome = None

        try:
            event = await self.backend.get_event(event_id)
        except BackendError as e:
            logger.warning("event lookup failed for %s: %s", event_id, e)
            return self._fail(CheckInErrorKind.check_in_failed, "Could not load the event. Please try again.")
        if event is None or event.has_ended():
            return self._fail(CheckInErrorKind.event_not_found, EVENT_NOT_FOUND)
        self.session.venue = event.venue(self.config.default_geofence_radius_m)

        try:
            existing = await self.backend.get_check_in(self.user_id, event_id)
        except BackendError as e:
            logger.warning("check-in lookup failed for %s/%s: %s", self.user_id, event_id, e)
            return self._fail(CheckInErrorKind.check_in_failed, "Could not load the event. Please try again.")
        if existing is not None:
            return self._already_checked_in(existing)

        self.status = CheckInStatus.checking_location
        try:
            sample = await request_location(self.location, self.config.location_timeout_s)
        except LocationError as e:
            logger.info("location unavailable for %s at %s: %s", self.user_id, event_id, e.reason.value)
            return self._fail(CheckInErrorKind.location_unavailable, str(e))

        venue = self.session.venue
        result = geo.evaluate(venue, sample.coordinate, self.config.checkin_tolerance, sample.sampled_at)
        if not result.within_radius:
            logger.info(
                "geofence miss for %s at %s: %.0fm > %.0fm",
                self.user_id, event_id, result.distance_m, venue.geofence_radius_m,
            )
            return self._fail(
                CheckInErrorKind.outside_geofence,
                f"You are {round(result.distance_m)}m from the venue. "
                f"You need to be within {round(venue.geofence_radius_m)}m to check in.",
                distance_m=result.distance_m,
                required_radius_m=venue.geofence_radius_m,
            )

        self.session.cached_geofence = result
        self.status = CheckInStatus.choose_visibility
        return self._outcome()

    async def _submit(self, fields: ProfileSubmission) -> CheckInOutcome:
        outcome = await self._write_check_in()
        if outcome.status != CheckInStatus.success:
            return outcome

        session = self.session
        profile = ProfileCreate(
            user_id=self.user_id,
            event_id=session.event_id,
            check_in_id=session.check_in.id,
            display_name=fields.display_name.strip(),
            age=fields.age,
            bio=fields.bio.strip(),
            interests=fields.interests,
            photo_url=fields.photo.url,
        )
        try:
            await self.backend.insert_profile(profile)
        except BackendError as e:
            # the check-in stands; the profile can be recreated later
            logger.warning("profile write failed after check-in %s: %s", session.check_in.id, e)
            return self._outcome(warning=PROFILE_WARNING)
        return outcome

    async def _write_check_in(self) -> CheckInOutcome:
        session = self.session
        sample = session.cached_geofence
        if sample is None:
            return self._fail(CheckInErrorKind.check_in_failed, CHECK_IN_FAILED)

        self.status = CheckInStatus.checking_in
        data = CheckInCreate(
            event_id=session.event_id,
            user_id=self.user_id,
            coordinate=sample.coordinate,
            distance_m=sample.distance_m,
            within_geofence=sample.within_radius,
            visibility_mode=session.visibility_mode,
            verification_method=session.verification_method,
        )
        try:
            record = await self.backend.insert_check_in(data)
        except DuplicateCheckInError:
            return self._already_checked_in(await self._lookup_existing())
        except BackendError as e:
            logger.warning("check-in write failed for %s at %s: %s", self.user_id, session.event_id, e)
            return self._fail(CheckInErrorKind.check_in_failed, CHECK_IN_FAILED)

        session.check_in = record
        logger.info(
            "checked in %s at %s (%s, %.0fm)",
            self.user_id, session.event_id, session.visibility_mode.value, sample.distance_m,
        )
        try:
            await self.backend.increment_attendees(session.event_id)
        except BackendError as e:
            logger.warning("attendee count not updated for %s: %s", session.event_id, e)

        self.status = CheckInStatus.success
        CHECKIN_OUTCOMES.labels(CheckInStatus.success.value).inc()
        return self._outcome()

    # ---------- helpers ----------

    async def _lookup_existing(self) -> Optional[CheckInRecord]:
        try:
            return await self.backend.get_check_in(self.user_id, self.session.event_id)
        except BackendError as e:
            logger.warning("existing check-in lookup failed: %s", e)
            return None

    async def _run_step(self, coro) -> CheckInOutcome:
        self._abandoned = False
        self._inflight = asyncio.ensure_future(coro)
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self.session is not None:
                self.session.discard_sample()
            self.status = CheckInStatus.idle
            if self._abandoned:
                return self._outcome(error="Check-in cancelled")
            raise
        finally:
            self._inflight = None

    def _already_checked_in(self, existing: Optional[CheckInRecord]) -> CheckInOutcome:
        session = self.session
        if existing is not None:
            session.check_in = existing
            session.visibility_mode = existing.visibility_mode
        self.status = CheckInStatus.already_checked_in
        CHECKIN_OUTCOMES.labels(CheckInStatus.already_checked_in.value).inc()
        return self._outcome()

    def _fail(self, kind: CheckInErrorKind, message: str, **extra) -> CheckInOutcome:
        self.status = CheckInStatus.idle
        if self.session is not None:
            self.session.discard_sample()
        CHECKIN_OUTCOMES.labels(kind.value).inc()
        return self._outcome(error=message, error_kind=kind, **extra)

    def _outcome(self, **extra) -> CheckInOutcome:
        session = self.session
        fields = {"status": self.status}
        if session is not None:
            fields.update(
                event_id=session.event_id,
                visibility_mode=session.visibility_mode,
                check_in=session.check_in,
            )
            if session.cached_geofence is not None:
                fields["distance_m"] = session.cached_geofence.distance_m
            if session.venue is not None:
                fields["required_radius_m"] = session.venue.geofence_radius_m
        fields.update(extra)
        self.last_outcome = CheckInOutcome(**fields)
        return self.last_outcome

    def _busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _require(self, status: CheckInStatus) -> None:
        if self._busy() or self.status != status or self.session is None:
            raise CheckInStateError(f"expected state {status.value}, current state is {self.status.value}")

    def _require_restartable(self) -> None:
        if self._busy() or (self.status != CheckInStatus.idle and self.status not in TERMINAL_STATUSES):
            raise CheckInStateError(f"a check-in step is already in progress ({self.status.value})")
