"""SQLAlchemy implementation of the collaborator contract.

Blocking session work runs in Starlette's thread pool so the event loop
(and the session monitors on it) never stalls on the database.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, List, Optional, Set

from sqlalchemy import and_, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from backend.base import (
    BackendError,
    DuplicateCheckInError,
    DuplicateProfileError,
    DuplicateSwipeError,
    ordered_pair,
)
from checkins import qr
from checkins.models import CheckIn, ConnectionProfile
from checkins.schemas import CheckInCreate, CheckInRecord, ProfileCreate, ProfileRecord
from events.models import Event
from events.schemas import EventRecord
from schemas import Coordinate
from swipes.models import Match, MemberQuota, Swipe
from swipes.schemas import MatchRecord, MemberRecord, SwipeCreate, SwipeRecord

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_in_record(row: CheckIn) -> CheckInRecord:
    return CheckInRecord(
        id=row.id,
        event_id=row.event_id,
        user_id=row.user_id,
        coordinate=Coordinate(lat=row.latitude, lng=row.longitude),
        distance_m=row.distance_m,
        within_geofence=row.within_geofence,
        visibility_mode=row.visibility_mode,
        verification_method=row.verification_method,
        created_at=row.created_at,
        ended_at=row.ended_at,
    )


class SqlBackend:
    """Backend over a SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        poll_interval_s: float = 5.0,
        feed_overlap_s: float = 30.0,
    ):
        self.session_factory = session_factory
        self.poll_interval_s = poll_interval_s
        self.feed_overlap_s = feed_overlap_s

    async def _run(self, fn, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except BackendError:
            raise
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    # ---------- events ----------

    def _get_event(self, event_id: str) -> Optional[EventRecord]:
        with self.session_factory() as db:
            row = db.get(Event, event_id)
            return EventRecord.model_validate(row) if row else None

    async def get_event(self, event_id: str) -> Optional[EventRecord]:
        return await self._run(self._get_event, event_id)

    def _resolve_access_code(self, code: str) -> Optional[str]:
        with self.session_factory() as db:
            row = db.execute(
                text(
                    """
                    SELECT id FROM events
                    WHERE UPPER(access_code) = :code
                      AND is_active = :active
                    LIMIT 1
                    """
                ),
                {"code": code.upper(), "active": True},
            ).fetchone()
            return row.id if row else None

    async def resolve_access_code(self, code: str) -> Optional[str]:
        return await self._run(self._resolve_access_code, code)

    async def validate_event_token(self, event_id: str, token: str) -> bool:
        return qr.validate_event_token(token, event_id)

    def _increment_attendees(self, event_id: str) -> None:
        with self.session_factory() as db:
            db.execute(
                text("UPDATE events SET attendees_count = attendees_count + 1 WHERE id = :id"),
                {"id": event_id},
            )
            db.commit()

    async def increment_attendees(self, event_id: str) -> None:
        await self._run(self._increment_attendees, event_id)

    # ---------- check-ins ----------

    def _get_check_in(self, user_id: str, event_id: str) -> Optional[CheckInRecord]:
        with self.session_factory() as db:
            row = db.execute(
                select(CheckIn).where(CheckIn.user_id == user_id, CheckIn.event_id == event_id)
            ).scalar_one_or_none()
            return _check_in_record(row) if row else None

    async def get_check_in(self, user_id: str, event_id: str) -> Optional[CheckInRecord]:
        return await self._run(self._get_check_in, user_id, event_id)

    def _insert_check_in(self, data: CheckInCreate) -> CheckInRecord:
        row = CheckIn(
            id=str(uuid.uuid4()),
            event_id=data.event_id,
            user_id=data.user_id,
            latitude=data.coordinate.lat,
            longitude=data.coordinate.lng,
            distance_m=data.distance_m,
            within_geofence=data.within_geofence,
            visibility_mode=data.visibility_mode.value,
            verification_method=data.verification_method.value,
            created_at=_now(),
        )
        with self.session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DuplicateCheckInError(str(e.orig)) from e
            db.refresh(row)
            return _check_in_record(row)

    async def insert_check_in(self, data: CheckInCreate) -> CheckInRecord:
        return await self._run(self._insert_check_in, data)

    def _mark_check_in_ended(self, check_in_id: str, ended_at: datetime) -> None:
        with self.session_factory() as db:
            db.execute(
                text(
                    """
                    UPDATE check_ins
                    SET ended_at = :ended_at
                    WHERE id = :id AND ended_at IS NULL
                    """
                ),
                {"id": check_in_id, "ended_at": ended_at},
            )
            db.commit()

    async def mark_check_in_ended(self, check_in_id: str, ended_at: datetime) -> None:
        await self._run(self._mark_check_in_ended, check_in_id, ended_at)

    # ---------- profiles ----------

    def _insert_profile(self, data: ProfileCreate) -> ProfileRecord:
        row = ConnectionProfile(id=str(uuid.uuid4()), created_at=_now(), **data.model_dump())
        with self.session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DuplicateProfileError(str(e.orig)) from e
            db.refresh(row)
            return ProfileRecord.model_validate(row)

    async def insert_profile(self, data: ProfileCreate) -> ProfileRecord:
        return await self._run(self._insert_profile, data)

    def _visible_profiles(self, event_id: str, exclude_user_id: Optional[str] = None, since=None):
        stmt = (
            select(ConnectionProfile)
            .outerjoin(
                CheckIn,
                and_(
                    CheckIn.user_id == ConnectionProfile.user_id,
                    CheckIn.event_id == ConnectionProfile.event_id,
                ),
            )
            .where(
                ConnectionProfile.event_id == event_id,
                ConnectionProfile.is_public.is_(True),
                ConnectionProfile.is_active.is_(True),
                or_(CheckIn.id.is_(None), CheckIn.ended_at.is_(None)),
            )
            .order_by(ConnectionProfile.created_at, ConnectionProfile.id)
        )
        if exclude_user_id is not None:
            stmt = stmt.where(ConnectionProfile.user_id != exclude_user_id)
        if since is not None:
            stmt = stmt.where(ConnectionProfile.created_at >= since)
        with self.session_factory() as db:
            return [ProfileRecord.model_validate(r) for r in db.execute(stmt).scalars()]

    async def list_candidates(self, event_id: str, exclude_user_id: str) -> List[ProfileRecord]:
        return await self._run(self._visible_profiles, event_id, exclude_user_id)

    def subscribe_profiles(self, event_id: str) -> AsyncIterator[ProfileRecord]:
        """
        Poll for profiles created since the subscription started.

        The window opens `feed_overlap_s` before the call so rows stamped
        just before it but committed after it are still seen.
        """
        since = _now() - timedelta(seconds=self.feed_overlap_s)
        return self._poll_profiles(event_id, since)

    async def _poll_profiles(self, event_id: str, since: datetime) -> AsyncIterator[ProfileRecord]:
        seen: Set[str] = set()
        while True:
            await asyncio.sleep(self.poll_interval_s)
            try:
                rows = await self._run(self._visible_profiles, event_id, None, since)
            except BackendError as e:
                logger.warning("profile feed poll failed for event %s: %s", event_id, e)
                continue
            for row in rows:
                if row.id in seen:
                    continue
                seen.add(row.id)
                yield row

    # ---------- swipes / matches ----------

    def _insert_swipe(self, data: SwipeCreate) -> SwipeRecord:
        row = Swipe(
            id=str(uuid.uuid4()),
            swiper_id=data.swiper_id,
            swiped_id=data.swiped_id,
            event_id=data.event_id,
            direction=data.direction.value,
            swiped_at=_now(),
        )
        with self.session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DuplicateSwipeError(str(e.orig)) from e
            db.refresh(row)
            return SwipeRecord.model_validate(row)

    async def insert_swipe(self, data: SwipeCreate) -> SwipeRecord:
        return await self._run(self._insert_swipe, data)

    def _get_swipe(self, swiper_id: str, swiped_id: str, event_id: str) -> Optional[SwipeRecord]:
        with self.session_factory() as db:
            row = db.execute(
                select(Swipe).where(
                    Swipe.swiper_id == swiper_id,
                    Swipe.swiped_id == swiped_id,
                    Swipe.event_id == event_id,
                )
            ).scalar_one_or_none()
            return SwipeRecord.model_validate(row) if row else None

    async def get_swipe(self, swiper_id: str, swiped_id: str, event_id: str) -> Optional[SwipeRecord]:
        return await self._run(self._get_swipe, swiper_id, swiped_id, event_id)

    def _list_swipes(self, swiper_id: str, event_id: str) -> List[SwipeRecord]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Swipe)
                .where(Swipe.swiper_id == swiper_id, Swipe.event_id == event_id)
                .order_by(Swipe.swiped_at)
            ).scalars()
            return [SwipeRecord.model_validate(r) for r in rows]

    async def list_swipes(self, swiper_id: str, event_id: str) -> List[SwipeRecord]:
        return await self._run(self._list_swipes, swiper_id, event_id)

    def _insert_match(self, user_a_id: str, user_b_id: str, event_id: str) -> MatchRecord:
        a, b = ordered_pair(user_a_id, user_b_id)
        query = select(Match).where(Match.user_a_id == a, Match.user_b_id == b, Match.event_id == event_id)
        with self.session_factory() as db:
            existing = db.execute(query).scalar_one_or_none()
            if existing:
                return MatchRecord.model_validate(existing)
            row = Match(id=str(uuid.uuid4()), user_a_id=a, user_b_id=b, event_id=event_id, created_at=_now())
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # the other side won the race
                db.rollback()
                return MatchRecord.model_validate(db.execute(query).scalar_one())
            db.refresh(row)
            return MatchRecord.model_validate(row)

    async def insert_match(self, user_a_id: str, user_b_id: str, event_id: str) -> MatchRecord:
        return await self._run(self._insert_match, user_a_id, user_b_id, event_id)

    def _list_matches(self, user_id: str, event_id: str) -> List[MatchRecord]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Match).where(
                    Match.event_id == event_id,
                    or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
                )
            ).scalars()
            return [MatchRecord.model_validate(r) for r in rows]

    async def list_matches(self, user_id: str, event_id: str) -> List[MatchRecord]:
        return await self._run(self._list_matches, user_id, event_id)

    # ---------- members ----------

    def _get_member(self, user_id: str) -> Optional[MemberRecord]:
        with self.session_factory() as db:
            row = db.get(MemberQuota, user_id)
            return MemberRecord.model_validate(row) if row else None

    async def get_member(self, user_id: str) -> Optional[MemberRecord]:
        return await self._run(self._get_member, user_id)

    def _set_likes_remaining(self, user_id: str, likes_remaining: int) -> None:
        with self.session_factory() as db:
            row = db.get(MemberQuota, user_id)
            if row is None:
                db.add(MemberQuota(user_id=user_id, likes_remaining=likes_remaining))
            else:
                row.likes_remaining = likes_remaining
            db.commit()

    async def set_likes_remaining(self, user_id: str, likes_remaining: int) -> None:
        await self._run(self._set_likes_remaining, user_id, likes_remaining)
