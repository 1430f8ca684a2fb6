"""SQLAlchemy models for swipes, matches and member quotas."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from db import Base


class Swipe(Base):
    """Append-only swipe decision."""

    __tablename__ = "swipes"
    __table_args__ = (
        UniqueConstraint("swiper_id", "swiped_id", "event_id", name="uq_swipes_pair_event"),
    )

    id = Column(String(36), primary_key=True)
    swiper_id = Column(String(64), nullable=False, index=True)
    swiped_id = Column(String(64), nullable=False, index=True)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    direction = Column(String(5), nullable=False)
    swiped_at = Column(DateTime(timezone=True), server_default=func.now())


class Match(Base):
    """Mutual right swipes; user_a_id < user_b_id."""

    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", "event_id", name="uq_matches_pair_event"),
    )

    id = Column(String(36), primary_key=True)
    user_a_id = Column(String(64), nullable=False, index=True)
    user_b_id = Column(String(64), nullable=False, index=True)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MemberQuota(Base):
    """Subscription tier and daily likes left; refilled elsewhere."""

    __tablename__ = "member_quotas"

    user_id = Column(String(64), primary_key=True)
    tier = Column(String(10), nullable=False, default="free")
    likes_remaining = Column(Integer, nullable=False, default=10)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
