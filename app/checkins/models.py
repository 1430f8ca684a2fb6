"""SQLAlchemy models for check-ins and connection profiles."""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from db import Base


class CheckIn(Base):
    """One verified presence of a user at an event."""

    __tablename__ = "check_ins"
    __table_args__ = (UniqueConstraint("user_id", "event_id", name="uq_check_ins_user_event"),)

    id = Column(String(36), primary_key=True)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(64), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    distance_m = Column(Float, nullable=False)
    within_geofence = Column(Boolean, nullable=False)
    visibility_mode = Column(String(10), nullable=False)
    verification_method = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)


class ConnectionProfile(Base):
    """Matching card shown to other attendees of the same event."""

    __tablename__ = "connection_profiles"
    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_connection_profiles_user_event"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    check_in_id = Column(String(36), ForeignKey("check_ins.id", ondelete="SET NULL"), nullable=True)
    display_name = Column(String(100), nullable=False)
    age = Column(Integer, nullable=False)
    bio = Column(Text, nullable=False)
    interests = Column(JSON, nullable=False, default=list)
    photo_url = Column(Text, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
