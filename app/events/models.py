"""SQLAlchemy models for events."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float
from sqlalchemy.sql import func
from db import Base


class Event(Base):
    """Event lifecycle and geofence; owned by the event-management side."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False, default="")
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    geofence_radius_m = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    access_code = Column(String(12), unique=True, nullable=True, index=True)
    attendees_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
