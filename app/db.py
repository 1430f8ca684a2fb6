"""Database engine, session factory and declarative base."""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from settings import settings

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None) -> None:
    """Create all tables known to the models."""
    # models register themselves on Base.metadata when imported
    import events.models  # noqa: F401
    import checkins.models  # noqa: F401
    import swipes.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
