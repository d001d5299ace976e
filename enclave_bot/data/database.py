from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..app.config import Config

# Create a base class for our models
Base = declarative_base()


def make_engine(url: str = None):
    """Create the SQLAlchemy engine; an in-memory SQLite URL shares one connection."""
    url = url or Config.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url)


def make_session_factory(engine):
    """Create a configured "Session" class bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def create_tables(engine):
    """Create all tables in the database."""
    # Import all models here before calling create_all
    # This ensures they are registered with the Base metadata
    from .models import Announcement, Member, Poll, PollResponse  # noqa: F401
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    create_tables(make_engine())
    print("Database tables created successfully.")
