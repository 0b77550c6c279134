"""
Database engine and session management (sync SQLAlchemy).

The URL store opens one short-lived session per operation from
``SessionLocal`` so every store call commits or rolls back on its own.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from shortlinks_app.config import settings


def build_engine(database_url: str):
    """
    Create an engine for the given URL.

    SQLite needs ``check_same_thread=False`` because FastAPI may run sync
    work on a threadpool; in-memory SQLite also needs a single shared
    connection or every session would see an empty database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind=None) -> None:
    """Create all tables (no migrations in this service)"""
    # Import models so they're registered with Base
    from shortlinks_app.models import ShortUrl  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
