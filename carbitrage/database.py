"""
Database engine + session factory.

SQLite for local dev and tests, Postgres in production. Lock and cursor
columns are compared against utcnow(), so every timestamp is naive UTC.
"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from carbitrage.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def normalize_url(raw):
    """Hosted Postgres URLs use postgres:// but SQLAlchemy 2.x requires postgresql://"""
    return raw.replace('postgres://', 'postgresql://', 1)


def engine_options(url):
    if url.startswith('sqlite'):
        # Flask dev server and the RQ worker share one file across threads
        return {'connect_args': {'check_same_thread': False, 'timeout': 30}}
    return {'pool_pre_ping': True, 'pool_size': 5, 'max_overflow': 10}


url = normalize_url(DATABASE_URL)
engine = create_engine(url, **engine_options(url))

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


def utcnow():
    """Naive UTC timestamp."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
