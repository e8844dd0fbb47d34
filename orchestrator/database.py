"""
Database engine + session factory.

Defaults to SQLite for local dev, Postgres in production.
Sessions keep loaded rows usable after commit so the store can hand
detached records to callers.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from orchestrator.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


def make_engine(database_url):
    """Build an engine with the right kwargs for SQLite vs Postgres."""
    # Railway-style URLs use postgres:// but SQLAlchemy 2.x requires postgresql://
    url = database_url.replace('postgres://', 'postgresql://', 1)
    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False})
    return create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)


def make_session_factory(bind):
    return sessionmaker(bind=bind, expire_on_commit=False)


engine = make_engine(DATABASE_URL)

SessionLocal = make_session_factory(engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


def init_db(bind=None):
    """Create all tables (local dev / tests). Production uses Alembic."""
    import orchestrator.models  # noqa: F401  (registers tables on Base.metadata)
    Base.metadata.create_all(bind or engine)
