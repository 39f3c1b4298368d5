"""
Engine, session factory and declarative base.

One session per request, handed out by `get_db`. Services own their unit of
work: a review write and the book-rating recompute it triggers are flushed
into the same session and committed together by services/reviews.py.
"""

from collections.abc import Generator

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from bookreview.config import get_settings

settings = get_settings()

# Deterministic constraint names so Alembic migrations can refer to them
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _engine_options(url: str) -> dict:
    if make_url(url).get_backend_name() == "sqlite":
        # Local development only; SQLite has no server-side pool to size
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url),
)

# Services flush explicitly before the aggregate query reads reviews back
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    """Declarative base; Alembic autogenerate reads Base.metadata."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is closed after the response."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
