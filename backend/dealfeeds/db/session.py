"""Async database engine configuration."""

from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from dealfeeds.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL.

    SQLite file databases get their parent directory created first; the
    in-memory SQLite database is pinned to a single connection so every
    partition lives in the same database.
    """
    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    # SQLite doesn't support pool_size / max_overflow / pool_pre_ping
    engine_kwargs: dict = {"echo": echo}
    if is_sqlite:
        database = url.database or ""
        if database in ("", ":memory:"):
            engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        else:
            Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    else:
        engine_kwargs.update(pool_size=20, max_overflow=10, pool_pre_ping=True)

    return create_async_engine(database_url, **engine_kwargs)


_engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine built from settings."""
    global _engine

    if _engine is None:
        _engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

    return _engine
