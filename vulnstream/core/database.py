"""SQLite engine and session management for the embedded store."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from vulnstream.core.config import settings


def _is_memory_url(url: str) -> bool:
    """True for SQLite URLs that name no file (private in-memory database)."""
    return url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:") or ":memory:" in url


def create_embedded_engine(url: str | None = None) -> Engine:
    """
    Build an engine for the embedded store.

    In-memory databases share a single connection (StaticPool) so every thread
    sees the same data; file databases use the default pool.
    """
    url = url or settings.EMBEDDED_DATABASE_URL
    kwargs: dict = {
        "echo": settings.DEBUG,
        "connect_args": {"check_same_thread": False},
    }
    if _is_memory_url(url):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to engine; sessions do not expire rows on commit."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
