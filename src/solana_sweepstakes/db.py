from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Resolve 'sqlite:///./relative/path' to an absolute sqlite:/// URL.

    Keeps other URL forms unchanged.
    """
    prefix = "sqlite:///./"
    if not url.startswith(prefix):
        return url
    rel = url[len(prefix) :]
    return f"sqlite:///{(project_root / rel).resolve()}"


def make_engine(database_url: str, echo: bool = False) -> Engine:
    # Relative paths are taken from the working directory.
    url = resolve_sqlite_url(database_url, Path.cwd())
    kwargs = {}
    if url.startswith("sqlite"):
        # The poll timer and the round timer run on different threads.
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=echo, future=True, pool_pre_ping=True, **kwargs)


def get_sessionmaker(engine: Engine):
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Keep rows readable after commit; they travel between components
        future=True,
    )


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO 8601 string in UTC, or return None.

    Naive values are taken to be UTC, which is how every timestamp is stored.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()
