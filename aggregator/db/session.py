"""Engine and session factory for the job store.

The database URL comes from AGG_DATABASE_URL, then DATABASE_URL, then a
local SQLite file. Bare `postgres://` / `postgresql://` URLs are pointed at
the psycopg 3 driver (install the `postgres` extra).

AGG_DB_POOL_SIZE / AGG_DB_MAX_OVERFLOW size the pool for server databases;
AGG_DB_ECHO=1 logs every statement.
"""
from __future__ import annotations

from contextlib import contextmanager
import os
from typing import Iterator

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

load_dotenv(dotenv_path=os.getenv("AGG_DOTENV", ".env"))

DEFAULT_URL = "sqlite:///./aggregator.db"
PG_DRIVER = "postgresql+psycopg"


def database_url() -> str:
    raw = os.getenv("AGG_DATABASE_URL") or os.getenv("DATABASE_URL") or DEFAULT_URL
    scheme, sep, rest = raw.partition("://")
    if scheme in ("postgres", "postgresql"):
        return f"{PG_DRIVER}{sep}{rest}"
    return raw


def make_engine(url: str | None = None) -> Engine:
    url = url or database_url()
    echo = os.getenv("AGG_DB_ECHO", "0") == "1"
    if make_url(url).get_backend_name() == "sqlite":
        # runs write from the coordinator's thread, reads from request threads
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=int(os.getenv("AGG_DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("AGG_DB_MAX_OVERFLOW", "10")),
    )


ENGINE: Engine = make_engine()
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, expire_on_commit=False)


@contextmanager
def get_session() -> Iterator[Session]:
    """Yield a session that is always closed; callers commit explicitly."""
    with SessionLocal() as session:
        yield session


def current_engine_url() -> str:
    """Engine URL with the password masked, for logs."""
    return ENGINE.url.render_as_string(hide_password=True)


def ping() -> bool:
    try:
        with ENGINE.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True
