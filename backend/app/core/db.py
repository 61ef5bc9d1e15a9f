"""Database configuration (PostgreSQL only).

Provides the SQLAlchemy 2.0 engine and session factory shared by the
ingestion store, the read API and Alembic migrations. Both are built lazily
so that importing the application never requires a reachable database.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import build_database_url
from app.core.env import load_env_if_present


def get_database_url() -> str:
    load_env_if_present()
    return build_database_url(os.environ)


def create_db_engine(url: Optional[str] = None) -> Engine:
    return create_engine(
        url or get_database_url(),
        pool_pre_ping=True,
        future=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)


def ping(engine: Engine) -> None:
    """Fail fast when the database is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return create_session_factory(get_engine())
