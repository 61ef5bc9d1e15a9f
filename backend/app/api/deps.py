"""API dependencies (read-only).

Centralizes database session scope and repository construction so that
request paths never see a writable unit of work.
"""

from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.db import get_session_factory
from app.repositories.delegation_repo import DelegationRepository


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """Provide a database session for request scope (read-only discipline).

    Uses the factory attached to the app by the service entry point, else the
    process-wide one built from the environment.
    """
    factory = getattr(request.app.state, "session_factory", None) or get_session_factory()
    session: Session = factory()
    try:
        # Hard disable autoflush to reduce accidental writes on relationship access.
        session.autoflush = False
        yield session
    finally:
        session.close()


def get_delegation_repository(db: Session = Depends(get_db_session)) -> DelegationRepository:
    return DelegationRepository(db)
