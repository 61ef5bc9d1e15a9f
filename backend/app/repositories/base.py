"""Read-only repository base.

Repositories are the only layer of the API permitted to query the database,
and only with SELECT statements: the ingestion store is the single writer of
the delegation table. Queries go through a sync `Session` in a worker thread
so the event loop that also drives the scraper never blocks on I/O.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from sqlalchemy.engine import Result
from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable
from sqlalchemy.sql.dml import UpdateBase
from sqlalchemy.sql.selectable import Select


class RepositoryReadOnlyViolation(RuntimeError):
    """Raised when a repository detects a write or mutation attempt."""


class BaseRepository:
    """Guarded SELECT execution over one request-scoped session.

    The statement is checked before any I/O, and the session must hold no
    pending objects before and after the query.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _assert_clean_uow(self) -> None:
        s = self._session
        if s.new or s.dirty or s.deleted:
            raise RepositoryReadOnlyViolation(
                "Repository layer is read-only: session has pending changes "
                f"(new={len(s.new)}, dirty={len(s.dirty)}, deleted={len(s.deleted)})."
            )

    @staticmethod
    def _assert_select_only(stmt: Executable) -> None:
        if isinstance(stmt, UpdateBase):
            raise RepositoryReadOnlyViolation("Repository layer is read-only: DML is forbidden.")
        if not isinstance(stmt, Select):
            raise RepositoryReadOnlyViolation(
                f"Repository layer is read-only: only SELECT statements are allowed (got {type(stmt)!r})."
            )

    async def _execute(self, stmt: Executable, *, params: Optional[dict[str, Any]] = None) -> Result[Any]:
        self._assert_select_only(stmt)
        self._assert_clean_uow()
        result = await asyncio.to_thread(self._session.execute, stmt, params or {})
        self._assert_clean_uow()
        return result
