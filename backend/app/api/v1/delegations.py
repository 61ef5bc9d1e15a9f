"""Tezos delegations endpoint (read-only).

Rejections carry no body: 405 for any method but GET, 400 for a malformed
`year`. Storage failures are logged and answered with a bare 500; error
detail never reaches the client.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_delegation_repository
from app.repositories.delegation_repo import DelegationRepository
from app.schemas.delegation import DelegationItem, DelegationsResponse


logger = logging.getLogger(__name__)

_YEAR_RE = re.compile(r"[0-9]{4}")

router = APIRouter()


def parse_year(value: Optional[str]) -> Optional[int]:
    """Return the year filter, None when absent; raise ValueError unless YYYY."""
    if value is None or value == "":
        return None
    if not _YEAR_RE.fullmatch(value):
        raise ValueError(f"year must be exactly four digits, got {value!r}")
    return int(value)


@router.api_route(
    "/delegations",
    methods=["POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
async def reject_non_get() -> Response:
    return Response(status_code=status.HTTP_405_METHOD_NOT_ALLOWED)


@router.get("/delegations", response_model=DelegationsResponse)
async def list_delegations(
    year: Optional[str] = Query(None, description="Filter on block year, YYYY"),
    repo: DelegationRepository = Depends(get_delegation_repository),
):
    """List delegations, most recent block first, optionally for one year."""
    try:
        year_filter = parse_year(year)
    except ValueError:
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    try:
        records = await repo.list_delegations(year_filter)
    except Exception:  # noqa: BLE001
        logger.exception("delegations query failed")
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return DelegationsResponse(data=[DelegationItem.from_record(r) for r in records])
