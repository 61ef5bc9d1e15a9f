"""
TzKT API client.

Async `httpx` client over the two public TzKT endpoints the scraper needs:
- `/v1/protocols/current` for the `timeBetweenBlocks` constant (poll cadence)
- `/v1/operations/delegations` for delegation operations since a watermark

Every transport, HTTP-status or payload problem is reported as a
`FetchError` so the scheduler can treat it as a recoverable cycle failure.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ingestion.core.contracts import RawDelegation
from ingestion.core.errors import ConfigError, FetchError


UTC = timezone.utc
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
# TzKT answers 100 items when no limit is sent and refuses more than 10000.
DEFAULT_PAGE_SIZE = 1000
MAX_PAGE_SIZE = 10000

PROTOCOL_PATH = "v1/protocols/current"
DELEGATIONS_PATH = "v1/operations/delegations"
# Exactly the fields the storage mapping needs.
DELEGATION_FIELDS = "id,sender,amount,level,timestamp,block"


class _ProtocolConstants(BaseModel):
    model_config = ConfigDict(extra="ignore")

    time_between_blocks: int = Field(alias="timeBetweenBlocks")


class _Protocol(BaseModel):
    model_config = ConfigDict(extra="ignore")

    constants: _ProtocolConstants


_DELEGATIONS = TypeAdapter(list[RawDelegation])


def format_watermark(ts: datetime) -> str:
    """RFC3339, UTC, second precision (TzKT truncates timestamps to the second)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class TzktClient:
    """Basic TzKT API client.

    Owns its `httpx.AsyncClient` unless one is injected (tests pass a client
    built on `httpx.MockTransport`).
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        parts = urlsplit(base_url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigError(f"TzKT base URL must be an absolute http(s) URL, got {base_url!r}.")
        if not 0 < page_size <= MAX_PAGE_SIZE:
            raise ConfigError(f"TzKT page size must be in 1..{MAX_PAGE_SIZE}, got {page_size}.")
        if not base_url.endswith("/"):
            base_url += "/"

        self.protocol_url = base_url + PROTOCOL_PATH
        self.delegations_url = base_url + DELEGATIONS_PATH
        self.page_size = page_size
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "TzktClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, url: str, params: Optional[dict[str, str]] = None) -> object:
        logger.debug("GET %s params=%s", url, params)
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as e:
            raise FetchError(f"GET {url} failed: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise FetchError(f"GET {url}: bad HTTP status {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"GET {url}: response is not JSON") from e

    async def poll_interval(self) -> timedelta:
        """Return the current protocol's `timeBetweenBlocks` constant."""
        payload = await self._get_json(self.protocol_url)
        try:
            proto = _Protocol.model_validate(payload)
        except ValidationError as e:
            raise FetchError(f"unexpected protocol payload: {e.error_count()} error(s)") from e

        seconds = proto.constants.time_between_blocks
        if seconds <= 0:
            raise FetchError(f"invalid timeBetweenBlocks: {seconds}")
        return timedelta(seconds=seconds)

    async def delegations_since(self, watermark: datetime) -> list[RawDelegation]:
        """Return delegations with timestamp >= watermark, sorted by ascending id.

        TzKT cannot sort by timestamp; the id is a reliable increment, so the
        caller must not assume the result is ordered by timestamp. Pages of
        `page_size` items are requested with `id.gt` set to the last id seen
        until a short page comes back.
        """
        params = {
            "select": DELEGATION_FIELDS,
            "sort.asc": "id",
            "timestamp.ge": format_watermark(watermark),
            "limit": str(self.page_size),
        }
        delegations: list[RawDelegation] = []
        while True:
            payload = await self._get_json(self.delegations_url, params=params)
            try:
                page = _DELEGATIONS.validate_python(payload)
            except ValidationError as e:
                raise FetchError(f"unexpected delegations payload: {e.error_count()} error(s)") from e

            delegations.extend(page)
            if len(page) < self.page_size:
                return delegations
            params["id.gt"] = str(page[-1].id)
