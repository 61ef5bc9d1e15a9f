"""
Delegation scraper: incremental ingestion of TzKT delegations.

The scraper owns a single cursor (watermark): "fetch delegations at or after
this instant". It is never persisted on its own; on start it is recomputed
from the stored delegations (or taken from an explicit override).

Cursor rules:
- a failed cycle (fetch or append) never moves the cursor, so the same window
  is requested again on the next tick and no delegation is skipped
- an empty cycle moves the cursor to "now"
- a successful cycle moves it to max(block_timestamp) + 1s

Re-fetching an overlapping window is safe only because the store's append is
idempotent per operation id.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Sequence

from ingestion.core.contracts import DelegationRecord, DelegationSource, DelegationStore, RawDelegation
from ingestion.core.errors import FetchError, IngestionError, InsertError, ScraperCancelled


UTC = timezone.utc
logger = logging.getLogger(__name__)

# TzKT timestamps have one-second granularity.
TIMESTAMP_RESOLUTION = timedelta(seconds=1)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _log(event: dict) -> None:
    logger.info(json.dumps(event, default=str))


def normalize_delegation(raw: RawDelegation) -> DelegationRecord:
    return DelegationRecord(
        operation_id=raw.id,
        block_timestamp=raw.timestamp.astimezone(UTC),
        block_hash=raw.block,
        sender=raw.sender.address,
        level=raw.level,
        amount=raw.amount,
    )


def normalize_delegations(raws: Iterable[RawDelegation]) -> list[DelegationRecord]:
    """Field-for-field mapping; nothing dropped, order preserved."""
    return [normalize_delegation(r) for r in raws]


def latest_block_timestamp(records: Sequence[DelegationRecord]) -> datetime:
    """Most recent block timestamp of a non-empty batch.

    Records arrive sorted by operation id, not by timestamp, so the maximum is
    computed over the whole batch rather than read from the last element.
    """
    if not records:
        raise ValueError("empty batch has no latest block timestamp")
    return max(r.block_timestamp for r in records)


class DelegationScraper:
    """Polls a `DelegationSource` and appends into a `DelegationStore`.

    Single sequential loop: one cycle at a time, no concurrent ticks. The
    cursor is local to the instance and only mutated by `run`.
    """

    def __init__(
        self,
        source: DelegationSource,
        store: DelegationStore,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.source = source
        self.store = store
        self._clock = clock or _utcnow
        self._cursor: Optional[datetime] = None

    @property
    def cursor(self) -> Optional[datetime]:
        return self._cursor

    async def run(self, since: Optional[datetime] = None, *, stop: asyncio.Event) -> None:
        """Scrape periodically until `stop` is set.

        Fetches the poll interval first, then the starting cursor (`since`
        overrides the one derived from storage, mostly for operators and
        tests). Failures in either step propagate: they are fatal.
        Afterwards only cancellation ends the loop, signalled by raising
        `ScraperCancelled`. Cycle failures are logged and retried on the next
        tick with the cursor untouched.
        """
        interval = await self.source.poll_interval()
        self._cursor = since.astimezone(UTC) if since is not None else await self._starting_cursor()

        _log(
            {
                "event": "scraper_started",
                "interval_seconds": interval.total_seconds(),
                "cursor": self._cursor.isoformat(),
                "override": since is not None,
            }
        )

        loop = asyncio.get_running_loop()
        period = interval.total_seconds()
        next_tick = loop.time() + period
        while True:
            if stop.is_set():
                raise ScraperCancelled("stop requested")
            try:
                await asyncio.wait_for(stop.wait(), timeout=max(0.0, next_tick - loop.time()))
            except asyncio.TimeoutError:
                pass
            else:
                raise ScraperCancelled("stop requested")

            # Fixed cadence; a cycle that overruns its period delays only the next tick.
            next_tick = max(next_tick + period, loop.time())

            try:
                self._cursor = await self.scrape_once(self._cursor)
            except IngestionError as e:
                _log(
                    {
                        "event": "scrape_cycle_failed",
                        "cursor": self._cursor.isoformat(),
                        "error_type": type(e).__name__,
                        "error": str(e),
                    }
                )

    async def scrape_once(self, cursor: datetime) -> datetime:
        """Run one cycle starting at `cursor` and return the next cursor.

        Raises FetchError or InsertError without side effects on the cursor;
        the caller keeps the value it passed in.
        """
        try:
            raws = await self.source.delegations_since(cursor)
        except FetchError:
            raise
        except Exception as e:  # noqa: BLE001
            raise FetchError(f"{type(e).__name__}: {e}") from e

        if not raws:
            # Nothing new at the source as of now.
            next_cursor = self._clock()
            _log({"event": "scrape_cycle", "watermark": cursor.isoformat(), "fetched_count": 0,
                  "inserted_count": 0, "next_cursor": next_cursor.isoformat()})
            return next_cursor

        records = normalize_delegations(raws)
        latest = latest_block_timestamp(records)

        try:
            inserted = await self.store.append(records)
        except InsertError:
            raise
        except Exception as e:  # noqa: BLE001
            raise InsertError(f"{type(e).__name__}: {e}") from e

        next_cursor = latest + TIMESTAMP_RESOLUTION
        _log(
            {
                "event": "scrape_cycle",
                "watermark": cursor.isoformat(),
                "fetched_count": len(records),
                "inserted_count": inserted,
                "deduplicated_count": len(records) - inserted,
                "next_cursor": next_cursor.isoformat(),
            }
        )
        return next_cursor

    async def _starting_cursor(self) -> datetime:
        """Latest stored block timestamp + 1s, or now when storage is empty.

        The extra second skips delegations sharing the latest stored
        timestamp; they would be deduplicated anyway.
        """
        latest = await self.store.latest_timestamp()
        if latest is None:
            return self._clock()
        return latest.astimezone(UTC) + TIMESTAMP_RESOLUTION
