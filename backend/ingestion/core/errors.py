from __future__ import annotations

"""Controlled ingestion errors.

Failure policy:
- Startup errors (configuration, poll interval, initial cursor) abort the
  process: without a cadence or a cursor no partial operation is safe.
- Per-cycle errors (fetch, insert) are signals for logging and retry. The
  scheduler catches them, keeps its cursor, and tries again on the next tick.
"""


class IngestionError(RuntimeError):
    """Base error for ingestion."""


class ConfigError(IngestionError):
    """Raised when the service configuration is missing or malformed."""


class FetchError(IngestionError):
    """Raised when a remote fetch fails (network, HTTP status, parse)."""


class InsertError(IngestionError):
    """Raised when a batch cannot be appended to storage."""


class ScraperCancelled(IngestionError):
    """Raised by the scheduler when its stop signal was observed."""
