from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator, Optional, Sequence

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/` packages are importable as top-level `app` / `ingestion` for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.env import load_env_if_present  # noqa: E402
from ingestion.core.contracts import DelegationRecord, RawDelegation, RawSender  # noqa: E402


UTC = timezone.utc


def _db_url() -> str | None:
    load_env_if_present()
    return os.environ.get("DATABASE_URL")


def _alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "backend" / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "backend" / "alembic"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


@pytest.fixture(scope="session")
def engine() -> Engine:
    url = _db_url()
    if not url:
        pytest.skip("DATABASE_URL not set; skipping DB integration tests.")
    return create_engine(url, future=True)


@pytest.fixture(scope="session")
def migrated_engine(engine: Engine) -> Engine:
    """Engine with the schema upgraded to head once per test session."""
    url = _db_url()
    assert url is not None
    command.upgrade(_alembic_config(url), "head")
    return engine


@pytest.fixture()
def session_factory(migrated_engine: Engine) -> Generator[sessionmaker[Session], None, None]:
    """Session factory over an emptied delegation table (the store commits)."""
    with migrated_engine.begin() as conn:
        conn.execute(text("TRUNCATE delegation"))
    yield sessionmaker(bind=migrated_engine, class_=Session, autoflush=False, autocommit=False)
    with migrated_engine.begin() as conn:
        conn.execute(text("TRUNCATE delegation"))


# ---------------------------------------------------------------------------
# In-memory doubles of the scraper's capability contracts.
# ---------------------------------------------------------------------------


def make_raw_delegation(op_id: int, ts: datetime, *, block: str, sender: str, level: int, amount: int) -> RawDelegation:
    return RawDelegation(id=op_id, timestamp=ts, block=block, sender=RawSender(address=sender), level=level, amount=amount)


def make_record(op_id: int, ts: datetime, *, amount: int = 1000, level: int = 100) -> DelegationRecord:
    return DelegationRecord(
        operation_id=op_id,
        block_timestamp=ts,
        block_hash=f"hash{op_id}",
        sender=f"tz1sender{op_id}",
        level=level,
        amount=amount,
    )


class FakeSource:
    def __init__(
        self,
        *,
        interval: timedelta = timedelta(milliseconds=200),
        delegations: Sequence[RawDelegation] = (),
        error: Optional[Exception] = None,
        interval_error: Optional[Exception] = None,
    ) -> None:
        self.interval = interval
        self.delegations = list(delegations)
        self.error = error
        self.interval_error = interval_error
        self.interval_calls = 0
        self.watermarks: list[datetime] = []

    async def poll_interval(self) -> timedelta:
        self.interval_calls += 1
        if self.interval_error is not None:
            raise self.interval_error
        return self.interval

    async def delegations_since(self, watermark: datetime) -> list[RawDelegation]:
        self.watermarks.append(watermark)
        if self.error is not None:
            raise self.error
        return list(self.delegations)


class FakeStore:
    """Idempotent per operation_id, like the PostgreSQL store."""

    def __init__(
        self,
        *,
        latest: Optional[datetime] = None,
        latest_error: Optional[Exception] = None,
        append_error: Optional[Exception] = None,
    ) -> None:
        self.latest = latest
        self.latest_error = latest_error
        self.append_error = append_error
        self.latest_calls = 0
        self.appended: list[list[DelegationRecord]] = []
        self.rows: dict[int, DelegationRecord] = {}

    async def append(self, batch: Sequence[DelegationRecord]) -> int:
        self.appended.append(list(batch))
        if self.append_error is not None:
            raise self.append_error
        inserted = 0
        for r in batch:
            if r.operation_id not in self.rows:
                self.rows[r.operation_id] = r
                inserted += 1
        return inserted

    async def latest_timestamp(self) -> Optional[datetime]:
        self.latest_calls += 1
        if self.latest_error is not None:
            raise self.latest_error
        return self.latest


