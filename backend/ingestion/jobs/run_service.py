from __future__ import annotations

"""Service entry point: TzKT delegation scraper + read-only API, one process.

Both run as independent tasks on one event loop and share only the database.
SIGINT/SIGTERM set a single stop event:
- the scraper returns at its next loop boundary (in-flight calls complete)
- the API stops accepting connections and lets in-flight requests finish
  within a bounded grace period

Startup failures (configuration, database ping, TzKT client, poll interval,
initial cursor) and any task failure exit non-zero.

Run:
  python backend/ingestion/jobs/run_service.py
"""

import asyncio
import contextlib
import math
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Iterator, Optional

# Ensure `backend/` is on sys.path so `import app...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

import uvicorn  # noqa: E402

from app.core.config import Settings, load_settings  # noqa: E402
from app.core.db import create_db_engine, create_session_factory, ping  # noqa: E402
from app.core.env import load_env_if_present  # noqa: E402
from app.main import create_app  # noqa: E402
from ingestion.core.errors import IngestionError, ScraperCancelled  # noqa: E402
from ingestion.core.scraper import DelegationScraper  # noqa: E402
from ingestion.core.store import PostgresDelegationStore  # noqa: E402
from ingestion.core.tzkt_client import TzktClient  # noqa: E402


logger = logging.getLogger("tezdeleg.ingestion")
logger.setLevel(logging.INFO)

# Ensure logs are visible when run from a container / console.
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    logger.info(json.dumps(event, default=str))


class _ApiServer(uvicorn.Server):
    """uvicorn server whose shutdown is driven by our stop event, not its own signal handling."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def build_api_server(settings: Settings, app) -> _ApiServer:
    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        timeout_graceful_shutdown=math.ceil(settings.grace_period_seconds),
        log_config=None,
        access_log=False,
    )
    return _ApiServer(config)


async def _exit_server_on(stop: asyncio.Event, server: uvicorn.Server) -> None:
    await stop.wait()
    server.should_exit = True


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)


async def serve(settings: Settings, *, stop: Optional[asyncio.Event] = None) -> int:
    stop = stop or asyncio.Event()
    _install_signal_handlers(stop)

    engine = create_db_engine(settings.database_url)
    try:
        await asyncio.to_thread(ping, engine)
    except Exception as e:  # noqa: BLE001
        _log({"event": "startup_failed", "stage": "database", "error_type": type(e).__name__, "error": str(e)})
        engine.dispose()
        return 1

    session_factory = create_session_factory(engine)
    store = PostgresDelegationStore(session_factory)
    server = build_api_server(settings, create_app(session_factory))

    try:
        client = TzktClient(settings.tzkt_base_url)
    except IngestionError as e:
        _log({"event": "startup_failed", "stage": "tzkt_client", "error": str(e)})
        engine.dispose()
        return 1

    scraper = DelegationScraper(client, store)
    exit_code = 0
    async with client:
        scraper_task = asyncio.create_task(scraper.run(settings.scrap_since, stop=stop), name="scraper")
        server_task = asyncio.create_task(server.serve(), name="api")
        stopper = asyncio.create_task(_exit_server_on(stop, server), name="api-stopper")

        await asyncio.wait({scraper_task, server_task}, return_when=asyncio.FIRST_COMPLETED)
        if not stop.is_set():
            # One task ended on its own: take the other one down too.
            exit_code = 1
            stop.set()

        for task in (scraper_task, server_task):
            try:
                await task
            except ScraperCancelled:
                pass
            except Exception as e:  # noqa: BLE001
                exit_code = 1
                _log({"event": "task_failed", "task": task.get_name(), "error_type": type(e).__name__,
                      "error": str(e)})
        stopper.cancel()

    engine.dispose()
    _log({"event": "service_stopped", "exit_code": exit_code})
    return exit_code


def main() -> int:
    env_files = load_env_if_present()
    try:
        settings = load_settings()
    except IngestionError as e:
        _log({"event": "startup_failed", "stage": "config", "error": str(e)})
        return 1

    _log(
        {
            "event": "service_starting",
            "api_addr": f"{settings.api_host}:{settings.api_port}",
            "tzkt_base_url": settings.tzkt_base_url,
            "scrap_since": settings.scrap_since.isoformat() if settings.scrap_since else None,
            "env_files": [str(p) for p in env_files],
        }
    )
    return asyncio.run(serve(settings))


if __name__ == "__main__":
    raise SystemExit(main())
