"""FastAPI application (read-only delegations API).

Operational goals:
- Deterministic, low-noise responses
- Request-id propagation and structured access logs
- Safe failure modes: errors are logged, never echoed to clients
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.router import router as api_router
import app.models as _models  # noqa: F401  (register all ORM models deterministically)


logger = logging.getLogger("tezdeleg")
# Access logs are emitted by default.
logger.setLevel(logging.INFO)


def create_app(session_factory: Optional[sessionmaker[Session]] = None) -> FastAPI:
    app = FastAPI(
        title="Tezos Delegations API",
        version="1.0.0",
        openapi_url="/openapi.json",
        docs_url=None,
        redoc_url=None,
        description="Read-only access to Tezos delegation operations scraped from TzKT.",
    )

    app.state.session_factory = session_factory
    app.include_router(api_router)

    @app.exception_handler(StarletteHTTPException)
    async def bare_method_not_allowed(request: Request, exc: StarletteHTTPException) -> Response:
        # Methods no route declares are rejected by the router before any endpoint runs.
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            return Response(status_code=exc.status_code, headers=exc.headers)
        return await http_exception_handler(request, exc)

    @app.middleware("http")
    async def request_id_and_access_log(request: Request, call_next: Callable):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.time()
        try:
            response = await call_next(request)
        except Exception:  # noqa: BLE001
            logger.exception("Unhandled error", extra={"request_id": request_id})
            return Response(status_code=500, headers={"x-request-id": request_id})

        duration_ms = int((time.time() - start) * 1000)
        response.headers["x-request-id"] = request_id

        logger.info(
            json.dumps(
                {
                    "event": "access",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": getattr(response, "status_code", None),
                    "duration_ms": duration_ms,
                }
            )
        )
        return response

    return app


app = create_app()
