"""HTTP middleware: CORS plus one request wrapper for auth, logging and errors.

Every request gets a short ``X-Request-ID`` that is bound into the structlog
context, so engine and registry log lines emitted while handling it carry
the same id as the ``http.request`` line.
"""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mindflow.config import Settings, get_settings
from mindflow.errors import InvalidSignalError, UnknownCategoryError

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Keys that leave authentication switched off.
_DISABLED_KEYS = frozenset({"", "change-me-to-a-random-secret"})

_OPEN_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})
_OPEN_PREFIXES = ("/ws/",)


def parse_origins(raw: str) -> list[str]:
    """``"*"`` or a comma-separated origin list → list for ``CORSMiddleware``."""
    raw = raw.strip()
    if raw == "*":
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _presented_key(request: Request) -> str:
    key = request.headers.get("X-API-Key")
    if key:
        return key
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""


def _authorized(request: Request, settings: Settings) -> bool:
    if settings.api_secret_key in _DISABLED_KEYS:
        return True
    path = request.url.path
    if path in _OPEN_PATHS or path.startswith(_OPEN_PREFIXES):
        return True
    return _presented_key(request) == settings.api_secret_key


class RequestMiddleware(BaseHTTPMiddleware):
    """Authenticate, time and log each request; turn escaped errors into JSON.

    Bad signals or categories that slip past route validation become 422,
    anything else 500.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        path = request.url.path
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            if not _authorized(request, get_settings()):
                logger.warning("http.unauthorized", path=path)
                response: Response = JSONResponse(
                    status_code=401, content={"detail": "Invalid or missing API key."}
                )
            else:
                response = await self._call(request, call_next)

            if path != "/health":
                # ingestion is high-frequency
                log = logger.debug if path.endswith("/events") else logger.info
                log(
                    "http.request",
                    method=request.method,
                    path=path,
                    status=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 1),
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @staticmethod
    async def _call(request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except (InvalidSignalError, UnknownCategoryError) as exc:
            logger.warning("http.rejected_signal", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=422, content={"detail": str(exc)})
        except Exception as exc:
            logger.exception("http.unhandled_error", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"detail": "Internal server error."})


def setup_middleware(app: FastAPI) -> None:
    """Install the request wrapper inside CORS, so preflights never need a key."""
    app.add_middleware(RequestMiddleware)
    origins = parse_origins(get_settings().cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # page scripts post events cross-origin
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
