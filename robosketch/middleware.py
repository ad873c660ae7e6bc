"""
Request middleware — tracing, timing, concurrency limiting.

Adds X-Request-Id and X-Duration-Ms response headers.
Caps concurrent project generations; each one fans out into several
text and image model calls.
"""
import asyncio
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from robosketch.metrics import PipelineMetrics

GENERATION_PATHS = frozenset({"/projects", "/projects/stream"})


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Adds request ID and duration to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        t0 = time.monotonic()
        response = await call_next(request)
        duration_ms = int((time.monotonic() - t0) * 1000)
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Duration-Ms"] = str(duration_ms)
        return response


class ConcurrencyLimitMiddleware:
    """Rejects generation requests beyond max_concurrent with 429.

    A slot is held until the app has sent the whole body, so an SSE build
    keeps it for as long as its pipeline runs.
    """

    def __init__(self, app: ASGIApp, max_concurrent: int = 2,
                 build_paths: frozenset[str] | None = None, retry_after_s: int = 30):
        self.app = app
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.build_paths = build_paths or GENERATION_PATHS
        self.retry_after_s = retry_after_s

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (scope["type"] != "http" or scope["method"] != "POST"
                or scope["path"] not in self.build_paths):
            await self.app(scope, receive, send)
            return

        if self.semaphore.locked():
            PipelineMetrics().record_rejection()
            response = JSONResponse(
                status_code=429,
                content={"success": False,
                         "error": "Too many projects generating right now. Try again shortly."},
                headers={"Retry-After": str(self.retry_after_s)},
            )
            await response(scope, receive, send)
            return

        async with self.semaphore:
            await self.app(scope, receive, send)
