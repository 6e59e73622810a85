from __future__ import annotations

import uuid
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection

from memlog.config import get_settings
from memlog.observability.metrics import get_metrics
from memlog.services.auth_service import peek_session
from memlog.storage.event_log import EventLogStore, get_event_log
from memlog.telemetry.memory import MemoryWindow, get_memory_source
from memlog.telemetry.sampler import CaptureContext, capture


class RequestContextMiddleware:
    """Adds request_id context, access logs, and basic HTTP metrics."""

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app
        self._excluded_metric_paths = {"/api/metrics"}

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        path = scope.get("path")
        method = scope.get("method")

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=path,
            method=method,
        )

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            elapsed_ms = (perf_counter() - start) * 1000.0

            if path not in self._excluded_metric_paths:
                get_metrics().observe_http_request(elapsed_ms=elapsed_ms)

            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(elapsed_ms, 2),
            )

            structlog.contextvars.clear_contextvars()


def active_plugins(app: Any) -> list[str]:
    """Router tags registered on the app, sorted. Cached on ``app.state``."""

    state = getattr(app, "state", None)
    cached = getattr(state, "active_plugins", None) if state is not None else None
    if cached is not None:
        return list(cached)

    tags: set[str] = set()
    for route in getattr(app, "routes", []):
        tags.update(str(t) for t in (getattr(route, "tags", None) or []))
    plugins = sorted(tags)

    if state is not None:
        state.active_plugins = plugins
    return list(plugins)


class MemoryCaptureMiddleware:
    """Writes one memory record per HTTP request once the response has been sent.

    Which requests are captured follows ``CAPTURE_MODE``: ``admin`` only records
    requests from an admin session, ``all`` records everything, ``off`` nothing.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        store_provider: Callable[[], EventLogStore] = get_event_log,
    ) -> None:
        self.app = app
        self._store_provider = store_provider

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        window: MemoryWindow | None = None
        try:
            window = get_memory_source().window()
        except Exception:  # noqa: BLE001 - telemetry must never break the request
            structlog.get_logger("memory_capture").exception("memory_capture.window_failed")

        try:
            await self.app(scope, receive, send)
        finally:
            try:
                context = self._context_for(scope, window) if window is not None else None
                if context is not None:
                    await run_in_threadpool(self._record, context)
            except Exception:  # noqa: BLE001 - telemetry must never break the request
                structlog.get_logger("memory_capture").exception("memory_capture.failed")

    def _context_for(self, scope: dict[str, Any], window: MemoryWindow) -> CaptureContext | None:
        settings = get_settings()
        if settings.capture_mode == "off" or scope.get("path") in settings.excluded_capture_paths:
            return None

        conn = HTTPConnection(scope)
        claims = peek_session(conn.cookies.get(settings.jwt_cookie_name))
        if settings.capture_mode == "admin" and not (claims and claims.get("adm")):
            return None

        uri = conn.url.path
        if conn.url.query:
            uri = f"{uri}?{conn.url.query}"

        return CaptureContext(
            uri=uri or None,
            user=(claims or {}).get("email"),
            memory_limit=settings.memory_limit,
            usage_bytes=window.usage_bytes(),
            peak_bytes=window.peak_bytes(),
            method=scope.get("method"),
            is_async=conn.headers.get("x-requested-with", "").lower() == "xmlhttprequest",
            referrer=conn.headers.get("referer"),
            active_plugins=active_plugins(scope.get("app")),
        )

    def _record(self, context: CaptureContext) -> None:
        get_metrics().observe_capture()
        self._store_provider().append(capture(context))

