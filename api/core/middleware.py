"""ASGI middleware: new-site redirection and analytics tee.

Pure ASGI middleware; the decision functions are injected at construction
time so tests can substitute them.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta
from re import Pattern

from fastapi.responses import RedirectResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from schemas import RedirectDecision, RequestAttrs
from services.collector_service import maybe_tee
from services.redirect_service import consent_cookie_headers, resolve
from services.robots import is_robot

logger = logging.getLogger(__name__)


class PkgGoDevRedirectMiddleware:
    """Send opted-in visitors to the equivalent page on the new site (302).

    Registered as the outermost middleware so redirected requests skip the
    tee and the legacy upstream entirely.  Any consent cookie update is
    attached to whichever response goes out, redirect or pass-through.

    Args:
        app: The next ASGI application in the middleware stack.
        resolver: A callable ``(RequestAttrs) -> RedirectDecision``.
        exempt_urls: Regex patterns for paths that are never redirected
            (health checks, operational endpoints).
    """

    def __init__(
        self,
        app: ASGIApp,
        resolver: Callable[[RequestAttrs], RedirectDecision] | None = None,
        *,
        exempt_urls: list[Pattern[str]] | None = None,
    ) -> None:
        self.app = app
        self._resolve = resolver or resolve
        self.exempt_urls = exempt_urls or []

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path: str = scope["path"]
        if any(pattern.match(path) for pattern in self.exempt_urls):
            await self.app(scope, receive, send)
            return

        attrs = RequestAttrs.from_scope(scope)
        try:
            decision = self._resolve(attrs)
        except Exception:
            logger.exception("redirect.resolve_error", extra={"path": path})
            decision = RedirectDecision(redirect=False)

        cookie_headers = consent_cookie_headers(decision.cookie)

        if decision.redirect and decision.destination is not None:
            logger.info(
                "redirect.issued",
                extra={
                    "from_path": path,
                    "to_url": decision.destination,
                    "cookie": decision.cookie.value,
                    "status_code": 302,
                },
            )
            response = RedirectResponse(url=decision.destination, status_code=302)
            response.raw_headers.extend(cookie_headers)
            await response(scope, receive, send)
            return

        if not cookie_headers:
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers: list[tuple[bytes, bytes]] = list(message.get("headers", []))
                headers.extend(cookie_headers)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


class TeeMiddleware:
    """Mirror request metadata to the analytics collector after the response.

    Times the request, captures the response status, and once the final
    body chunk has been sent hands the request to ``tee``, which decides
    whether to schedule a fire-and-forget send.  Tee failures are logged and
    never affect the response.

    Args:
        app: The next ASGI application in the middleware stack.
        tee: A callable ``(attrs, latency, is_robot, status) -> bool``.
    """

    def __init__(
        self,
        app: ASGIApp,
        tee: Callable[[RequestAttrs, timedelta, bool, int], bool] | None = None,
    ) -> None:
        self.app = app
        self._tee = tee or maybe_tee

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        response_status: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal response_status

            if message.get("type") == "http.response.start":
                response_status = int(message.get("status", 0))

            await send(message)

            if (
                message.get("type") == "http.response.body"
                and not message.get("more_body", False)
                and response_status is not None
            ):
                latency = timedelta(seconds=time.perf_counter() - start_time)
                self._dispatch(scope, latency, response_status)

        await self.app(scope, receive, send_wrapper)

    def _dispatch(self, scope: Scope, latency: timedelta, status: int) -> None:
        path = scope.get("path", "")
        try:
            attrs = RequestAttrs.from_scope(scope)
            self._tee(attrs, latency, is_robot(attrs), status)
        except Exception:
            logger.exception("tee.dispatch_error", extra={"path": path})
