"""Unit tests for core.middleware module.

Tests ASGI middleware:
- PkgGoDevRedirectMiddleware issues 302s, attaches consent cookies,
  honours exempt URLs and survives resolver failures
- TeeMiddleware hands finished requests to the tee with status and latency
- Both skip non-HTTP scopes
"""

import re
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from core.middleware import PkgGoDevRedirectMiddleware, TeeMiddleware
from schemas import CookieAction, RedirectDecision
from tests.factories import make_scope


async def _noop_receive():
    return {"type": "http.request", "body": b""}


async def _make_app_that_sends_response(scope, receive, send):
    """Simulate an ASGI app that sends a response."""
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b"OK"})


class _Recorder:
    def __init__(self) -> None:
        self.messages: list[dict] = []

    async def __call__(self, message) -> None:
        self.messages.append(message)

    @property
    def start(self) -> dict:
        return next(
            m for m in self.messages if m["type"] == "http.response.start"
        )

    def header_values(self, name: bytes) -> list[bytes]:
        return [v for k, v in self.start["headers"] if k == name]


@pytest.mark.unit
class TestPkgGoDevRedirectMiddleware:
    async def test_redirects_with_302(self):
        middleware = PkgGoDevRedirectMiddleware(_make_app_that_sends_response)
        scope = make_scope("/-/go", query_string="redirect=on")
        sent = _Recorder()

        await middleware(scope, _noop_receive, sent)

        assert sent.start["status"] == 302
        location = sent.header_values(b"location")[0]
        assert location == b"https://pkg.go.dev/std?tab=packages&utm_source=godoc"
        cookies = sent.header_values(b"set-cookie")
        assert len(cookies) == 1
        assert cookies[0].startswith(b"pkggodev-redirect=on;")

    async def test_passes_through_without_consent(self):
        middleware = PkgGoDevRedirectMiddleware(_make_app_that_sends_response)
        sent = _Recorder()

        await middleware(make_scope("/github.com/foo/bar"), _noop_receive, sent)

        assert sent.start["status"] == 200
        assert sent.header_values(b"set-cookie") == []

    async def test_off_clears_cookie_on_passthrough(self):
        middleware = PkgGoDevRedirectMiddleware(_make_app_that_sends_response)
        scope = make_scope(
            "/github.com/foo/bar",
            query_string="redirect=off",
            headers=[("cookie", "pkggodev-redirect=on")],
        )
        sent = _Recorder()

        await middleware(scope, _noop_receive, sent)

        assert sent.start["status"] == 200
        cookies = sent.header_values(b"set-cookie")
        assert len(cookies) == 1
        assert b"Max-Age=-1" in cookies[0]

    async def test_preserves_existing_headers_on_passthrough(self):
        async def app_with_headers(scope, receive, send):
            await send(
                {
                    "type": "http.response.start",
                    "status": 200,
                    "headers": [(b"x-custom", b"value")],
                }
            )

        middleware = PkgGoDevRedirectMiddleware(app_with_headers)
        sent = _Recorder()

        await middleware(
            make_scope("/", query_string="redirect=off"), _noop_receive, sent
        )

        assert sent.header_values(b"x-custom") == [b"value"]
        assert len(sent.header_values(b"set-cookie")) == 1

    async def test_exempt_urls_are_not_redirected(self):
        resolver = MagicMock()
        middleware = PkgGoDevRedirectMiddleware(
            _make_app_that_sends_response,
            resolver,
            exempt_urls=[re.compile(r"^/_ah/")],
        )
        sent = _Recorder()

        await middleware(
            make_scope("/_ah/health", query_string="redirect=on"), _noop_receive, sent
        )

        assert sent.start["status"] == 200
        resolver.assert_not_called()

    async def test_resolver_error_falls_back_to_passthrough(self):
        resolver = MagicMock(side_effect=RuntimeError("boom"))
        middleware = PkgGoDevRedirectMiddleware(_make_app_that_sends_response, resolver)
        sent = _Recorder()

        await middleware(make_scope("/"), _noop_receive, sent)

        assert sent.start["status"] == 200
        resolver.assert_called_once()

    async def test_uses_injected_resolver(self):
        resolver = MagicMock(
            return_value=RedirectDecision(
                redirect=True,
                destination="https://example.dev/x",
                cookie=CookieAction.NONE,
            )
        )
        middleware = PkgGoDevRedirectMiddleware(_make_app_that_sends_response, resolver)
        sent = _Recorder()

        await middleware(make_scope("/anything"), _noop_receive, sent)

        assert sent.start["status"] == 302
        assert sent.header_values(b"location") == [b"https://example.dev/x"]
        assert sent.header_values(b"set-cookie") == []
        attrs = resolver.call_args.args[0]
        assert attrs.path == "/anything"

    async def test_skips_non_http_scopes(self):
        called = False

        async def inner_app(scope, receive, send):
            nonlocal called
            called = True

        resolver = MagicMock()
        middleware = PkgGoDevRedirectMiddleware(inner_app, resolver)

        await middleware({"type": "websocket"}, _noop_receive, lambda msg: None)

        assert called
        resolver.assert_not_called()


@pytest.mark.unit
class TestTeeMiddleware:
    async def test_tees_after_final_body(self):
        tee = MagicMock(return_value=True)
        middleware = TeeMiddleware(_make_app_that_sends_response, tee)
        sent = _Recorder()
        scope = make_scope(
            "/github.com/foo/bar", headers=[("user-agent", "Googlebot/2.1")]
        )

        await middleware(scope, _noop_receive, sent)

        tee.assert_called_once()
        attrs, latency, is_robot, status = tee.call_args.args
        assert attrs.path == "/github.com/foo/bar"
        assert isinstance(latency, timedelta)
        assert latency >= timedelta(0)
        assert is_robot is True
        assert status == 200
        # The response went out before the tee ran.
        assert [m["type"] for m in sent.messages] == [
            "http.response.start",
            "http.response.body",
        ]

    async def test_waits_for_last_chunk(self):
        async def streaming_app(scope, receive, send):
            await send({"type": "http.response.start", "status": 404, "headers": []})
            await send({"type": "http.response.body", "body": b"a", "more_body": True})
            await send({"type": "http.response.body", "body": b"b"})

        tee = MagicMock(return_value=True)
        middleware = TeeMiddleware(streaming_app, tee)

        await middleware(make_scope("/x"), _noop_receive, _Recorder())

        tee.assert_called_once()
        assert tee.call_args.args[3] == 404

    async def test_tee_error_does_not_break_response(self):
        tee = MagicMock(side_effect=RuntimeError("tee broke"))
        middleware = TeeMiddleware(_make_app_that_sends_response, tee)
        sent = _Recorder()

        await middleware(make_scope("/x"), _noop_receive, sent)

        assert sent.start["status"] == 200
        tee.assert_called_once()

    async def test_no_tee_when_app_raises(self):
        async def failing_app(scope, receive, send):
            raise RuntimeError("app error")

        tee = MagicMock()
        middleware = TeeMiddleware(failing_app, tee)

        with pytest.raises(RuntimeError, match="app error"):
            await middleware(make_scope("/x"), _noop_receive, _Recorder())

        tee.assert_not_called()

    async def test_skips_non_http_scopes(self):
        called = False

        async def inner_app(scope, receive, send):
            nonlocal called
            called = True

        tee = MagicMock()
        middleware = TeeMiddleware(inner_app, tee)

        await middleware({"type": "websocket"}, _noop_receive, lambda msg: None)

        assert called
        tee.assert_not_called()
