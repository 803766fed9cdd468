"""Tee filtering and analytics event construction.

``should_tee`` decides which request paths are mirrored to the analytics
collector; ``build_event`` turns a finished request into the event record
that gets sent.
"""

from __future__ import annotations

from datetime import timedelta

from core.config import Settings, get_settings
from schemas import AnalyticsEvent, RequestAttrs, escape_path
from services.redirect_service import should_redirect

# Platform-reserved paths (health checks, warmup) are never teed.
INTERNAL_PREFIX = "/_ah/"

# Asset types served alongside pages.
DO_NOT_TEE_EXTENSIONS = frozenset({".css", ".html", ".js", ".txt", ".xml"})

# Operational endpoints: bot/health check and manual refresh trigger.
DO_NOT_TEE_PATHS = frozenset({"/-/bot", "/-/refresh"})


def path_extension(path: str) -> str:
    """Extension of the final path segment, including the dot, or ""."""
    name = path.rsplit("/", 1)[-1]
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def should_tee(path: str) -> bool:
    """Report whether a request for ``path`` should be mirrored to the collector."""
    if path.startswith(INTERNAL_PREFIX):
        return False
    if path_extension(path) in DO_NOT_TEE_EXTENSIONS:
        return False
    if path in DO_NOT_TEE_PATHS:
        return False
    return True


def build_event(
    attrs: RequestAttrs,
    latency: timedelta,
    is_robot: bool,
    status: int,
    settings: Settings | None = None,
) -> AnalyticsEvent:
    """Build the analytics event for a handled request.

    The Host header is carried by ``host`` and left out of ``headers``.
    ``redirected`` records whether this visitor *would* be sent to the new
    site, whatever happened on this request.
    """
    settings = settings or get_settings()

    host = attrs.host
    url = f"https://{host}{escape_path(attrs.path)}"
    if attrs.query_string:
        url = f"{url}?{attrs.query_string}"

    return AnalyticsEvent(
        host=host,
        path=attrs.path,
        status=status,
        url=url,
        headers={
            name: values for name, values in attrs.headers.items() if name != "Host"
        },
        latency=latency,
        is_robot=is_robot,
        redirected=should_redirect(attrs, settings),
    )
