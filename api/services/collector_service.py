"""Fire-and-forget delivery of analytics events to the collector.

Delivery is best-effort: failures are logged with the target URL, the
event and the error, and never reach the user-facing response.  Nothing
is retried.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import httpx

from core.config import Settings, get_settings
from core.http_client import get_collector_client
from schemas import AnalyticsEvent, RequestAttrs
from services.tee_service import build_event, should_tee

logger = logging.getLogger(__name__)

JSON_MIME_TYPE = "application/json"

# Strong references to in-flight sends; the event loop only keeps weak ones.
_pending_sends: set[asyncio.Task[None]] = set()


async def send_event(event: AnalyticsEvent, settings: Settings | None = None) -> None:
    """POST one event to the collector. Never raises for delivery problems."""
    settings = settings or get_settings()
    target = settings.collector_url

    try:
        body = event.model_dump_json(by_alias=True)
    except (TypeError, ValueError) as e:
        logger.error(
            "tee.serialize_failed",
            extra={"target": target, "event": repr(event), "error": str(e)},
        )
        return

    try:
        client = await get_collector_client()
        response = await client.post(
            target, content=body, headers={"Content-Type": JSON_MIME_TYPE}
        )
    except httpx.HTTPError as e:
        logger.error(
            "tee.failed",
            extra={
                "target": target,
                "event": body,
                "error": str(e),
                "exc_type": type(e).__name__,
            },
        )
        return

    if response.is_error:
        logger.warning(
            "tee.rejected",
            extra={
                "target": target,
                "path": event.path,
                "status_code": response.status_code,
            },
        )
        return

    logger.info(
        "tee.sent",
        extra={"target": target, "path": event.path, "status": event.status},
    )


def maybe_tee(
    attrs: RequestAttrs,
    latency: timedelta,
    is_robot: bool,
    status: int,
    settings: Settings | None = None,
) -> bool:
    """Schedule delivery of the event for a finished request, if it qualifies.

    Must be called from a running event loop. Returns whether a send was
    scheduled.
    """
    if not should_tee(attrs.path):
        logger.debug("tee.skipped", extra={"path": attrs.path})
        return False

    event = build_event(attrs, latency, is_robot, status, settings)
    task = asyncio.create_task(send_event(event, settings))
    _pending_sends.add(task)
    task.add_done_callback(_pending_sends.discard)
    return True


async def drain_pending_sends(timeout: float | None = None) -> None:
    """Wait for in-flight sends, e.g. before closing the collector client."""
    if not _pending_sends:
        return
    _, pending = await asyncio.wait(set(_pending_sends), timeout=timeout)
    if pending:
        logger.warning("tee.drain_timeout", extra={"pending": len(pending)})
        for task in pending:
            task.cancel()
