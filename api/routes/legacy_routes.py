"""Pass-through to the legacy documentation site.

Requests that are not redirected to the new site are forwarded unchanged
to ``LEGACY_ORIGIN`` and the upstream response is relayed back.  Must be
registered last: it matches every path.
"""

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response

from core import get_logger
from core.http_client import get_legacy_client
from schemas import escape_path

logger = get_logger(__name__)

router = APIRouter(include_in_schema=False)

# RFC 9110 connection-specific headers, never forwarded in either direction.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# httpx decodes the body, so framing headers are recomputed on the way out.
_DROPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


def _upstream_target(request: Request) -> httpx.URL:
    """Path and query exactly as received, so encoded slashes survive."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        # Some servers include the query in raw_path.
        raw_path = raw_path.split(b"?", 1)[0]
    else:
        raw_path = escape_path(request.url.path).encode("ascii")
    query_string = request.scope.get("query_string", b"")
    if query_string:
        raw_path = raw_path + b"?" + query_string
    return httpx.URL(raw_path=raw_path)


@router.api_route("/{path:path}", methods=["GET", "HEAD", "POST"])
async def proxy_to_legacy(request: Request, path: str = "") -> Response:
    """Forward the request to the legacy site and relay its response."""
    headers = [
        (name, value)
        for name, value in request.headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() != "host"
    ]

    client = await get_legacy_client()
    try:
        upstream = await client.request(
            request.method,
            _upstream_target(request),
            headers=headers,
            content=await request.body(),
        )
    except httpx.HTTPError as e:
        logger.error(
            "legacy.upstream_failed",
            path=request.url.path,
            method=request.method,
            error=str(e),
            exc_type=type(e).__name__,
        )
        return PlainTextResponse("Bad Gateway", status_code=502)

    dropped = _DROPPED_RESPONSE_HEADERS
    response = Response(content=upstream.content, status_code=upstream.status_code)
    if request.method == "HEAD":
        # A HEAD body is empty; the upstream length describes the GET entity.
        dropped = dropped - {"content-length"}
        response.raw_headers = [
            (name, value)
            for name, value in response.raw_headers
            if name != b"content-length"
        ]
    response.raw_headers.extend(
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in upstream.headers.multi_items()
        if name.lower() not in dropped
    )
    return response
