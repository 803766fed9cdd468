"""Pydantic schemas for request snapshots, analytics events and redirect decisions."""

from datetime import timedelta
from enum import Enum
from urllib.parse import quote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from starlette.datastructures import QueryParams
from starlette.requests import Request
from starlette.types import Scope

# Characters left unescaped when a decoded path is written back into a URL.
_PATH_SAFE = "/:@!$&'()*+,;=-._~"


def escape_path(path: str) -> str:
    """Percent-encode a decoded URL path for use in an absolute URL."""
    return quote(path, safe=_PATH_SAFE)


def canonical_header_name(name: str) -> str:
    """Canonical MIME form of a header name: ``x-forwarded-for`` -> ``X-Forwarded-For``."""
    return "-".join(part.capitalize() for part in name.split("-"))


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class ConsentState(str, Enum):
    """Tri-state redirect consent.

    Precedence for a single request: override query parameter, then the
    stored cookie, then the OFF default.
    """

    ON = "on"
    OFF = "off"
    UNSET = "unset"

    @classmethod
    def parse(cls, value: str | None) -> "ConsentState":
        """Only the literal markers "on" and "off" are meaningful."""
        if value == cls.ON.value:
            return cls.ON
        if value == cls.OFF.value:
            return cls.OFF
        return cls.UNSET


class CookieAction(str, Enum):
    """What to do with the consent cookie on the outgoing response."""

    NONE = "none"
    SET = "set"
    CLEAR = "clear"

    @classmethod
    def for_override(cls, override: ConsentState) -> "CookieAction":
        # There is no stored "off" marker: off is represented by deleting the cookie.
        if override is ConsentState.ON:
            return cls.SET
        if override is ConsentState.OFF:
            return cls.CLEAR
        return cls.NONE


class RequestAttrs(BaseModel):
    """Immutable snapshot of the parts of an inbound request the shim inspects.

    ``url_host`` is set only when the request target was in absolute form
    (the host is part of the request line); otherwise it is empty and
    ``host`` falls back to ``host_header``, the raw Host header. Header
    names are stored in canonical MIME form with every value kept in
    arrival order.
    """

    model_config = ConfigDict(frozen=True)

    url_host: str = ""
    host_header: str = ""
    path: str = "/"
    query_string: str = ""
    headers: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    cookies: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_scope(cls, scope: Scope) -> "RequestAttrs":
        """Build a snapshot from an HTTP ASGI scope."""
        request = Request(scope)

        headers: dict[str, list[str]] = {}
        for raw_name, raw_value in scope.get("headers", []):
            name = canonical_header_name(raw_name.decode("latin-1"))
            headers.setdefault(name, []).append(raw_value.decode("latin-1"))

        path = scope.get("path") or "/"
        url_host = ""
        # Absolute-form targets ("GET http://host/path") arrive as the full URL.
        if path.startswith(("http://", "https://")):
            target = urlsplit(path)
            url_host, path = target.netloc, target.path or "/"

        return cls(
            url_host=url_host,
            host_header=request.headers.get("host", ""),
            path=path,
            query_string=scope.get("query_string", b"").decode("latin-1"),
            headers={name: tuple(values) for name, values in headers.items()},
            cookies=dict(request.cookies),
        )

    @property
    def host(self) -> str:
        """Best available host: the URL host, else the Host header."""
        return self.url_host or self.host_header

    @property
    def query_params(self) -> QueryParams:
        return QueryParams(self.query_string)

    def query_value(self, key: str) -> str | None:
        """First value of a query parameter, or None when absent."""
        values = self.query_params.getlist(key)
        return values[0] if values else None

    def header_value(self, name: str) -> str:
        values = self.headers.get(canonical_header_name(name.lower()), ())
        return values[0] if values else ""

    @property
    def request_uri(self) -> str:
        """Escaped path plus raw query, as it appeared on the request line."""
        uri = escape_path(self.path)
        if self.query_string:
            uri = f"{uri}?{self.query_string}"
        return uri


class AnalyticsEvent(BaseModel):
    """Request metadata teed to the analytics collector.

    Serialize with ``model_dump_json(by_alias=True)``: the aliases and the
    integer-nanosecond latency are the collector's wire format.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(serialization_alias="Host")
    path: str = Field(serialization_alias="Path")
    status: int = Field(serialization_alias="Status")
    url: str = Field(serialization_alias="URL")
    headers: dict[str, tuple[str, ...]] = Field(
        default_factory=dict, serialization_alias="Header"
    )
    latency: timedelta = Field(serialization_alias="Latency")
    is_robot: bool = Field(serialization_alias="IsRobot")
    redirected: bool = Field(serialization_alias="UsePkgGoDev")

    @field_serializer("latency")
    def serialize_latency(self, latency: timedelta) -> int:
        return (
            (latency.days * 86_400 + latency.seconds) * 1_000_000_000
            + latency.microseconds * 1_000
        )


class RedirectDecision(BaseModel):
    """Per-request outcome of the redirect resolver."""

    model_config = ConfigDict(frozen=True)

    redirect: bool = False
    destination: str | None = None
    cookie: CookieAction = CookieAction.NONE

    @model_validator(mode="after")
    def validate_destination(self) -> "RedirectDecision":
        if self.redirect != (self.destination is not None):
            raise ValueError("destination must be set exactly when redirect is true")
        return self
