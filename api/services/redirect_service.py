"""Redirect resolution for visitors opted in to the replacement site.

Two concerns live here:

- **Consent**: whether a request should be sent to the new site, decided
  from the ``redirect`` override parameter, then the consent cookie, then
  the off default.  ``should_redirect`` is pure and is also used to tag
  analytics events; ``resolve`` additionally reports the cookie update the
  response must carry.
- **Destination mapping**: ``compute_destination`` maps a legacy URL onto
  the equivalent page of the new site through an ordered, first-match-wins
  rule table.  The table ends with a catch-all rule, so every input maps
  somewhere.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import unquote, urlencode, urlsplit

from starlette.datastructures import QueryParams
from starlette.responses import Response

from core.config import Settings, get_settings
from schemas import (
    ConsentState,
    CookieAction,
    RedirectDecision,
    RequestAttrs,
    escape_path,
)

# Query parameter carrying both the outbound attribution tag and the
# marker the new site uses when sending a visitor back.
SOURCE_PARAM = "utm_source"
TAB_PARAM = "tab"
SEARCH_PARAM = "q"

SUBREPO_QUERY = "golang.org/x"


# =============================================================================
# Consent
# =============================================================================


def override_state(attrs: RequestAttrs, settings: Settings | None = None) -> ConsentState:
    """Consent carried by the per-request override parameter."""
    settings = settings or get_settings()
    return ConsentState.parse(attrs.query_value(settings.redirect_param))


def cookie_state(attrs: RequestAttrs, settings: Settings | None = None) -> ConsentState:
    """Consent carried by the cookie; only the "on" marker counts."""
    settings = settings or get_settings()
    if attrs.cookies.get(settings.redirect_cookie) == ConsentState.ON.value:
        return ConsentState.ON
    return ConsentState.OFF


def is_api_request(attrs: RequestAttrs, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return attrs.host.startswith(settings.api_host_prefix)


def is_returning_user(attrs: RequestAttrs, settings: Settings | None = None) -> bool:
    """Whether the visitor just navigated back from the new site."""
    settings = settings or get_settings()
    return attrs.query_value(SOURCE_PARAM) == settings.return_marker


def should_redirect(attrs: RequestAttrs, settings: Settings | None = None) -> bool:
    """Whether this visitor would be sent to the new site.

    Pure: reads the request only.  The returning-visitor bypass is applied
    by ``resolve``, not here, so analytics record the visitor's preference
    rather than what happened on this particular request.
    """
    settings = settings or get_settings()

    # API consumers must never be silently redirected.
    if is_api_request(attrs, settings):
        return False

    override = override_state(attrs, settings)
    if override is not ConsentState.UNSET:
        return override is ConsentState.ON

    return cookie_state(attrs, settings) is ConsentState.ON


def resolve(attrs: RequestAttrs, settings: Settings | None = None) -> RedirectDecision:
    """Decide the redirect for a request, including the consent cookie update."""
    settings = settings or get_settings()

    if is_returning_user(attrs, settings):
        return RedirectDecision(redirect=False)

    cookie = CookieAction.for_override(override_state(attrs, settings))

    if not should_redirect(attrs, settings):
        return RedirectDecision(redirect=False, cookie=cookie)

    return RedirectDecision(
        redirect=True,
        destination=compute_destination(attrs.request_uri, settings),
        cookie=cookie,
    )


def consent_cookie_headers(
    action: CookieAction, settings: Settings | None = None
) -> list[tuple[bytes, bytes]]:
    """Raw ``set-cookie`` headers implementing a cookie action.

    The cookie is session-scoped (no expiry) at path "/"; clearing writes an
    empty value with a negative max-age.
    """
    if action is CookieAction.NONE:
        return []

    settings = settings or get_settings()
    carrier = Response()
    if action is CookieAction.SET:
        carrier.set_cookie(settings.redirect_cookie, ConsentState.ON.value, path="/")
    else:
        carrier.set_cookie(settings.redirect_cookie, "", max_age=-1, path="/")
    return [header for header in carrier.raw_headers if header[0] == b"set-cookie"]


# =============================================================================
# Destination mapping
# =============================================================================


Target = tuple[str, dict[str, str]]


@dataclass(frozen=True)
class MappingRule:
    """One row of the legacy-to-new path table.

    ``target`` returns the new-site path and any extra query parameters;
    the attribution tag is added for every rule.
    """

    name: str
    matches: Callable[[str], bool]
    target: Callable[[str, QueryParams], Target]


def _exact(legacy_path: str) -> Callable[[str], bool]:
    return lambda path: path == legacy_path


def _is_vendored(path: str) -> bool:
    return "/vendor/" in path or path.endswith("/vendor")


def _root_target(path: str, query: QueryParams) -> Target:
    values = query.getlist(SEARCH_PARAM)
    term = values[0] if values else ""
    if term:
        return "/search", {SEARCH_PARAM: term}
    return "/", {}


def _package_target(path: str, query: QueryParams) -> Target:
    if "imports" in query:
        tab = "imports"
    elif "importers" in query:
        tab = "importedby"
    else:
        tab = "doc"
    return path, {TAB_PARAM: tab}


MAPPING_RULES: tuple[MappingRule, ...] = (
    # Vendored packages have no page of their own on the new site.
    MappingRule("vendor", _is_vendored, lambda path, query: ("/", {})),
    MappingRule(
        "stdlib",
        _exact("/-/go"),
        lambda path, query: ("/std", {TAB_PARAM: "packages"}),
    ),
    MappingRule("about", _exact("/-/about"), lambda path, query: ("/about", {})),
    MappingRule("home", _exact("/"), _root_target),
    MappingRule(
        "subrepo",
        _exact("/-/subrepo"),
        lambda path, query: ("/search", {SEARCH_PARAM: SUBREPO_QUERY}),
    ),
    MappingRule("package", lambda path: True, _package_target),
)


def _split_legacy_url(legacy_url: str) -> tuple[str, str]:
    target = legacy_url.partition("#")[0]
    if target.startswith("/"):
        # Request-target form: a leading "//" is part of the path here.
        raw_path, _, raw_query = target.partition("?")
    else:
        try:
            parts = urlsplit(target)
            raw_path, raw_query = parts.path, parts.query
        except ValueError:
            # Unparseable authority (e.g. an unbalanced IPv6 bracket).
            raw_path, raw_query = "/", ""
    return unquote(raw_path) or "/", raw_query


def match_rule(path: str) -> MappingRule:
    """First rule whose predicate accepts the (decoded) legacy path."""
    return next(rule for rule in MAPPING_RULES if rule.matches(path))


def compute_destination(legacy_url: str, settings: Settings | None = None) -> str:
    """Map a legacy URL (absolute or path+query) to its new-site equivalent.

    Total: any input string yields an https URL on the new-site host.
    """
    settings = settings or get_settings()
    path, raw_query = _split_legacy_url(legacy_url)

    rule = match_rule(path)
    new_path, extra = rule.target(path, QueryParams(raw_query))

    params = {SOURCE_PARAM: settings.attribution_source, **extra}
    # Sorted keys keep the destination stable for identical inputs.
    query = urlencode(sorted(params.items()))
    return f"https://{settings.new_site_host}{escape_path(new_path)}?{query}"
