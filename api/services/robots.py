"""User-Agent based crawler detection."""

import re

from schemas import RequestAttrs

# Substrings that identify crawlers, scrapers and scripted HTTP clients.
ROBOT_USER_AGENT_TOKENS: tuple[str, ...] = (
    "bot",
    "crawler",
    "spider",
    "slurp",
    "archiver",
    "facebookexternalhit",
    "curl/",
    "wget/",
    "python-requests",
    "python-httpx",
    "go-http-client",
    "headlesschrome",
)

_robot_re = re.compile("|".join(re.escape(t) for t in ROBOT_USER_AGENT_TOKENS), re.I)


def is_robot_user_agent(user_agent: str) -> bool:
    """An empty User-Agent is treated as a robot."""
    if not user_agent.strip():
        return True
    return _robot_re.search(user_agent) is not None


def is_robot(attrs: RequestAttrs) -> bool:
    return is_robot_user_agent(attrs.header_value("User-Agent"))
