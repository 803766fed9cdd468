"""Core utilities for the godoc.org migration shim.

Logging helpers are re-exported for modules that log with keyword fields::

    from core import get_logger
"""

from core.logger import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
