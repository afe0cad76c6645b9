"""structlog configuration.

Called once from the FastAPI lifespan. Every module logs through
``structlog.get_logger(__name__)`` with dotted event names; per-turn and
per-connection identifiers are bound through structlog context vars so they
appear on every line emitted while handling that unit of work.
"""

import logging
import sys
import uuid

import structlog

from backend.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """Install the structlog processor chain.

    Args:
        settings: Application settings (log level and renderer choice).
    """
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def new_trace_id() -> str:
    """Short random identifier for correlating log lines of one unit of work."""
    return uuid.uuid4().hex[:12]
