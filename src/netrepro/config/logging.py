"""structlog configuration for netrepro.

Two output modes:
- Human (default): console-rendered lines to stderr
- JSON (--log-json): Structured JSON lines to stderr

Every record carries its ``netrepro.*`` logger name. Lines written by the
overlay client through its log sink are also prefixed with ``[repro]``.
"""

from __future__ import annotations

import logging
import sys

import structlog


OVERLAY_LOGGER = "netrepro.overlay"
OVERLAY_TAG = "[repro]"


def tag_overlay_events(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Prefix lines from the overlay client's log sink with ``[repro]``.

    Must run after ``add_logger_name``.
    """
    if event_dict.get("logger") == OVERLAY_LOGGER:
        event_dict["event"] = f"{OVERLAY_TAG} {event_dict.get('event', '')}"
    return event_dict


def configure_logging(
    *,
    verbose: bool = False,
    log_json: bool = False,
) -> None:
    """Configure structlog processors and output routing.

    Args:
        verbose: Enable DEBUG-level output. When False, INFO and above.
        log_json: Use JSON renderer instead of console renderer.
    """
    repro_level = logging.DEBUG if verbose else logging.INFO

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        tag_overlay_events,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    repro_logger = logging.getLogger("netrepro")
    repro_logger.setLevel(repro_level)
    logging.getLogger("pluggy").setLevel(logging.WARNING)
