"""
structlog setup shared by the API server and the arq worker.

Every event carries a ``component`` field (``api`` or ``worker``) so the two
processes can share one log sink.
"""

from __future__ import annotations

import logging

import structlog
from structlog.types import EventDict, Processor


def _tag_component(component: str) -> Processor:
    def processor(logger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("component", component)
        return event_dict

    return processor


def configure_logging(level: str = "info", fmt: str = "text", component: str = "api") -> None:
    """Configure structlog for one portal process.

    ``fmt="json"`` renders one JSON object per line with tracebacks flattened
    into the event; anything else uses the colored console renderer.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _tag_component(component),
    ]
    if fmt == "json":
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )
