"""Logging for mbgl-renderer.

Request-scoped log lines go through a structlog bound logger kept in a
context variable, so concurrent requests never share bound fields.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

import structlog

logger = structlog.get_logger("mbgl-renderer")

_context_logger: ContextVar[Any] = ContextVar("mbgl_renderer_logger", default=None)

_MESSAGE_BUS_INITIALIZED = False


def configure_logging(*, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(format="%(message)s", level=level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_context_logger():
    bound = _context_logger.get()
    if bound is None:
        return logger
    return bound


def set_context_logger(bound) -> None:
    _context_logger.set(bound)


def handle_engine_message(message: Any) -> None:
    """Forward one message from the rendering engine's message bus."""
    if isinstance(message, dict):
        severity = message.get("severity")
        event_class = message.get("class")
        text = message.get("text", "")
    else:
        severity = getattr(message, "severity", None)
        event_class = getattr(message, "event", getattr(message, "class_", None))
        text = getattr(message, "text", str(message))

    if severity == "ERROR":
        logger.error(text)
    elif severity == "WARNING":
        if event_class == "ParseStyle":
            # style parse problems only arrive as warnings but are fatal to the map
            logger.error(f"Error parsing style: {text}")
        else:
            logger.warning(text)
    else:
        logger.info(text)


def init_message_bus(engine: Any) -> bool:
    """Attach the process-wide engine message handler.

    The engine's message bus is global to the process, so this only ever
    registers once. Returns True if a handler was attached by this call.
    """
    global _MESSAGE_BUS_INITIALIZED

    if _MESSAGE_BUS_INITIALIZED:
        return False
    on = getattr(engine, "on", None)
    if on is None:
        logger.debug("rendering engine exposes no message bus")
        return False
    on("message", handle_engine_message)
    _MESSAGE_BUS_INITIALIZED = True
    return True
