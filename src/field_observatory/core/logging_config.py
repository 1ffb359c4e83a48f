"""structlog setup for the Field Observatory API process.

``api/main.py`` calls :func:`configure_logging` once at startup.  After that
both APIs feed the same processor chain and end up on stdout::

    structlog.get_logger(__name__).info("session.finished", session_id=sid)
    logging.getLogger("minio").warning("retrying")

Inside an HTTP request the middleware sets :data:`request_id_var`; every
record emitted while the request runs carries that ``request_id``.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

# Matched case-insensitively against field names.
_SECRET_MARKERS = ("password", "secret", "token", "bearer", "authorization", "access_key")

# Chatty below WARNING; only quietened when not debugging.
_QUIET_LOGGERS = ("uvicorn.access", "urllib3", "sqlalchemy.engine")


def _is_secret(name: object) -> bool:
    lowered = str(name).lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _scrub(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Mask secret-looking fields, and those of dict-valued fields one level down."""
    for name, value in event_dict.items():
        if _is_secret(name):
            event_dict[name] = REDACTED
        elif isinstance(value, dict):
            for inner in value:
                if _is_secret(inner):
                    value[inner] = REDACTED
    return event_dict


def _add_request_id(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    request_id = request_id_var.get()
    if request_id is not None:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        _scrub,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog and stdlib logging to a single stdout handler.

    Records are rendered as one JSON object per line with ``timestamp``,
    ``level``, ``logger`` and ``event`` fields.  ``"DEBUG"`` switches to the
    coloured console renderer.  Unknown level names mean INFO.  Safe to call
    again; the root handler is replaced, not duplicated.
    """
    name = log_level.upper()
    debugging = name == "DEBUG"
    pre_chain = _pre_chain()

    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True)
        if debugging
        else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, name, logging.INFO))
    if not debugging:
        for quiet in _QUIET_LOGGERS:
            logging.getLogger(quiet).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
