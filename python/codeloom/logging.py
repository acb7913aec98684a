"""structlog setup and correlation context for Codeloom.

Every log line carries whichever correlation fields are bound in the current
async context. Two scopes exist:

- request scope (set by RequestIDMiddleware): request_id, user_id, path, method
- generation scope (set by a running Generation): session_id, generation_id

Secrets and user content never go through here directly; callers pass
hashes or lengths produced by codeloom.services.redact.

Usage:
    from codeloom.logging import get_logger

    logger = get_logger(__name__)
    logger.info("generation.started", attempt=1)
"""

import logging
import sys
from contextvars import ContextVar

import structlog

REQUEST_FIELDS = ("request_id", "user_id", "path", "method")
GENERATION_FIELDS = ("session_id", "generation_id")

_fields: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"codeloom_{name}", default=None)
    for name in REQUEST_FIELDS + GENERATION_FIELDS
}

# Libraries whose INFO output drowns the generation events.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy bound correlation fields into the event.

    Fields passed explicitly to the log call are left alone.
    """
    for name, var in _fields.items():
        value = var.get()
        if value:
            event_dict.setdefault(name, value)
    return event_dict


def _bind(names: tuple[str, ...], values: dict[str, str | None], *, keep_missing: bool) -> None:
    for name in names:
        value = values.get(name)
        if value is None and keep_missing:
            continue
        _fields[name].set(value)


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind request correlation fields. Omitted optional fields keep their value."""
    _fields["request_id"].set(request_id)
    _bind(
        REQUEST_FIELDS[1:],
        {"user_id": user_id, "path": path, "method": method},
        keep_missing=True,
    )


def set_generation_context(session_id: str | None, generation_id: str | None = None) -> None:
    _bind(
        GENERATION_FIELDS,
        {"session_id": session_id, "generation_id": generation_id},
        keep_missing=False,
    )


def clear_generation_context() -> None:
    _bind(GENERATION_FIELDS, {}, keep_missing=False)


def clear_request_context() -> None:
    """Unbind every correlation field, generation scope included."""
    _bind(REQUEST_FIELDS + GENERATION_FIELDS, {}, keep_missing=False)


def get_request_id() -> str | None:
    return _fields["request_id"].get()


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines when True, the coloured dev console otherwise.
        level: Root log level.
    """
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
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
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
