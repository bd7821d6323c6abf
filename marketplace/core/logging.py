import logging
import sys
from typing import Any

import structlog

from marketplace.core.money import format_minor


def _display_amounts(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add a decimal rendering next to every integer *_minor field (amount_minor=5000 -> amount="50.00")."""
    for key in [k for k in event_dict if k.endswith("_minor")]:
        value = event_dict[key]
        if isinstance(value, int) and not isinstance(value, bool):
            event_dict.setdefault(key[: -len("_minor")], format_minor(value))
    return event_dict


def configure_logging(debug: bool = False) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _display_amounts,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    """Start a fresh context for the request; earlier bindings do not leak across requests."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_user(user_id: str, role: str) -> None:
    structlog.contextvars.bind_contextvars(user_id=user_id, role=role)


def current_request_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("request_id")
