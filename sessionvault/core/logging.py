from __future__ import annotations

import logging
from typing import Any, Protocol

import structlog

from sessionvault.core.config import settings

_SECRET_KEYS = ("password", "secret", "token", "authorization")


def _redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in list(event_dict.keys()):
        if key == "event":
            continue
        lower_key = key.lower()
        if any(marker in lower_key for marker in _SECRET_KEYS):
            value = event_dict[key]
            if isinstance(value, str) and value:
                event_dict[key] = "[REDACTED]"
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=development_mode)]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    log_level=settings.LOG_LEVEL,
    json_output=settings.LOG_JSON,
    development_mode=settings.LOG_DEV_MODE,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class AuditLog(Protocol):
    def alert(self, event: str, user_id: int | None = None, **details: Any) -> None: ...

    def record(self, event: str, user_id: int | None = None, **details: Any) -> None: ...


class StructlogAuditLog:
    """
    Audit trail for authentication events.

    Alerts are security anomalies (token reuse, logout with an unknown token);
    they go out at critical level so they can be routed separately. Callers
    must never pass raw token material in ``details``.
    """

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger or get_logger("sessionvault.audit")

    def alert(self, event: str, user_id: int | None = None, **details: Any) -> None:
        self._logger.critical(event, severity="alert", user_id=user_id, **details)

    def record(self, event: str, user_id: int | None = None, **details: Any) -> None:
        self._logger.info(event, user_id=user_id, **details)
