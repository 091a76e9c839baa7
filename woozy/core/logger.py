"""Structured JSON logging built on structlog."""

from __future__ import annotations

import logging
from typing import Any

import structlog

from woozy.core.config import get_settings


_CONFIGURED = False


def _add_request_defaults(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    del logger, method_name
    for key in ("request_id", "workspace_id", "user_id"):
        event_dict.setdefault(key, None)
    return event_dict


def _service_tagger(app_name: str, env: str):
    def processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        del logger, method_name
        event_dict.setdefault("service", app_name)
        event_dict.setdefault("env", env)
        return event_dict

    return processor


def configure_logging() -> None:
    """Configure structlog once per process."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_request_defaults,
            _service_tagger(settings.app_name, settings.env),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def bind_request_context(
    request_id: str,
    workspace_id: str | None = None,
    user_id: str | None = None,
) -> None:
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        workspace_id=workspace_id,
        user_id=user_id,
    )


def bind_workspace(workspace_id: str) -> None:
    """Attach the resolved workspace to every later log line of this request."""

    structlog.contextvars.bind_contextvars(workspace_id=workspace_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
