from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Correlates every log line emitted during one login attempt
flow_id_var: ContextVar[Optional[str]] = ContextVar("flow_id", default=None)


def get_flow_id() -> Optional[str]:
    """Get the flow ID of the login attempt running in this context."""
    return flow_id_var.get()


def set_flow_id(flow_id: Optional[str] = None) -> str:
    """Set or generate a flow ID for the current context."""
    fid = flow_id or uuid.uuid4().hex
    flow_id_var.set(fid)
    return fid


def _add_flow_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to add flow_id to all log entries."""
    fid = get_flow_id()
    if fid and "flow_id" not in event_dict:
        event_dict["flow_id"] = fid
    return event_dict


_REDACTED_KEYS = {
    "password",
    "secret",
    "token",
    "answer",
    "session",
    "authorization",
    "phone",
    "email",
}


def _redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor to redact credentials and contact details from log entries."""
    for key in list(event_dict.keys()):
        lower_key = key.lower()
        if any(marker in lower_key for marker in _REDACTED_KEYS):
            value = event_dict[key]
            if isinstance(value, str) and len(value) > 4:
                # Keep the edges so operators can still tell values apart
                event_dict[key] = value[:2] + "***" + value[-2:]
            elif isinstance(value, str):
                event_dict[key] = "***"
    return event_dict


def _configure_structlog(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Configure structlog processors.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable
        development_mode: If True, use pretty console output
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_flow_id,
        _redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if development_mode or not json_output:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]
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


_log_level = os.getenv("LOG_LEVEL", "INFO").upper()
_json_output = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}
_dev_mode = os.getenv("LOG_DEV_MODE", "false").lower() in {"1", "true", "yes", "on"}

_configure_structlog(
    log_level=_log_level,
    json_output=_json_output,
    development_mode=_dev_mode,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger that tags entries with the current flow ID."""
    return structlog.get_logger(name)


def redact_username(username: Optional[str]) -> str:
    """Mask a username (usually a phone number) for log output."""
    if not username:
        return "redacted"
    if len(username) <= 4:
        return "***"
    return f"{username[:3]}***{username[-2:]}"
