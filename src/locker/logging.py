"""structlog setup: JSON lines on stderr with secrets scrubbed from every event."""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

import structlog

REDACTED = "[redacted]"

# Event keys whose values are never rendered, whatever their type.
SENSITIVE_KEYS = frozenset(
    {
        "ciphertext",
        "data",
        "der",
        "device_key",
        "nonce",
        "pin",
        "plaintext",
        "private_key",
        "secret",
        "wrapped",
    }
)

_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

EventDict = MutableMapping[str, Any]


def configure_logging(level: str | None = None) -> None:
    """Route structlog through the stdlib root logger as JSON on stderr.

    Stdout is left to command output. Each record carries ``ts``, ``level``,
    ``component`` and ``msg``; :func:`scrub_secrets` runs before rendering.
    """
    numeric_level = _LEVELS.get((level or "warning").lower(), logging.WARNING)
    logging.basicConfig(
        level=numeric_level,
        handlers=[logging.StreamHandler(sys.stderr)],
        format="%(message)s",
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.stdlib.add_log_level,
            add_component,
            scrub_secrets,
            event_to_msg,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def add_component(logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("component", getattr(logger, "name", None) or "locker")
    return event_dict


def scrub_secrets(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    """Redact sensitive keys and reduce raw bytes to their length."""
    for key, value in list(event_dict.items()):
        if key in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, (bytes, bytearray, memoryview)):
            event_dict[key] = f"<{len(value)} bytes>"
    return event_dict


def event_to_msg(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    if "msg" not in event_dict:
        event_dict["msg"] = event_dict.pop("event", "")
    return event_dict


__all__ = ["REDACTED", "SENSITIVE_KEYS", "configure_logging", "scrub_secrets"]
