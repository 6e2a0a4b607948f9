"""
Structured logging configuration using structlog.

Log format:
{
    "ts": "2026-10-19T04:30:00.123456Z",
    "level": "info",
    "service": "callbridge",
    "call_id": "42",
    "event": "call.answered",
    "module": "callbridge.services.call_correlator",
    "func_name": "_watch_progress",
    "lineno": 42,
    ...additional context...
}
"""
import structlog
import logging
from typing import Any

_service_name = "callbridge"


def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add service name to all log entries."""
    event_dict["service"] = _service_name
    return event_dict


def setup_logging(json_output: bool = True, service_name: str = "callbridge", level: int = logging.INFO):
    """
    Configure structured logging.

    Args:
        json_output: If True, output JSON logs. If False, use console format.
        service_name: Name stamped on every entry.
        level: Minimum level that is emitted.
    """
    global _service_name
    _service_name = service_name

    shared_processors = [
        # correlation_id from the HTTP middleware, call_id from correlator runs
        structlog.contextvars.merge_contextvars,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors = shared_processors + [structlog.processors.JSONRenderer()]
    else:
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
    )

    # Silence uvicorn's default logging to avoid duplicate logs
    logging.getLogger("uvicorn.error").handlers = []
    logging.getLogger("uvicorn.access").handlers = []


def get_logger():
    """Get a configured structlog logger."""
    return structlog.get_logger()
