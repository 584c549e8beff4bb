"""
Structured logging configuration using structlog.

Standardized log format:
{
    "ts": "2025-11-18T04:30:00.123456Z",
    "level": "info",
    "service": "kafka-node-events",
    "event": "message.processed",
    "module": "eventstream.services.consumer",
    "function": "process",
    "line": 42,
    ...additional context...
}

Operational logs go to the console and, when a log directory is configured,
to application/application.log (all levels) and application/error.log
(errors only).
"""
import structlog
import logging
from pathlib import Path
from typing import Any

SERVICE_NAME = "kafka-node-events"


def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add service name to all log entries."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def add_module_info(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add module, function, and line number to log entries."""
    frame = structlog._frames._find_first_app_frame_and_name(["logging"])[0]
    if frame:
        event_dict["module"] = frame.f_globals.get("__name__", "unknown")
        event_dict["function"] = frame.f_code.co_name
        event_dict["line"] = frame.f_lineno
    return event_dict


def shared_processors() -> list:
    """Processors applied at the call site, before rendering."""
    return [
        # Add contextvars (run_id, role, ...)
        structlog.contextvars.merge_contextvars,
        add_service_name,
        # Add timestamp as 'ts'
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.stdlib.add_log_level,
        add_module_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def make_formatter(json_output: bool = True, extra: list | None = None) -> structlog.stdlib.ProcessorFormatter:
    """
    Build a stdlib formatter rendering structlog entries.

    Args:
        json_output: Render JSON if True, console format otherwise
        extra: Processors applied by this formatter only, before rendering
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *(extra or []),
            renderer,
        ],
        # Entries from non-structlog loggers (aiokafka, uvicorn)
        foreign_pre_chain=[
            add_service_name,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.stdlib.add_log_level,
        ],
    )


def application_log_dir(log_dir: str | Path) -> Path:
    """Return (and create) the application log directory."""
    path = Path(log_dir) / "application"
    path.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(
    json_output: bool = True,
    level: str = "INFO",
    log_dir: str | Path | None = None,
):
    """
    Configure structured logging with standardized fields.

    Args:
        json_output: If True, output JSON logs. If False, use console format.
        level: Minimum log level name
        log_dir: Directory for durable log files (console only when None)
    """
    structlog.configure(
        processors=shared_processors() + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    console.setFormatter(make_formatter(json_output))
    handlers.append(console)

    if log_dir:
        app_dir = application_log_dir(log_dir)

        application = logging.FileHandler(app_dir / "application.log", encoding="utf-8")
        application.setFormatter(make_formatter(json_output=True))
        handlers.append(application)

        errors = logging.FileHandler(app_dir / "error.log", encoding="utf-8")
        errors.setLevel(logging.ERROR)
        errors.setFormatter(make_formatter(json_output=True))
        handlers.append(errors)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level.upper())

    # aiokafka is chatty at INFO during rebalances
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
    # Silence uvicorn's default logging to avoid duplicate logs
    logging.getLogger("uvicorn.error").handlers = []
    logging.getLogger("uvicorn.access").handlers = []


def get_logger():
    """Get a configured structlog logger."""
    return structlog.get_logger()
