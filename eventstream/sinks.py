"""Tier-routed log sink for consumed events."""
import logging
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import IO, Any
import structlog
from .event_models import LogTier
from .logging import application_log_dir, make_formatter, shared_processors
from .redactor import SENSITIVE_FIELDS, redact

APPLICATION_CHANNEL = "eventstream.sink.application"
PROTECTED_CHANNEL = "eventstream.sink.protected"

_LEVELS = ("debug", "info", "warning", "error", "critical")


def force_protected_tag(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Stamp the protected channel's own tier tag over any supplied one."""
    event_dict["logType"] = LogTier.PROTECTED.value
    return event_dict


def make_console_redactor(sensitive_fields: tuple[str, ...] = SENSITIVE_FIELDS):
    """Build a processor replacing ``eventData`` with its console view."""

    def redact_event_data(logger: Any, method_name: str, event_dict: dict) -> dict:
        data = event_dict.get("eventData")
        if isinstance(data, Mapping):
            event_dict["eventData"] = redact(data, LogTier.PROTECTED, sensitive_fields).console
        return event_dict

    return redact_event_data


class TieredSink:
    """
    Sink with one channel per durability class.

    - application channel (normal, audit): console + events.log
    - protected channel: console with redacted ``eventData`` +
      application-protected.log with the full payload

    Each construction resets the handlers of both channels.
    """

    def __init__(
        self,
        stream: IO[str] | None = None,
        log_dir: str | Path | None = None,
        json_output: bool = True,
        sensitive_fields: tuple[str, ...] = SENSITIVE_FIELDS,
    ):
        """
        Initialize tiered sink.

        Args:
            stream: Console stream (defaults to stdout)
            log_dir: Base log directory (no durable files when None)
            json_output: Console rendering mode
            sensitive_fields: Fields masked on the protected console
        """
        stream = stream if stream is not None else sys.stdout
        app_dir = application_log_dir(log_dir) if log_dir else None

        console = logging.StreamHandler(stream)
        console.setFormatter(make_formatter(json_output))
        app_handlers: list[logging.Handler] = [console]
        if app_dir:
            events_file = logging.FileHandler(app_dir / "events.log", encoding="utf-8")
            events_file.setFormatter(make_formatter(json_output=True))
            app_handlers.append(events_file)

        protected_console = logging.StreamHandler(stream)
        protected_console.setFormatter(
            make_formatter(
                json_output,
                extra=[force_protected_tag, make_console_redactor(sensitive_fields)],
            )
        )
        protected_handlers: list[logging.Handler] = [protected_console]
        if app_dir:
            protected_file = logging.FileHandler(
                app_dir / "application-protected.log", encoding="utf-8"
            )
            protected_file.setFormatter(make_formatter(json_output=True, extra=[force_protected_tag]))
            protected_handlers.append(protected_file)

        self._application = self._build_channel(APPLICATION_CHANNEL, app_handlers)
        self._protected = self._build_channel(PROTECTED_CHANNEL, protected_handlers)

    @staticmethod
    def _build_channel(name: str, handlers: list[logging.Handler]):
        std = logging.getLogger(name)
        for handler in list(std.handlers):
            std.removeHandler(handler)
            handler.close()
        for handler in handlers:
            std.addHandler(handler)
        std.setLevel(logging.DEBUG)
        std.propagate = False
        return structlog.wrap_logger(
            std,
            processors=shared_processors() + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
            wrapper_class=structlog.stdlib.BoundLogger,
        )

    def record(self, level: str, message: str, fields: Mapping[str, Any] | None = None):
        """
        Write one tiered record.

        Args:
            level: Log level name (debug, info, warning, error, critical)
            message: Log message
            fields: Structured fields; ``tier`` selects the channel
        """
        if level not in _LEVELS:
            raise ValueError(f"unknown log level: {level}")
        fields = dict(fields or {})
        try:
            tier = LogTier(fields.get("tier", LogTier.NORMAL))
        except ValueError:
            tier = LogTier.NORMAL
        fields["tier"] = tier.value

        if tier == LogTier.PROTECTED:
            # Tag is imposed by the channel formatters, never taken from the payload
            fields.pop("logType", None)
            channel = self._protected
        else:
            channel = self._application
        getattr(channel, level)(message, **fields)

    def close(self):
        """Close all channel handlers."""
        for name in (APPLICATION_CHANNEL, PROTECTED_CHANNEL):
            std = logging.getLogger(name)
            for handler in list(std.handlers):
                std.removeHandler(handler)
                handler.close()
