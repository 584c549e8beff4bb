"""Console redaction for protected-tier events."""
import copy
from typing import Any, Mapping, NamedTuple
from .event_models import LogTier

REDACTED_PLACEHOLDER = "[REDACTED]"

# Nested payloads hidden from console output of protected events
SENSITIVE_FIELDS = ("metadata",)


class RedactedViews(NamedTuple):
    durable: dict[str, Any]
    console: dict[str, Any]


def redact(
    body: Mapping[str, Any],
    tier: LogTier,
    sensitive_fields: tuple[str, ...] = SENSITIVE_FIELDS,
) -> RedactedViews:
    """
    Split an event body into durable and console views.

    The input is never mutated. For non-protected tiers both views equal
    the input; for protected events the console view has every sensitive
    field present replaced by REDACTED_PLACEHOLDER.

    Args:
        body: Decoded event body
        tier: Tier the event was classified into
        sensitive_fields: Top-level fields to mask

    Returns:
        RedactedViews(durable, console)
    """
    durable = copy.deepcopy(dict(body))
    console = copy.deepcopy(durable)
    if tier == LogTier.PROTECTED:
        for field in sensitive_fields:
            if field in console:
                console[field] = REDACTED_PLACEHOLDER
    return RedactedViews(durable=durable, console=console)
