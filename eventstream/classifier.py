"""Tier classification for consumed events."""
from typing import Any, Mapping
import orjson
from .errors import MessageDecodeError
from .event_models import LogTier

# Events always routed to the protected tier, whatever tag they carry
PROTECTED_TYPES = frozenset({"payment_processed"})
AUDIT_TYPES = frozenset({"user_signup", "user_signin"})


def decode_event(value: bytes | None) -> dict[str, Any]:
    """
    Decode a message body into an event dictionary.

    Args:
        value: Raw message value

    Returns:
        The decoded event body

    Raises:
        MessageDecodeError: If the value is empty, not JSON, not an object,
            or has no string ``type``
    """
    if not value:
        raise MessageDecodeError("empty message body")
    try:
        body = orjson.loads(value)
    except orjson.JSONDecodeError as e:
        raise MessageDecodeError(f"invalid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MessageDecodeError(f"expected JSON object, got {type(body).__name__}")
    if not isinstance(body.get("type"), str) or not body["type"]:
        raise MessageDecodeError("event has no 'type' field")
    return body


def classify(body: Mapping[str, Any] | None) -> LogTier:
    """
    Derive the log tier of a decoded event.

    Rules, first match wins:
    1. ``payment_processed`` events are protected
    2. A valid explicit ``logType`` tag is used as-is
    3. ``user_signup`` / ``user_signin`` events are audit
    4. Everything else is normal

    Args:
        body: Decoded event body (anything else classifies as normal)

    Returns:
        The event's tier
    """
    if not isinstance(body, Mapping):
        return LogTier.NORMAL

    event_type = body.get("type")
    if event_type in PROTECTED_TYPES:
        return LogTier.PROTECTED

    declared = body.get("logType")
    if isinstance(declared, str):
        try:
            return LogTier(declared)
        except ValueError:
            pass  # unknown tag, fall through to type-based rules

    if event_type in AUDIT_TYPES:
        return LogTier.AUDIT
    return LogTier.NORMAL
